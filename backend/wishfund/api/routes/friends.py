import logging

from fastapi import APIRouter, status
from sqlalchemy import case, func, select

from wishfund.api.deps import CurrentUser, DbSessionDep, PageDep
from wishfund.core.identifiers import initials, money
from wishfund.models.models import Friendship, FriendshipStatusEnum, User, Wishlist, WishlistStatusEnum
from wishfund.schemas.auth import MessageResponse
from wishfund.schemas.common import Pagination
from wishfund.schemas.social import AddFriendRequest, FriendItemPreview, FriendList, FriendOut, FriendWishlistOut
from wishfund.services.referrals import add_friend, remove_friendship
from wishfund.services.wishlists import expire_if_due, list_items


router = APIRouter(prefix="/friends", tags=["friends"])
logger = logging.getLogger("wishfund.friends")


def _display_name(user: User) -> str:
    return user.full_name or user.username or (user.email or "").split("@")[0]


@router.get("", response_model=FriendList)
async def list_friends(db: DbSessionDep, current_user: CurrentUser, paging: PageDep) -> FriendList:
    conditions = (
        Friendship.user_id == current_user.id,
        Friendship.status == FriendshipStatusEnum.ACCEPTED.value,
    )
    total = int(await db.scalar(select(func.count()).select_from(Friendship).where(*conditions)) or 0)
    result = await db.execute(
        select(Friendship, User)
        .join(User, User.id == Friendship.friend_id)
        .where(*conditions)
        .order_by(Friendship.created_at.desc(), Friendship.id.desc())
        .offset(paging.offset)
        .limit(paging.limit)
    )
    rows = result.all()

    friend_ids = [user.id for _, user in rows]
    counts: dict[int, tuple[int, int]] = {}
    if friend_ids:
        count_rows = await db.execute(
            select(
                Wishlist.user_id,
                func.count(Wishlist.id),
                func.sum(case((Wishlist.status == WishlistStatusEnum.ACTIVE.value, 1), else_=0)),
            )
            .where(Wishlist.user_id.in_(friend_ids))
            .group_by(Wishlist.user_id)
        )
        counts = {user_id: (int(total_count), int(active or 0)) for user_id, total_count, active in count_rows.all()}

    friends = []
    for friendship, user in rows:
        wishlist_count, active_count = counts.get(user.id, (0, 0))
        name = _display_name(user)
        friends.append(
            FriendOut(
                id=user.id,
                name=name,
                username=user.username,
                email=user.email,
                initials=initials(name),
                has_active_wishlist=active_count > 0,
                wishlist_count=wishlist_count,
                friend_since=friendship.created_at,
                source=friendship.source,
            )
        )
    return FriendList(
        friends=friends,
        total_friends=total,
        pagination=Pagination.build(paging.page, paging.limit, total),
    )


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def add_friend_route(payload: AddFriendRequest, db: DbSessionDep, current_user: CurrentUser) -> MessageResponse:
    friend = await add_friend(db, current_user, payload.email, payload.referral_code)
    return MessageResponse(message=f"{_display_name(friend)} added as a friend")


@router.delete("/{friend_id}", response_model=MessageResponse)
async def remove_friend(friend_id: int, db: DbSessionDep, current_user: CurrentUser) -> MessageResponse:
    await remove_friendship(db, current_user.id, friend_id)
    logger.info("Friendship removed %s <-> %s", current_user.id, friend_id)
    return MessageResponse(message="Friend removed successfully")


@router.get("/wishlists", response_model=list[FriendWishlistOut])
async def friends_wishlists(db: DbSessionDep, current_user: CurrentUser) -> list[FriendWishlistOut]:
    result = await db.execute(
        select(Wishlist, User)
        .join(User, User.id == Wishlist.user_id)
        .join(Friendship, Friendship.friend_id == Wishlist.user_id)
        .where(
            Friendship.user_id == current_user.id,
            Friendship.status == FriendshipStatusEnum.ACCEPTED.value,
            Wishlist.status == WishlistStatusEnum.ACTIVE.value,
            Wishlist.is_public.is_(True),
        )
        .order_by(Wishlist.celebration_date.asc(), Wishlist.id.asc())
    )
    rows = result.all()
    expired = [wishlist for wishlist, _ in rows if expire_if_due(wishlist)]
    if expired:
        await db.commit()
        rows = [(wishlist, owner) for wishlist, owner in rows if wishlist not in expired]
    items_by_wishlist = await list_items(db, [wishlist.id for wishlist, _ in rows])

    payload = []
    for wishlist, owner in rows:
        items = items_by_wishlist[wishlist.id]
        payload.append(
            FriendWishlistOut(
                id=wishlist.id,
                name=wishlist.name,
                unique_link=wishlist.unique_link,
                emoji=wishlist.emoji,
                color_theme=wishlist.color_theme,
                celebration_event=wishlist.celebration_event,
                celebration_date=wishlist.celebration_date,
                owner_id=owner.id,
                owner_name=_display_name(owner),
                items_count=len(items),
                total_value=money(sum(item.price for item in items)),
                total_contributed=money(wishlist.total_contributed),
                top_items=[FriendItemPreview.model_validate(item) for item in items[:3]],
            )
        )
    return payload
