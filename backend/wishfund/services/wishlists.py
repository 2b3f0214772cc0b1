"""Wishlist lifecycle: creation, items, public links, expiry, views and stats."""

from datetime import datetime, time, timedelta, timezone
import logging
from typing import Iterable

from fastapi import Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wishfund.core.config import settings
from wishfund.core.errors import AppError, forbidden, not_found
from wishfund.core.identifiers import as_utc, initials, item_slug, money, utc_now, wishlist_slug
from wishfund.models.models import (
    Contribution,
    ContributionStatusEnum,
    CuratedItem,
    User,
    Wishlist,
    WishlistItem,
    WishlistItemView,
    WishlistStatusEnum,
    WishlistTemplate,
    WishlistTemplateItem,
    WishlistView,
)
from wishfund.schemas.wishlist import WishlistCreate, WishlistItemInput, WishlistItemOut, WishlistUpdate

logger = logging.getLogger("wishfund.wishlists")

EXPIRY_GRACE_DAYS = 7


def share_url(wishlist: Wishlist) -> str:
    return f"{settings.frontend_url}/{wishlist.unique_link}"


def expiry_for(celebration_date) -> datetime:
    return datetime.combine(
        celebration_date + timedelta(days=EXPIRY_GRACE_DAYS), time.min, tzinfo=timezone.utc
    )


def expire_if_due(wishlist: Wishlist) -> bool:
    """Flip an active wishlist past its expiry to ``expired``; caller commits."""
    expires_at = as_utc(wishlist.expires_at)
    if wishlist.status == WishlistStatusEnum.ACTIVE.value and expires_at and expires_at <= utc_now():
        wishlist.status = WishlistStatusEnum.EXPIRED.value
        logger.info("Wishlist %s expired", wishlist.id)
        return True
    return False


async def get_wishlist(db: AsyncSession, wishlist_id: int) -> Wishlist:
    wishlist = await db.get(Wishlist, wishlist_id)
    if wishlist is None:
        raise not_found("Wishlist")
    return wishlist


async def get_owned_wishlist(
    db: AsyncSession, user: User, wishlist_id: int, message: str = "Unauthorized to modify this wishlist"
) -> Wishlist:
    wishlist = await get_wishlist(db, wishlist_id)
    if wishlist.user_id != user.id:
        raise forbidden(message)
    return wishlist


async def get_item(db: AsyncSession, item_id: int) -> WishlistItem:
    item = await db.get(WishlistItem, item_id)
    if item is None:
        raise not_found("Wishlist item")
    return item


async def list_items(db: AsyncSession, wishlist_ids: Iterable[int]) -> dict[int, list[WishlistItem]]:
    ids = list(wishlist_ids)
    grouped: dict[int, list[WishlistItem]] = {wishlist_id: [] for wishlist_id in ids}
    if not ids:
        return grouped
    result = await db.execute(
        select(WishlistItem)
        .where(WishlistItem.wishlist_id.in_(ids))
        .order_by(WishlistItem.priority.asc(), WishlistItem.id.asc())
    )
    for item in result.scalars().all():
        grouped[item.wishlist_id].append(item)
    return grouped


def serialize_wishlist(
    wishlist: Wishlist,
    items: list[WishlistItem],
    owner: User | None = None,
) -> dict:
    return {
        "id": wishlist.id,
        "user_id": wishlist.user_id,
        "name": wishlist.name,
        "description": wishlist.description,
        "unique_link": wishlist.unique_link,
        "share_url": share_url(wishlist),
        "emoji": wishlist.emoji,
        "color_theme": wishlist.color_theme,
        "status": wishlist.status,
        "total_contributed": money(wishlist.total_contributed),
        "contributors_count": wishlist.contributors_count or 0,
        "views_count": wishlist.views_count or 0,
        "is_public": wishlist.is_public,
        "celebration_event": wishlist.celebration_event,
        "celebration_date": wishlist.celebration_date,
        "expires_at": wishlist.expires_at,
        "created_at": wishlist.created_at,
        "owner_name": owner.full_name or owner.username if owner else None,
        "items": [WishlistItemOut.model_validate(item) for item in items],
    }


async def _unique_wishlist_link(db: AsyncSession, event: str) -> str:
    while True:
        slug = wishlist_slug(event)
        if not await db.scalar(select(Wishlist.id).where(Wishlist.unique_link == slug)):
            return slug


async def _unique_item_link(db: AsyncSession, name: str) -> str:
    while True:
        slug = item_slug(name)
        if not await db.scalar(select(WishlistItem.id).where(WishlistItem.unique_link == slug)):
            return slug


async def _template_inputs(db: AsyncSession, template_id: int) -> list[WishlistItemInput]:
    template = await db.get(WishlistTemplate, template_id)
    if template is None:
        raise not_found("Template")
    result = await db.execute(
        select(WishlistTemplateItem.curated_item_id)
        .where(WishlistTemplateItem.template_id == template_id)
        .order_by(WishlistTemplateItem.id)
    )
    return [WishlistItemInput(curated_item_id=curated_id) for curated_id in result.scalars().all()]


async def _stage_items(
    db: AsyncSession,
    wishlist: Wishlist,
    inputs: list[WishlistItemInput],
    existing_curated_ids: set[int],
    start_priority: int,
) -> list[WishlistItem]:
    staged: list[WishlistItem] = []
    seen = set(existing_curated_ids)
    for offset, item_input in enumerate(inputs):
        curated = await db.get(CuratedItem, item_input.curated_item_id)
        if curated is None or not curated.is_active:
            raise not_found("Curated item")
        if curated.id in seen:
            raise AppError(f"{curated.name} already exists in the wishlist")
        seen.add(curated.id)

        item = WishlistItem(
            wishlist_id=wishlist.id,
            curated_item_id=curated.id,
            category_id=curated.category_id,
            name=curated.name,
            image_url=curated.image_url,
            price=money(curated.price * item_input.quantity),
            quantity=item_input.quantity,
            priority=start_priority + offset,
            total_contributed=0,
            contributors_count=0,
            views_count=0,
            is_funded=False,
            unique_link=await _unique_item_link(db, curated.name),
            available_balance=0,
            pending_balance=0,
            withdrawn_amount=0,
            is_withdrawable=True,
        )
        db.add(item)
        curated.popularity = (curated.popularity or 0) + 1
        staged.append(item)
    await db.flush()
    return staged


async def create_wishlist(db: AsyncSession, user: User, data: WishlistCreate) -> tuple[Wishlist, list[WishlistItem]]:
    if data.celebration_date < utc_now().date():
        raise AppError("Celebration date cannot be in the past")
    if data.items is not None and not data.items:
        raise AppError("At least one item is required")

    inputs = list(data.items or [])
    if not inputs and data.template_id is not None:
        inputs = await _template_inputs(db, data.template_id)

    wishlist = Wishlist(
        user_id=user.id,
        name=data.name or data.celebration_event,
        description=data.description,
        unique_link=await _unique_wishlist_link(db, data.celebration_event),
        emoji=data.emoji,
        color_theme=data.color_theme,
        status=WishlistStatusEnum.ACTIVE.value,
        total_contributed=0,
        contributors_count=0,
        views_count=0,
        is_public=data.is_public,
        celebration_event=data.celebration_event,
        celebration_date=data.celebration_date,
        expires_at=expiry_for(data.celebration_date),
    )
    db.add(wishlist)
    await db.flush()

    items = await _stage_items(db, wishlist, inputs, set(), start_priority=1)
    await db.commit()
    logger.info("Wishlist created id=%s user_id=%s items=%d", wishlist.id, user.id, len(items))
    return wishlist, items


async def add_items(
    db: AsyncSession, user: User, wishlist_id: int, inputs: list[WishlistItemInput]
) -> tuple[Wishlist, list[WishlistItem]]:
    wishlist = await get_owned_wishlist(db, user, wishlist_id)
    existing = (await list_items(db, [wishlist.id]))[wishlist.id]
    existing_curated = {item.curated_item_id for item in existing if item.curated_item_id is not None}
    max_priority = max((item.priority or 0 for item in existing), default=0)
    await _stage_items(db, wishlist, inputs, existing_curated, start_priority=max_priority + 1)
    if wishlist.status == WishlistStatusEnum.COMPLETED.value:
        # new unfunded items reopen a fully funded wishlist
        wishlist.status = WishlistStatusEnum.ACTIVE.value
    await db.commit()
    items = (await list_items(db, [wishlist.id]))[wishlist.id]
    return wishlist, items


async def update_wishlist(db: AsyncSession, user: User, wishlist_id: int, data: WishlistUpdate) -> Wishlist:
    wishlist = await get_owned_wishlist(db, user, wishlist_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None and field in ("is_public", "status"):
            continue
        setattr(wishlist, field, value)
    await db.commit()
    await db.refresh(wishlist)
    return wishlist


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def get_public_wishlist(db: AsyncSession, slug: str, request: Request) -> Wishlist:
    result = await db.execute(select(Wishlist).where(Wishlist.unique_link == slug))
    wishlist = result.scalar_one_or_none()
    if wishlist is None:
        raise not_found("Wishlist")
    expire_if_due(wishlist)
    if not wishlist.is_public and wishlist.status != WishlistStatusEnum.ACTIVE.value:
        await db.commit()
        raise AppError("This wishlist is not available", status.HTTP_403_FORBIDDEN)

    db.add(
        WishlistView(
            wishlist_id=wishlist.id,
            ip_address=_client_ip(request),
            user_agent=(request.headers.get("User-Agent") or "")[:512] or None,
            referrer=request.headers.get("Referer"),
        )
    )
    wishlist.views_count = (wishlist.views_count or 0) + 1
    await db.commit()
    return wishlist


async def get_public_item(db: AsyncSession, slug: str, request: Request) -> WishlistItem:
    result = await db.execute(select(WishlistItem).where(WishlistItem.unique_link == slug))
    item = result.scalar_one_or_none()
    if item is None:
        raise not_found("Wishlist item")
    db.add(
        WishlistItemView(
            wishlist_item_id=item.id,
            ip_address=_client_ip(request),
            user_agent=(request.headers.get("User-Agent") or "")[:512] or None,
            referrer=request.headers.get("Referer"),
        )
    )
    item.views_count = (item.views_count or 0) + 1
    await db.commit()
    return item


async def top_contributors(db: AsyncSession, wishlist_id: int, limit: int = 3) -> list[dict]:
    total = func.sum(Contribution.amount)
    result = await db.execute(
        select(
            Contribution.contributor_name,
            Contribution.contributor_email,
            total.label("total_amount"),
            func.count(Contribution.id).label("contribution_count"),
            func.max(Contribution.paid_at).label("last_contribution"),
        )
        .where(
            Contribution.wishlist_id == wishlist_id,
            Contribution.status == ContributionStatusEnum.COMPLETED.value,
            Contribution.is_anonymous.is_(False),
        )
        .group_by(Contribution.contributor_name, Contribution.contributor_email)
        .order_by(total.desc())
        .limit(limit)
    )
    return [
        {
            "rank": rank,
            "contributor_name": row.contributor_name,
            "initials": initials(row.contributor_name),
            "total_amount": money(row.total_amount),
            "contribution_count": int(row.contribution_count),
            "last_contribution": row.last_contribution,
        }
        for rank, row in enumerate(result.all(), start=1)
    ]


def _percentage(part: float, whole: float) -> int:
    if whole <= 0:
        return 0
    return min(100, round(part / whole * 100))


async def wishlist_stats(db: AsyncSession, wishlist: Wishlist) -> dict:
    items = (await list_items(db, [wishlist.id]))[wishlist.id]
    total_value = money(sum(item.price for item in items))
    return {
        "wishlist_id": wishlist.id,
        "total_contributed": money(wishlist.total_contributed),
        "contributors_count": wishlist.contributors_count or 0,
        "views_count": wishlist.views_count or 0,
        "items_count": len(items),
        "funded_items_count": sum(1 for item in items if item.is_funded),
        "total_value": total_value,
        "completion_percentage": _percentage(wishlist.total_contributed or 0, total_value),
        "top_contributors": await top_contributors(db, wishlist.id, limit=3),
    }


async def item_stats(db: AsyncSession, item: WishlistItem) -> dict:
    contributions = await db.scalar(
        select(func.count()).select_from(Contribution).where(
            Contribution.wishlist_item_id == item.id,
            Contribution.status == ContributionStatusEnum.COMPLETED.value,
        )
    )
    total = money(item.total_contributed)
    return {
        "item_id": item.id,
        "name": item.name,
        "price": money(item.price),
        "total_contributed": total,
        "remaining_amount": item.amount_needed,
        "funding_percentage": _percentage(total, item.price),
        "contributors_count": item.contributors_count or 0,
        "contributions_count": int(contributions or 0),
        "views_count": item.views_count or 0,
        "is_funded": item.is_funded,
    }
