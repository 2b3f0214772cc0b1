from fastapi import APIRouter, Request, status
from sqlalchemy import select

from wishfund.api.deps import CurrentUser, DbSessionDep, GatewayDep, OptionalUser
from wishfund.core.audit import AuditAction, audit_log, audit_money
from wishfund.core.errors import not_found
from wishfund.core.identifiers import money
from wishfund.models.models import User, Wishlist
from wishfund.schemas.wishlist import (
    ItemBalance,
    ItemStats,
    ItemWithdrawalOut,
    ItemWithdrawRequest,
    ItemWithdrawResult,
    WishlistCreate,
    WishlistItemOut,
    WishlistItemsAdd,
    WishlistOut,
    WishlistStats,
    WishlistUpdate,
    WithdrawAllResult,
)
from wishfund.services.wallets import withdraw_all, withdraw_from_item
from wishfund.services.wishlists import (
    add_items,
    create_wishlist,
    expire_if_due,
    get_item,
    get_owned_wishlist,
    get_public_item,
    get_public_wishlist,
    get_wishlist,
    item_stats,
    list_items,
    serialize_wishlist,
    update_wishlist,
    wishlist_stats,
)


router = APIRouter(prefix="/wishlists", tags=["wishlists"])


async def _wishlist_out(db, wishlist: Wishlist, owner: User | None = None) -> WishlistOut:
    items = (await list_items(db, [wishlist.id]))[wishlist.id]
    if owner is None:
        owner = await db.get(User, wishlist.user_id)
    return WishlistOut(**serialize_wishlist(wishlist, items, owner))


@router.post("", response_model=WishlistOut, status_code=status.HTTP_201_CREATED)
async def create_wishlist_route(
    payload: WishlistCreate, db: DbSessionDep, current_user: CurrentUser, request: Request
) -> WishlistOut:
    wishlist, items = await create_wishlist(db, current_user, payload)
    audit_log(AuditAction.WISHLIST_CREATE, request=request, user_id=current_user.id, details={"wishlist_id": wishlist.id})
    return WishlistOut(**serialize_wishlist(wishlist, items, current_user))


@router.get("/my", response_model=list[WishlistOut])
async def my_wishlists(db: DbSessionDep, current_user: CurrentUser) -> list[WishlistOut]:
    result = await db.execute(
        select(Wishlist)
        .where(Wishlist.user_id == current_user.id)
        .order_by(Wishlist.created_at.desc(), Wishlist.id.desc())
    )
    wishlists = list(result.scalars().all())
    if any([expire_if_due(wishlist) for wishlist in wishlists]):
        await db.commit()
    items_by_wishlist = await list_items(db, [wishlist.id for wishlist in wishlists])
    return [
        WishlistOut(**serialize_wishlist(wishlist, items_by_wishlist[wishlist.id], current_user))
        for wishlist in wishlists
    ]


@router.get("/link/{slug}", response_model=WishlistOut)
async def wishlist_by_link(slug: str, db: DbSessionDep, request: Request) -> WishlistOut:
    wishlist = await get_public_wishlist(db, slug, request)
    return await _wishlist_out(db, wishlist)


@router.get("/items/link/{slug}", response_model=WishlistItemOut)
async def item_by_link(slug: str, db: DbSessionDep, request: Request) -> WishlistItemOut:
    return WishlistItemOut.model_validate(await get_public_item(db, slug, request))


@router.get("/items/{item_id}/stats", response_model=ItemStats)
async def item_stats_route(item_id: int, db: DbSessionDep) -> ItemStats:
    item = await get_item(db, item_id)
    return ItemStats(**await item_stats(db, item))


@router.get("/items/{item_id}/balance", response_model=ItemBalance)
async def item_balance(item_id: int, db: DbSessionDep, current_user: CurrentUser) -> ItemBalance:
    item = await get_item(db, item_id)
    await get_owned_wishlist(db, current_user, item.wishlist_id, "Unauthorized to view this item")
    return ItemBalance(
        item_id=item.id,
        total_contributed=money(item.total_contributed),
        available_balance=money(item.available_balance),
        pending_balance=money(item.pending_balance),
        withdrawn_amount=money(item.withdrawn_amount),
        is_withdrawable=item.is_withdrawable,
        last_withdrawal_at=item.last_withdrawal_at,
    )


@router.post("/items/{item_id}/withdraw", response_model=ItemWithdrawResult)
async def withdraw_item_funds(
    item_id: int,
    payload: ItemWithdrawRequest,
    db: DbSessionDep,
    current_user: CurrentUser,
    gateway: GatewayDep,
    request: Request,
) -> ItemWithdrawResult:
    withdrawal, wallet, payout = await withdraw_from_item(
        db,
        current_user,
        gateway,
        item_id,
        amount=payload.amount,
        payout_method_id=payload.payout_method_id,
        account_number=payload.account_number,
        bank_code=payload.bank_code,
    )
    audit_money(
        AuditAction.ITEM_WITHDRAWAL,
        request=request,
        user_id=current_user.id,
        reference=withdrawal.reference,
        amount=withdrawal.amount,
    )
    return ItemWithdrawResult(
        message="Withdrawal successful",
        withdrawal=ItemWithdrawalOut.model_validate(withdrawal),
        wallet_balance=money(wallet.available_balance),
        payout_reference=payout.payment_reference if payout else None,
        payout_status=payout.status if payout else None,
    )


@router.get("/{wishlist_id}", response_model=WishlistOut)
async def get_wishlist_route(wishlist_id: int, db: DbSessionDep, viewer: OptionalUser) -> WishlistOut:
    wishlist = await get_wishlist(db, wishlist_id)
    if expire_if_due(wishlist):
        await db.commit()
    is_owner = viewer is not None and viewer.id == wishlist.user_id
    if not is_owner and not wishlist.is_public:
        raise not_found("Wishlist")
    return await _wishlist_out(db, wishlist, viewer if is_owner else None)


@router.patch("/{wishlist_id}", response_model=WishlistOut)
async def update_wishlist_route(
    wishlist_id: int, payload: WishlistUpdate, db: DbSessionDep, current_user: CurrentUser, request: Request
) -> WishlistOut:
    wishlist = await update_wishlist(db, current_user, wishlist_id, payload)
    audit_log(AuditAction.WISHLIST_UPDATE, request=request, user_id=current_user.id, details={"wishlist_id": wishlist.id})
    return await _wishlist_out(db, wishlist, current_user)


@router.get("/{wishlist_id}/stats", response_model=WishlistStats)
async def wishlist_stats_route(wishlist_id: int, db: DbSessionDep, current_user: CurrentUser) -> WishlistStats:
    wishlist = await get_owned_wishlist(db, current_user, wishlist_id, "Unauthorized to view this wishlist")
    return WishlistStats(**await wishlist_stats(db, wishlist))


@router.post("/{wishlist_id}/items", response_model=WishlistOut)
async def add_wishlist_items(
    wishlist_id: int, payload: WishlistItemsAdd, db: DbSessionDep, current_user: CurrentUser, request: Request
) -> WishlistOut:
    wishlist, items = await add_items(db, current_user, wishlist_id, payload.items)
    audit_log(
        AuditAction.WISHLIST_ITEMS_ADD,
        request=request,
        user_id=current_user.id,
        details={"wishlist_id": wishlist.id, "added": len(payload.items)},
    )
    return WishlistOut(**serialize_wishlist(wishlist, items, current_user))


@router.post("/{wishlist_id}/withdraw-all", response_model=WithdrawAllResult)
async def withdraw_all_route(
    wishlist_id: int, db: DbSessionDep, current_user: CurrentUser, request: Request
) -> WithdrawAllResult:
    withdrawals, total = await withdraw_all(db, current_user, wishlist_id)
    for withdrawal in withdrawals:
        audit_money(
            AuditAction.ITEM_WITHDRAWAL,
            request=request,
            user_id=current_user.id,
            reference=withdrawal.reference,
            amount=withdrawal.amount,
        )
    return WithdrawAllResult(
        message=f"Withdrew ₦{total:,.2f} from {len(withdrawals)} item(s)",
        total_withdrawn=total,
        items_withdrawn=len(withdrawals),
        withdrawals=[ItemWithdrawalOut.model_validate(withdrawal) for withdrawal in withdrawals],
    )
