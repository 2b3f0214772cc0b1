import logging

from fastapi import APIRouter, Query, Request, status
from sqlalchemy import func, select

from wishfund.api.deps import CurrentUser, DbSessionDep, GatewayDep, OptionalUser, PageDep
from wishfund.core.audit import AuditAction, audit_money
from wishfund.core.config import settings
from wishfund.core.errors import AppError, forbidden, not_found
from wishfund.core.identifiers import bulk_contribution_reference, contribution_reference, money, utc_now
from wishfund.core.mailer import send_contributor_reply_email
from wishfund.models.models import (
    Contribution,
    ContributionStatusEnum,
    Wishlist,
    WishlistItem,
    WishlistStatusEnum,
)
from wishfund.schemas.common import Pagination
from wishfund.schemas.contribution import (
    AllocationOut,
    BulkContributionInitiated,
    ContributionDetail,
    ContributionDetailPage,
    ContributionInitiated,
    ContributionOut,
    ContributionPage,
    ItemContributionCreate,
    ReplyRequest,
    WishlistContributionCreate,
)
from wishfund.schemas.wishlist import TopContributor
from wishfund.services.allocation import ItemNeed, allocate, platform_fee, unfunded
from wishfund.services.payments import PaymentGateway, PaymentGatewayError
from wishfund.services.settlement import reference_filter
from wishfund.services.wishlists import expire_if_due, get_item, get_wishlist, list_items, top_contributors


router = APIRouter(prefix="/contributions", tags=["contributions"])
logger = logging.getLogger("wishfund.contributions")


async def _open_wishlist(db, wishlist_id: int) -> Wishlist:
    wishlist = await get_wishlist(db, wishlist_id)
    if expire_if_due(wishlist):
        await db.commit()
    if wishlist.status != WishlistStatusEnum.ACTIVE.value:
        raise AppError("This wishlist is not accepting contributions")
    return wishlist


def _check_minimum(amount: float) -> None:
    if amount < settings.min_contribution_amount:
        raise AppError(f"Minimum contribution amount is ₦{settings.min_contribution_amount:,.0f}")


async def _start_checkout(
    db,
    gateway: PaymentGateway,
    email: str,
    amount: float,
    reference: str,
    metadata: dict,
) -> str:
    """Open the gateway checkout; on failure the pending contributions are failed."""
    try:
        checkout = await gateway.initialize_payment(
            email,
            amount,
            reference,
            callback_url=f"{settings.backend_url}/payments/callback",
            metadata=metadata,
        )
    except PaymentGatewayError as exc:
        result = await db.execute(
            select(Contribution).where(
                reference_filter(reference),
                Contribution.status == ContributionStatusEnum.PENDING.value,
            )
        )
        for contribution in result.scalars().all():
            contribution.status = ContributionStatusEnum.FAILED.value
        await db.commit()
        raise AppError(f"Could not start payment: {exc.message}", status.HTTP_502_BAD_GATEWAY) from exc
    return checkout["authorization_url"]


@router.post("/item", response_model=ContributionInitiated, status_code=status.HTTP_201_CREATED)
async def contribute_to_item(
    payload: ItemContributionCreate,
    db: DbSessionDep,
    gateway: GatewayDep,
    viewer: OptionalUser,
    request: Request,
) -> ContributionInitiated:
    item = await get_item(db, payload.wishlist_item_id)
    wishlist = await _open_wishlist(db, item.wishlist_id)
    _check_minimum(payload.amount)

    reference = contribution_reference()
    contribution = Contribution(
        wishlist_id=wishlist.id,
        wishlist_item_id=item.id,
        user_id=viewer.id if viewer else None,
        receiver_id=wishlist.user_id,
        contributor_name=payload.contributor_name,
        contributor_email=payload.contributor_email,
        contributor_phone=payload.contributor_phone,
        message=payload.message,
        is_anonymous=payload.is_anonymous,
        amount=money(payload.amount),
        status=ContributionStatusEnum.PENDING.value,
        payment_reference=reference,
    )
    db.add(contribution)
    await db.commit()
    logger.info("Contribution initiated reference=%s item_id=%s amount=%.2f", reference, item.id, contribution.amount)
    audit_money(
        AuditAction.CONTRIBUTION_INITIATE,
        request=request,
        user_id=viewer.id if viewer else None,
        reference=reference,
        amount=contribution.amount,
    )

    payment_url = await _start_checkout(
        db,
        gateway,
        payload.contributor_email,
        contribution.amount,
        reference,
        {"contribution_id": contribution.id, "wishlist_item_id": item.id},
    )
    return ContributionInitiated(
        contribution_id=contribution.id,
        payment_reference=reference,
        amount=contribution.amount,
        payment_url=payment_url,
    )


@router.post("/all", response_model=BulkContributionInitiated, status_code=status.HTTP_201_CREATED)
async def contribute_to_wishlist(
    payload: WishlistContributionCreate,
    db: DbSessionDep,
    gateway: GatewayDep,
    viewer: OptionalUser,
    request: Request,
) -> BulkContributionInitiated:
    wishlist = await _open_wishlist(db, payload.wishlist_id)
    _check_minimum(payload.amount)

    items = (await list_items(db, [wishlist.id]))[wishlist.id]
    if not items:
        raise AppError("No items in wishlist")
    needs = [
        ItemNeed(
            item_id=item.id,
            name=item.name,
            price=money(item.price),
            total_contributed=money(item.total_contributed),
            priority=item.priority,
        )
        for item in items
    ]
    if not unfunded(needs):
        raise AppError("All items are fully funded")

    total_amount = money(payload.amount)
    fee = platform_fee(total_amount, settings.platform_fee_percent)
    net_amount = money(total_amount - fee)
    allocations = allocate(needs, net_amount, payload.strategy)
    if not allocations:
        raise AppError("Amount is too small to split across the remaining items")

    reference = bulk_contribution_reference()
    for allocation in allocations:
        db.add(
            Contribution(
                wishlist_id=wishlist.id,
                wishlist_item_id=allocation.item_id,
                user_id=viewer.id if viewer else None,
                receiver_id=wishlist.user_id,
                contributor_name=payload.contributor_name,
                contributor_email=payload.contributor_email,
                contributor_phone=payload.contributor_phone,
                message=payload.message,
                is_anonymous=payload.is_anonymous,
                amount=money(allocation.amount),
                status=ContributionStatusEnum.PENDING.value,
                payment_reference=f"{reference}-{allocation.item_id}",
            )
        )
    await db.commit()
    logger.info(
        "Bulk contribution initiated reference=%s wishlist_id=%s items=%d strategy=%s",
        reference,
        wishlist.id,
        len(allocations),
        payload.strategy.value,
    )
    audit_money(
        AuditAction.CONTRIBUTION_INITIATE,
        request=request,
        user_id=viewer.id if viewer else None,
        reference=reference,
        amount=total_amount,
        strategy=payload.strategy.value,
    )

    payment_url = await _start_checkout(
        db,
        gateway,
        payload.contributor_email,
        total_amount,
        reference,
        {"wishlist_id": wishlist.id, "strategy": payload.strategy.value, "items": len(allocations)},
    )
    return BulkContributionInitiated(
        payment_reference=reference,
        total_amount=total_amount,
        net_amount=net_amount,
        platform_fee=fee,
        items_count=len(allocations),
        strategy=payload.strategy,
        allocations=[
            AllocationOut(item_id=a.item_id, item_name=a.item_name, amount=a.amount) for a in allocations
        ],
        payment_url=payment_url,
    )


async def _public_page(db, condition, paging) -> ContributionPage:
    conditions = (
        condition,
        Contribution.status == ContributionStatusEnum.COMPLETED.value,
        Contribution.is_anonymous.is_(False),
    )
    total = int(await db.scalar(select(func.count()).select_from(Contribution).where(*conditions)) or 0)
    result = await db.execute(
        select(Contribution)
        .where(*conditions)
        .order_by(Contribution.paid_at.desc(), Contribution.id.desc())
        .offset(paging.offset)
        .limit(paging.limit)
    )
    return ContributionPage(
        contributions=[ContributionOut.model_validate(c) for c in result.scalars().all()],
        pagination=Pagination.build(paging.page, paging.limit, total),
    )


async def _detail_page(db, conditions, paging) -> ContributionDetailPage:
    total = int(await db.scalar(select(func.count()).select_from(Contribution).where(*conditions)) or 0)
    result = await db.execute(
        select(Contribution, WishlistItem.name)
        .join(WishlistItem, WishlistItem.id == Contribution.wishlist_item_id)
        .where(*conditions)
        .order_by(Contribution.created_at.desc(), Contribution.id.desc())
        .offset(paging.offset)
        .limit(paging.limit)
    )
    return ContributionDetailPage(
        contributions=[
            ContributionDetail.model_validate(contribution).model_copy(update={"item_name": item_name})
            for contribution, item_name in result.all()
        ],
        pagination=Pagination.build(paging.page, paging.limit, total),
    )


@router.get("/wishlist/{wishlist_id}", response_model=ContributionPage)
async def wishlist_contributions(wishlist_id: int, db: DbSessionDep, paging: PageDep) -> ContributionPage:
    wishlist = await get_wishlist(db, wishlist_id)
    return await _public_page(db, Contribution.wishlist_id == wishlist.id, paging)


@router.get("/item/{item_id}", response_model=ContributionPage)
async def item_contributions(item_id: int, db: DbSessionDep, paging: PageDep) -> ContributionPage:
    item = await get_item(db, item_id)
    return await _public_page(db, Contribution.wishlist_item_id == item.id, paging)


@router.get("/top/{wishlist_id}", response_model=list[TopContributor])
async def wishlist_top_contributors(
    wishlist_id: int,
    db: DbSessionDep,
    limit: int = Query(default=10, ge=1, le=50),
) -> list[TopContributor]:
    wishlist = await get_wishlist(db, wishlist_id)
    return [TopContributor(**row) for row in await top_contributors(db, wishlist.id, limit)]


@router.get("/received", response_model=ContributionDetailPage)
async def received_contributions(db: DbSessionDep, current_user: CurrentUser, paging: PageDep) -> ContributionDetailPage:
    owned = select(Wishlist.id).where(Wishlist.user_id == current_user.id)
    return await _detail_page(
        db,
        (
            Contribution.wishlist_id.in_(owned),
            Contribution.status == ContributionStatusEnum.COMPLETED.value,
        ),
        paging,
    )


@router.get("/given", response_model=ContributionDetailPage)
async def given_contributions(db: DbSessionDep, current_user: CurrentUser, paging: PageDep) -> ContributionDetailPage:
    return await _detail_page(db, (Contribution.user_id == current_user.id,), paging)


@router.post("/{contribution_id}/reply", response_model=ContributionDetail)
async def reply_to_contributor(
    contribution_id: int,
    payload: ReplyRequest,
    db: DbSessionDep,
    current_user: CurrentUser,
) -> ContributionDetail:
    contribution = await db.get(Contribution, contribution_id)
    if contribution is None:
        raise not_found("Contribution")
    wishlist = await db.get(Wishlist, contribution.wishlist_id)
    if wishlist is None or wishlist.user_id != current_user.id:
        raise forbidden("Unauthorized")
    reply = (payload.owner_reply or "").strip()
    if not reply:
        raise AppError("Reply message is required")

    contribution.owner_reply = reply
    contribution.replied_at = utc_now()
    await db.commit()

    send_contributor_reply_email(
        contribution.contributor_email,
        contribution.contributor_name,
        current_user.full_name or current_user.username or "The wishlist owner",
        reply,
    )
    item = await db.get(WishlistItem, contribution.wishlist_item_id)
    return ContributionDetail.model_validate(contribution).model_copy(
        update={"item_name": item.name if item else None}
    )
