"""
Applying payment outcomes to contributions, items and wishlists.

A confirmed payment moves the contribution to ``completed`` and credits the
item; the wishlist's aggregates are recomputed from completed contributions
rather than incremented, so replays and refunds cannot drift them.
"""

import logging

from sqlalchemy import distinct, false, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wishfund.core.audit import AuditAction, audit_money
from wishfund.core.config import settings
from wishfund.core.errors import AppError, not_found
from wishfund.core.identifiers import is_bulk_reference, is_single_reference, money, utc_now
from wishfund.core.mailer import send_contribution_received_email
from wishfund.models.models import (
    Contribution,
    ContributionStatusEnum,
    TransactionTypeEnum,
    User,
    Wishlist,
    WishlistItem,
    WishlistStatusEnum,
)
from wishfund.services.wallets import get_or_create_wallet, record_transaction

logger = logging.getLogger("wishfund.settlement")


def reference_filter(reference: str):
    """Match a single payment, or every ``{ref}-{item_id}`` row of a bulk payment.

    Anything that is not a well-formed payment reference matches nothing.
    """
    if is_bulk_reference(reference):
        return Contribution.payment_reference.startswith(f"{reference}-", autoescape=True)
    if is_single_reference(reference):
        return Contribution.payment_reference == reference
    return false()


async def contributions_for_reference(db: AsyncSession, reference: str) -> list[Contribution]:
    result = await db.execute(
        select(Contribution)
        .where(reference_filter(reference))
        .order_by(Contribution.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def recompute_wishlist_totals(db: AsyncSession, wishlist: Wishlist) -> None:
    await db.flush()
    result = await db.execute(
        select(
            func.count(distinct(Contribution.contributor_email)),
            func.coalesce(func.sum(Contribution.amount), 0),
        ).where(
            Contribution.wishlist_id == wishlist.id,
            Contribution.status == ContributionStatusEnum.COMPLETED.value,
        )
    )
    contributors, total = result.one()
    wishlist.contributors_count = int(contributors or 0)
    wishlist.total_contributed = money(total)

    unfunded = await db.scalar(
        select(func.count()).select_from(WishlistItem).where(
            WishlistItem.wishlist_id == wishlist.id,
            WishlistItem.is_funded.is_(False),
        )
    )
    items = await db.scalar(
        select(func.count()).select_from(WishlistItem).where(WishlistItem.wishlist_id == wishlist.id)
    )
    if items and not unfunded and wishlist.status == WishlistStatusEnum.ACTIVE.value:
        wishlist.status = WishlistStatusEnum.COMPLETED.value
        logger.info("Wishlist %s fully funded", wishlist.id)
    elif unfunded and wishlist.status == WishlistStatusEnum.COMPLETED.value:
        wishlist.status = WishlistStatusEnum.ACTIVE.value


async def settle_contribution(
    db: AsyncSession,
    contribution: Contribution,
    gateway_reference: str | None = None,
) -> bool:
    """Stage the effects of a successful payment; returns False if already settled."""
    if contribution.status in (ContributionStatusEnum.COMPLETED.value, ContributionStatusEnum.REFUNDED.value):
        logger.info("Contribution %s already %s", contribution.id, contribution.status)
        return False

    item = await db.get(WishlistItem, contribution.wishlist_item_id, with_for_update=True)
    if item is None:
        raise not_found("Wishlist item")
    wishlist = await db.get(Wishlist, contribution.wishlist_id)
    if wishlist is None:
        raise not_found("Wishlist")

    now = utc_now()
    amount = money(contribution.amount)
    contribution.status = ContributionStatusEnum.COMPLETED.value
    contribution.paid_at = now
    if gateway_reference:
        contribution.gateway_reference = gateway_reference

    item.total_contributed = money(item.total_contributed + amount)
    item.contributors_count = (item.contributors_count or 0) + 1
    # the gateway already confirmed the charge, so nothing is held in pending_balance
    item.available_balance = money(item.available_balance + amount)
    if item.total_contributed >= item.price:
        item.is_funded = True
        if item.funded_at is None:
            item.funded_at = now

    await recompute_wishlist_totals(db, wishlist)
    return True


async def _notify_owner(db: AsyncSession, contribution_id: int) -> None:
    contribution = await db.get(Contribution, contribution_id)
    if contribution is None:
        return
    item = await db.get(WishlistItem, contribution.wishlist_item_id)
    wishlist = await db.get(Wishlist, contribution.wishlist_id)
    owner = await db.get(User, wishlist.user_id) if wishlist else None
    if item is None or owner is None:
        return
    send_contribution_received_email(
        owner.email,
        item.name,
        f"{settings.frontend_url}/{wishlist.unique_link}",
        contribution.amount,
        item.total_contributed,
        item.price,
        None if contribution.is_anonymous else contribution.contributor_name,
    )


async def settle_reference(
    db: AsyncSession,
    reference: str,
    gateway_reference: str | None = None,
) -> int:
    """Settle every pending contribution paid under ``reference``.

    Each contribution commits on its own; one failing is logged and the rest
    still settle. Returns how many were newly settled.
    """
    result = await db.execute(
        select(Contribution.id)
        .where(reference_filter(reference), Contribution.status == ContributionStatusEnum.PENDING.value)
        .order_by(Contribution.id)
    )
    contribution_ids = list(result.scalars().all())
    if not contribution_ids:
        logger.info("No pending contributions for reference %s", reference)
        return 0

    settled = 0
    for contribution_id in contribution_ids:
        try:
            contribution = await db.get(Contribution, contribution_id)
            if contribution is None:
                continue
            if await settle_contribution(db, contribution, gateway_reference):
                await db.commit()
                settled += 1
                audit_money(
                    AuditAction.CONTRIBUTION_SETTLED,
                    request=None,
                    user_id=contribution.user_id,
                    reference=contribution.payment_reference,
                    amount=contribution.amount,
                )
                await _notify_owner(db, contribution_id)
        except Exception:
            await db.rollback()
            logger.exception("Failed to settle contribution %s (reference %s)", contribution_id, reference)
    logger.info("Settled %d/%d contributions for reference %s", settled, len(contribution_ids), reference)
    return settled


async def fail_reference(db: AsyncSession, reference: str) -> int:
    result = await db.execute(
        update(Contribution)
        .where(reference_filter(reference), Contribution.status == ContributionStatusEnum.PENDING.value)
        .values(status=ContributionStatusEnum.FAILED.value, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    failed = result.rowcount or 0
    logger.info("Marked %d contributions failed for reference %s", failed, reference)
    return failed


async def refund_contribution(db: AsyncSession, contribution_id: int, reason: str) -> Contribution:
    contribution = await db.get(Contribution, contribution_id)
    if contribution is None:
        raise not_found("Contribution")
    if contribution.status != ContributionStatusEnum.COMPLETED.value:
        raise AppError("Only completed contributions can be refunded")

    item = await db.get(WishlistItem, contribution.wishlist_item_id, with_for_update=True)
    if item is None:
        raise not_found("Wishlist item")
    wishlist = await db.get(Wishlist, contribution.wishlist_id)
    if wishlist is None:
        raise not_found("Wishlist")

    amount = money(contribution.amount)
    contribution.status = ContributionStatusEnum.REFUNDED.value
    contribution.refund_reason = reason

    item.total_contributed = money(max(0.0, item.total_contributed - amount))
    item.contributors_count = max(0, (item.contributors_count or 0) - 1)
    item.is_funded = item.total_contributed >= item.price
    if not item.is_funded:
        item.funded_at = None

    from_item = min(amount, money(item.available_balance))
    item.available_balance = money(item.available_balance - from_item)
    remainder = money(amount - from_item)
    if remainder > 0:
        wallet = await get_or_create_wallet(db, wishlist.user_id)
        if wallet.available_balance >= remainder:
            balance_before = money(wallet.available_balance)
            wallet.available_balance = money(balance_before - remainder)
            wallet.total_received = money(max(0.0, wallet.total_received - remainder))
            record_transaction(
                db,
                wallet,
                TransactionTypeEnum.REFUND,
                -remainder,
                balance_before,
                f"{contribution.payment_reference}-REFUND",
                description=f"Refund: {reason}",
                details={"contribution_id": contribution.id},
            )
        else:
            logger.warning(
                "Refund of contribution %s could not reclaim %.2f from wallet %s",
                contribution.id,
                remainder,
                wallet.id,
            )

    await recompute_wishlist_totals(db, wishlist)
    await db.commit()
    logger.info("Contribution %s refunded amount=%.2f reason=%s", contribution.id, amount, reason)
    return contribution
