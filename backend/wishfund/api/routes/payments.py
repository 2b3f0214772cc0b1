import json
import logging

from fastapi import APIRouter, Query, Request, status

from wishfund.api.deps import AdminUser, DbSessionDep, GatewayDep
from wishfund.core.audit import AuditAction, audit_money
from wishfund.core.config import settings
from wishfund.core.errors import AppError, not_found, unauthorized
from wishfund.core.identifiers import money
from wishfund.models.models import ContributionStatusEnum, WishlistItem, WithdrawalStatusEnum
from wishfund.schemas.auth import MessageResponse
from wishfund.schemas.contribution import ContributionDetail, PaymentVerification, RefundRequest
from wishfund.services.payments import PaymentGateway, PaymentGatewayError
from wishfund.services.settlement import (
    contributions_for_reference,
    fail_reference,
    refund_contribution,
    settle_reference,
)
from wishfund.services.wallets import complete_withdrawal, fail_withdrawal, find_withdrawal_by_reference


router = APIRouter(prefix="/payments", tags=["payments"])
logger = logging.getLogger("wishfund.payments")

SIGNATURE_HEADER = "x-paystack-signature"


def _underpaid(reference: str, pending: list, paid: float | None) -> bool:
    expected = money(sum(c.amount for c in pending))
    if paid is not None and money(paid) < expected:
        logger.warning("Underpaid reference=%s paid=%.2f expected=%.2f", reference, paid, expected)
        return True
    return False


async def _verify_and_settle(db, gateway: PaymentGateway, reference: str) -> PaymentVerification:
    contributions = await contributions_for_reference(db, reference)
    if not contributions:
        raise not_found("Payment")

    pending = [c for c in contributions if c.status == ContributionStatusEnum.PENDING.value]
    if pending:
        try:
            verification = await gateway.verify_payment(reference)
        except PaymentGatewayError as exc:
            raise AppError(f"Could not verify payment: {exc.message}", status.HTTP_502_BAD_GATEWAY) from exc

        confirmed = verification.get("reference")
        if confirmed and confirmed != reference:
            logger.warning("Verification reference mismatch requested=%s returned=%s", reference, confirmed)
            raise AppError("Payment reference mismatch")

        outcome = verification.get("status")
        if outcome == "success" and _underpaid(reference, pending, verification.get("amount")):
            outcome = "failed"

        if outcome == "success":
            await settle_reference(db, reference, verification.get("gateway_reference"))
        elif outcome in ("failed", "abandoned", "reversed"):
            await fail_reference(db, reference)
        contributions = await contributions_for_reference(db, reference)

    statuses = {c.status for c in contributions}
    overall = statuses.pop() if len(statuses) == 1 else "partial"
    first = contributions[0]
    return PaymentVerification(
        reference=reference,
        status=overall,
        amount=money(sum(c.amount for c in contributions)),
        contributor_name=first.contributor_name,
        paid_at=max((c.paid_at for c in contributions if c.paid_at), default=None),
        contributions_count=len(contributions),
    )


async def _settle_charge(db, reference: str, data: dict) -> None:
    """Apply a ``charge.success`` event; amounts arrive in kobo."""
    contributions = await contributions_for_reference(db, reference)
    pending = [c for c in contributions if c.status == ContributionStatusEnum.PENDING.value]
    if not pending:
        logger.info("No pending contributions for webhook reference=%s", reference)
        return
    amount = data.get("amount")
    paid = amount / 100 if isinstance(amount, (int, float)) else None
    if _underpaid(reference, pending, paid):
        await fail_reference(db, reference)
        return
    gateway_reference = str(data["id"]) if data.get("id") is not None else None
    await settle_reference(db, reference, gateway_reference)


async def _handle_transfer(db, reference: str, succeeded: bool, reason: str | None) -> None:
    withdrawal = await find_withdrawal_by_reference(db, reference)
    if withdrawal is None:
        logger.warning("Transfer event for unknown withdrawal reference=%s", reference)
        return
    if succeeded:
        if withdrawal.status == WithdrawalStatusEnum.PROCESSING.value:
            await complete_withdrawal(db, withdrawal)
    elif withdrawal.status in (WithdrawalStatusEnum.PENDING.value, WithdrawalStatusEnum.PROCESSING.value):
        await fail_withdrawal(db, withdrawal, reason or "Transfer failed")


@router.post("/webhook", response_model=MessageResponse)
async def payment_webhook(request: Request, db: DbSessionDep, gateway: GatewayDep) -> MessageResponse:
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if gateway.secret_key:
        if not gateway.verify_webhook_signature(raw_body, signature):
            logger.warning("Webhook rejected: bad signature")
            raise unauthorized("Invalid webhook signature")
    elif not settings.is_local:
        logger.warning("Webhook rejected: no secret configured outside local")
        raise unauthorized("Invalid webhook signature")

    try:
        event = json.loads(raw_body or b"{}")
    except ValueError:
        raise AppError("Invalid webhook payload") from None
    if not isinstance(event, dict) or not isinstance(event.get("data") or {}, dict):
        raise AppError("Invalid webhook payload")
    name = event.get("event")
    data = event.get("data") or {}
    reference = data.get("reference")
    if not reference or not isinstance(reference, str):
        raise AppError("Webhook reference is missing")
    logger.info("Webhook event=%s reference=%s", name, reference)

    if name == "charge.success":
        await _settle_charge(db, reference, data)
    elif name == "charge.failed":
        await fail_reference(db, reference)
    elif name == "transfer.success":
        await _handle_transfer(db, reference, True, None)
    elif name in ("transfer.failed", "transfer.reversed"):
        await _handle_transfer(db, reference, False, data.get("reason") or data.get("message"))
    else:
        logger.info("Ignoring webhook event %s", name)
    return MessageResponse(message="Webhook processed")


@router.get("/callback", response_model=PaymentVerification)
async def payment_callback(
    db: DbSessionDep,
    gateway: GatewayDep,
    reference: str = Query(min_length=4, max_length=128),
) -> PaymentVerification:
    return await _verify_and_settle(db, gateway, reference)


@router.get("/verify/{reference}", response_model=PaymentVerification)
async def verify_payment(reference: str, db: DbSessionDep, gateway: GatewayDep, admin: AdminUser) -> PaymentVerification:
    return await _verify_and_settle(db, gateway, reference)


@router.post("/refund/{contribution_id}", response_model=ContributionDetail)
async def refund_payment(
    contribution_id: int,
    payload: RefundRequest,
    db: DbSessionDep,
    admin: AdminUser,
    request: Request,
) -> ContributionDetail:
    contribution = await refund_contribution(db, contribution_id, payload.reason)
    audit_money(
        AuditAction.CONTRIBUTION_REFUND,
        request=request,
        user_id=admin.id,
        reference=contribution.payment_reference,
        amount=contribution.amount,
    )
    item = await db.get(WishlistItem, contribution.wishlist_item_id)
    return ContributionDetail.model_validate(contribution).model_copy(
        update={"item_name": item.name if item else None}
    )
