"""
Wallet bookkeeping: balances, the transaction ledger, payout methods and
withdrawals.

Every balance change writes a WalletTransaction with signed ``amount`` and the
balance before and after it. Public functions commit; the underscored helpers
only stage changes so callers can combine them in one transaction.
"""

import logging

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wishfund.core.config import settings
from wishfund.core.errors import AppError, forbidden, not_found
from wishfund.core.identifiers import item_withdrawal_reference, money, utc_now, withdrawal_reference
from wishfund.core.mailer import send_withdrawal_email
from wishfund.models.models import (
    ItemWithdrawal,
    PayoutMethod,
    TransactionTypeEnum,
    User,
    Wallet,
    WalletTransaction,
    Wishlist,
    WishlistItem,
    WithdrawalRequest,
    WithdrawalStatusEnum,
)
from wishfund.services.payments import PaymentGateway, PaymentGatewayError, calculate_withdrawal_fee

logger = logging.getLogger("wishfund.wallet")

OPEN_WITHDRAWAL_STATUSES = (WithdrawalStatusEnum.PENDING.value, WithdrawalStatusEnum.PROCESSING.value)


async def get_or_create_wallet(db: AsyncSession, user_id: int) -> Wallet:
    result = await db.execute(select(Wallet).where(Wallet.user_id == user_id))
    wallet = result.scalar_one_or_none()
    if wallet is None:
        wallet = Wallet(
            user_id=user_id,
            available_balance=0,
            pending_balance=0,
            total_received=0,
            total_withdrawn=0,
            currency=settings.currency,
        )
        db.add(wallet)
        await db.flush()
        logger.info("Wallet created user_id=%s wallet_id=%s", user_id, wallet.id)
    return wallet


def record_transaction(
    db: AsyncSession,
    wallet: Wallet,
    tx_type: TransactionTypeEnum,
    amount: float,
    balance_before: float,
    reference: str,
    description: str | None = None,
    details: dict | None = None,
) -> WalletTransaction:
    transaction = WalletTransaction(
        user_id=wallet.user_id,
        wallet_id=wallet.id,
        type=tx_type.value,
        amount=money(amount),
        balance_before=money(balance_before),
        balance_after=money(balance_before + amount),
        reference=reference,
        description=description,
        details=details,
    )
    db.add(transaction)
    return transaction


async def list_transactions(
    db: AsyncSession, user_id: int, page: int, limit: int
) -> tuple[list[WalletTransaction], int]:
    total = await db.scalar(
        select(func.count()).select_from(WalletTransaction).where(WalletTransaction.user_id == user_id)
    )
    result = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), int(total or 0)


async def wallet_summary(db: AsyncSession, user_id: int) -> dict:
    wallet = await get_or_create_wallet(db, user_id)
    pending = await db.execute(
        select(func.count(WithdrawalRequest.id), func.coalesce(func.sum(WithdrawalRequest.amount), 0)).where(
            WithdrawalRequest.user_id == user_id,
            WithdrawalRequest.status.in_(OPEN_WITHDRAWAL_STATUSES),
        )
    )
    pending_count, pending_amount = pending.one()
    items_available = await db.scalar(
        select(func.coalesce(func.sum(WishlistItem.available_balance), 0))
        .join(Wishlist, Wishlist.id == WishlistItem.wishlist_id)
        .where(Wishlist.user_id == user_id)
    )
    await db.commit()
    return {
        "available_balance": money(wallet.available_balance),
        "pending_balance": money(wallet.pending_balance),
        "total_received": money(wallet.total_received),
        "total_withdrawn": money(wallet.total_withdrawn),
        "pending_withdrawals": int(pending_count or 0),
        "pending_withdrawals_amount": money(pending_amount),
        "items_available_balance": money(items_available),
        "currency": wallet.currency,
    }


# Payout methods


async def _verified_method(
    db: AsyncSession,
    user: User,
    gateway: PaymentGateway,
    account_number: str,
    bank_code: str,
    *,
    is_normal_transfer: bool,
    bvn: str | None = None,
) -> PayoutMethod:
    try:
        resolved = await gateway.resolve_account(account_number, bank_code)
        bank_name = await gateway.bank_name(bank_code)
        recipient_code = await gateway.create_transfer_recipient(
            resolved["account_name"], account_number, bank_code
        )
    except PaymentGatewayError as exc:
        raise AppError(f"Could not verify account: {exc.message}") from exc

    method = PayoutMethod(
        user_id=user.id,
        account_name=resolved["account_name"],
        account_number=account_number,
        bank_name=bank_name,
        bank_code=bank_code,
        bvn=bvn,
        recipient_code=recipient_code,
        is_verified=True,
        is_primary=False,
        is_normal_transfer=is_normal_transfer,
    )
    db.add(method)
    await db.flush()
    return method


async def add_payout_method(
    db: AsyncSession,
    user: User,
    gateway: PaymentGateway,
    account_number: str,
    bank_code: str,
    bvn: str | None = None,
    make_primary: bool = False,
) -> PayoutMethod:
    result = await db.execute(
        select(PayoutMethod).where(
            PayoutMethod.user_id == user.id,
            PayoutMethod.account_number == account_number,
            PayoutMethod.bank_code == bank_code,
            PayoutMethod.is_normal_transfer.is_(False),
        )
    )
    if result.scalar_one_or_none() is not None:
        raise AppError("This payout method already exists")

    method = await _verified_method(
        db, user, gateway, account_number, bank_code, is_normal_transfer=False, bvn=bvn
    )
    existing_primary = await db.scalar(
        select(func.count()).select_from(PayoutMethod).where(
            PayoutMethod.user_id == user.id,
            PayoutMethod.is_primary.is_(True),
        )
    )
    if make_primary or not existing_primary:
        await _make_primary(db, user.id, method)
    await db.commit()
    await db.refresh(method)
    logger.info("Payout method added user_id=%s method_id=%s bank=%s", user.id, method.id, bank_code)
    return method


async def list_payout_methods(db: AsyncSession, user_id: int) -> list[PayoutMethod]:
    result = await db.execute(
        select(PayoutMethod)
        .where(PayoutMethod.user_id == user_id, PayoutMethod.is_normal_transfer.is_(False))
        .order_by(PayoutMethod.is_primary.desc(), PayoutMethod.created_at.desc())
    )
    return list(result.scalars().all())


async def _owned_method(db: AsyncSession, user: User, method_id: int) -> PayoutMethod:
    method = await db.get(PayoutMethod, method_id)
    if method is None:
        raise not_found("Payout method")
    if method.user_id != user.id:
        raise forbidden("Unauthorized to manage this payout method")
    return method


async def _make_primary(db: AsyncSession, user_id: int, method: PayoutMethod) -> None:
    result = await db.execute(
        select(PayoutMethod).where(PayoutMethod.user_id == user_id, PayoutMethod.is_primary.is_(True))
    )
    for other in result.scalars().all():
        other.is_primary = False
    method.is_primary = True


async def set_primary_payout_method(db: AsyncSession, user: User, method_id: int) -> PayoutMethod:
    method = await _owned_method(db, user, method_id)
    await _make_primary(db, user.id, method)
    await db.commit()
    await db.refresh(method)
    return method


async def delete_payout_method(db: AsyncSession, user: User, method_id: int) -> None:
    method = await _owned_method(db, user, method_id)
    open_count = await db.scalar(
        select(func.count()).select_from(WithdrawalRequest).where(
            WithdrawalRequest.payout_method_id == method.id,
            WithdrawalRequest.status.in_(OPEN_WITHDRAWAL_STATUSES),
        )
    )
    if open_count:
        raise AppError("Cannot delete payout method with pending withdrawals")

    was_primary = method.is_primary
    await db.delete(method)
    await db.flush()
    if was_primary:
        result = await db.execute(
            select(PayoutMethod)
            .where(PayoutMethod.user_id == user.id, PayoutMethod.is_normal_transfer.is_(False))
            .order_by(PayoutMethod.created_at.desc())
            .limit(1)
        )
        replacement = result.scalar_one_or_none()
        if replacement is not None:
            replacement.is_primary = True
    await db.commit()
    logger.info("Payout method removed user_id=%s method_id=%s", user.id, method_id)


async def _resolve_payout_method(
    db: AsyncSession,
    user: User,
    gateway: PaymentGateway,
    payout_method_id: int | None,
    account_number: str | None,
    bank_code: str | None,
) -> PayoutMethod:
    if account_number and bank_code:
        return await _verified_method(db, user, gateway, account_number, bank_code, is_normal_transfer=True)

    if payout_method_id is not None:
        result = await db.execute(
            select(PayoutMethod).where(PayoutMethod.id == payout_method_id, PayoutMethod.user_id == user.id)
        )
        method = result.scalar_one_or_none()
        if method is None:
            raise AppError("Invalid payout method")
    else:
        result = await db.execute(
            select(PayoutMethod).where(PayoutMethod.user_id == user.id, PayoutMethod.is_primary.is_(True))
        )
        method = result.scalars().first()
        if method is None:
            raise AppError("No payout method found. Please add a payout method first")

    if not method.is_verified:
        raise AppError("Payout method is not verified")
    return method


# Withdrawals


async def _stage_withdrawal(
    db: AsyncSession,
    user: User,
    gateway: PaymentGateway,
    amount: float,
    payout_method_id: int | None = None,
    account_number: str | None = None,
    bank_code: str | None = None,
) -> WithdrawalRequest:
    amount = money(amount)
    if amount < settings.min_withdrawal_amount:
        raise AppError(f"Minimum withdrawal amount is ₦{settings.min_withdrawal_amount:,.0f}")

    wallet = await get_or_create_wallet(db, user.id)
    if amount > money(wallet.available_balance):
        raise AppError("Insufficient balance")

    method = await _resolve_payout_method(db, user, gateway, payout_method_id, account_number, bank_code)
    fee = calculate_withdrawal_fee(amount)
    net_amount = money(amount - fee)
    reference = withdrawal_reference()

    balance_before = money(wallet.available_balance)
    wallet.available_balance = money(balance_before - amount)
    wallet.pending_balance = money(wallet.pending_balance + amount)

    withdrawal = WithdrawalRequest(
        user_id=user.id,
        wallet_id=wallet.id,
        payout_method_id=method.id,
        amount=amount,
        fee=fee,
        net_amount=net_amount,
        status=WithdrawalStatusEnum.PENDING.value,
        payment_reference=reference,
    )
    db.add(withdrawal)
    record_transaction(
        db,
        wallet,
        TransactionTypeEnum.WITHDRAWAL,
        -net_amount,
        balance_before,
        reference,
        description=f"Withdrawal to {method.bank_name} ({method.account_number[-4:]})",
        details={"payout_method_id": method.id},
    )
    record_transaction(
        db,
        wallet,
        TransactionTypeEnum.FEE,
        -fee,
        balance_before - net_amount,
        f"{reference}-FEE",
        description="Withdrawal fee",
    )
    await db.flush()
    return withdrawal


async def create_withdrawal_request(
    db: AsyncSession,
    user: User,
    gateway: PaymentGateway,
    amount: float,
    payout_method_id: int | None = None,
    account_number: str | None = None,
    bank_code: str | None = None,
) -> WithdrawalRequest:
    withdrawal = await _stage_withdrawal(
        db, user, gateway, amount, payout_method_id, account_number, bank_code
    )
    await db.commit()
    logger.info(
        "Withdrawal requested user_id=%s reference=%s amount=%.2f",
        user.id,
        withdrawal.payment_reference,
        withdrawal.amount,
    )
    return await get_withdrawal(db, withdrawal.id)


async def get_withdrawal(db: AsyncSession, withdrawal_id: int) -> WithdrawalRequest:
    result = await db.execute(
        select(WithdrawalRequest)
        .where(WithdrawalRequest.id == withdrawal_id)
        .execution_options(populate_existing=True)
    )
    withdrawal = result.scalar_one_or_none()
    if withdrawal is None:
        raise not_found("Withdrawal request")
    return withdrawal


async def get_user_withdrawal(db: AsyncSession, user: User, withdrawal_id: int) -> WithdrawalRequest:
    withdrawal = await get_withdrawal(db, withdrawal_id)
    if withdrawal.user_id != user.id:
        raise forbidden("Unauthorized to view this withdrawal")
    return withdrawal


async def list_withdrawals(
    db: AsyncSession,
    page: int,
    limit: int,
    user_id: int | None = None,
    statuses: tuple[str, ...] | None = None,
) -> tuple[list[WithdrawalRequest], int]:
    conditions = []
    if user_id is not None:
        conditions.append(WithdrawalRequest.user_id == user_id)
    if statuses:
        conditions.append(WithdrawalRequest.status.in_(statuses))
    total = await db.scalar(select(func.count()).select_from(WithdrawalRequest).where(*conditions))
    result = await db.execute(
        select(WithdrawalRequest)
        .where(*conditions)
        .order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), int(total or 0)


async def _wallet_for(db: AsyncSession, withdrawal: WithdrawalRequest) -> Wallet:
    wallet = await db.get(Wallet, withdrawal.wallet_id)
    if wallet is None:
        raise not_found("Wallet")
    return wallet


async def _owner_email(db: AsyncSession, user_id: int) -> str | None:
    user = await db.get(User, user_id)
    return user.email if user else None


async def _return_funds(
    db: AsyncSession,
    withdrawal: WithdrawalRequest,
    new_status: WithdrawalStatusEnum,
    reason: str,
) -> None:
    wallet = await _wallet_for(db, withdrawal)
    balance_before = money(wallet.available_balance)
    wallet.pending_balance = money(max(0.0, wallet.pending_balance - withdrawal.amount))
    wallet.available_balance = money(balance_before + withdrawal.amount)
    record_transaction(
        db,
        wallet,
        TransactionTypeEnum.REFUND,
        withdrawal.amount,
        balance_before,
        f"{withdrawal.payment_reference}-REFUND",
        description=f"Withdrawal {new_status.value}: {reason}",
        details={"withdrawal_id": withdrawal.id},
    )
    withdrawal.status = new_status.value
    withdrawal.failure_reason = reason
    withdrawal.processed_at = utc_now()


async def fail_withdrawal(db: AsyncSession, withdrawal: WithdrawalRequest, reason: str) -> WithdrawalRequest:
    if withdrawal.status not in OPEN_WITHDRAWAL_STATUSES:
        raise AppError(f"Cannot fail a {withdrawal.status} withdrawal")
    await _return_funds(db, withdrawal, WithdrawalStatusEnum.FAILED, reason)
    await db.commit()
    logger.warning("Withdrawal failed reference=%s reason=%s", withdrawal.payment_reference, reason)
    send_withdrawal_email(await _owner_email(db, withdrawal.user_id), withdrawal.amount, False, reason)
    return await get_withdrawal(db, withdrawal.id)


async def cancel_withdrawal(db: AsyncSession, user: User, withdrawal_id: int) -> WithdrawalRequest:
    withdrawal = await get_user_withdrawal(db, user, withdrawal_id)
    if withdrawal.status != WithdrawalStatusEnum.PENDING.value:
        raise AppError("Only pending withdrawals can be cancelled")
    await _return_funds(db, withdrawal, WithdrawalStatusEnum.CANCELLED, "Cancelled by user")
    await db.commit()
    logger.info("Withdrawal cancelled reference=%s", withdrawal.payment_reference)
    return await get_withdrawal(db, withdrawal.id)


async def complete_withdrawal(db: AsyncSession, withdrawal: WithdrawalRequest) -> WithdrawalRequest:
    if withdrawal.status != WithdrawalStatusEnum.PROCESSING.value:
        raise AppError("Only processing withdrawals can be completed")
    wallet = await _wallet_for(db, withdrawal)
    wallet.pending_balance = money(max(0.0, wallet.pending_balance - withdrawal.amount))
    wallet.total_withdrawn = money(wallet.total_withdrawn + withdrawal.amount)
    withdrawal.status = WithdrawalStatusEnum.COMPLETED.value
    withdrawal.processed_at = utc_now()
    await db.commit()
    logger.info("Withdrawal completed reference=%s", withdrawal.payment_reference)
    send_withdrawal_email(await _owner_email(db, withdrawal.user_id), withdrawal.net_amount, True)
    return await get_withdrawal(db, withdrawal.id)


async def process_withdrawal(
    db: AsyncSession, gateway: PaymentGateway, withdrawal: WithdrawalRequest
) -> WithdrawalRequest:
    """Hand a pending withdrawal to the gateway; a transfer error fails it with 502."""
    if withdrawal.status != WithdrawalStatusEnum.PENDING.value:
        raise AppError("Only pending withdrawals can be processed")
    method = withdrawal.payout_method
    if method is None:
        await fail_withdrawal(db, withdrawal, "Payout method no longer exists")
        raise AppError("Payout method no longer exists", status.HTTP_502_BAD_GATEWAY)

    withdrawal.status = WithdrawalStatusEnum.PROCESSING.value
    await db.flush()
    try:
        if not method.recipient_code:
            method.recipient_code = await gateway.create_transfer_recipient(
                method.account_name, method.account_number, method.bank_code
            )
        transfer = await gateway.initiate_transfer(
            withdrawal.net_amount,
            method.recipient_code,
            withdrawal.payment_reference,
            reason="WishFund withdrawal",
        )
    except PaymentGatewayError as exc:
        await fail_withdrawal(db, withdrawal, exc.message)
        raise AppError(f"Transfer failed: {exc.message}", status.HTTP_502_BAD_GATEWAY) from exc

    withdrawal.transfer_code = transfer.get("transfer_code")
    await db.commit()
    logger.info(
        "Withdrawal processing reference=%s transfer_code=%s",
        withdrawal.payment_reference,
        withdrawal.transfer_code,
    )
    if transfer.get("status") == "success":
        return await complete_withdrawal(db, withdrawal)
    return await get_withdrawal(db, withdrawal.id)


async def find_withdrawal_by_reference(db: AsyncSession, reference: str) -> WithdrawalRequest | None:
    result = await db.execute(select(WithdrawalRequest).where(WithdrawalRequest.payment_reference == reference))
    return result.scalar_one_or_none()


# Item withdrawals


async def _stage_item_withdrawal(
    db: AsyncSession,
    user: User,
    item: WishlistItem,
    wishlist: Wishlist,
    amount: float | None = None,
) -> tuple[ItemWithdrawal, Wallet]:
    if not item.is_withdrawable:
        raise AppError("This item is not withdrawable")
    available = money(item.available_balance)
    if available <= 0:
        raise AppError("No funds available to withdraw")
    amount = money(amount) if amount is not None else available
    if amount > available:
        raise AppError(f"Insufficient balance. Available: ₦{available:,.2f}")

    wallet = await get_or_create_wallet(db, user.id)
    now = utc_now()
    item.available_balance = money(available - amount)
    item.withdrawn_amount = money(item.withdrawn_amount + amount)
    item.last_withdrawal_at = now

    balance_before = money(wallet.available_balance)
    wallet.available_balance = money(balance_before + amount)
    wallet.total_received = money(wallet.total_received + amount)

    reference = item_withdrawal_reference()
    withdrawal = ItemWithdrawal(
        wishlist_item_id=item.id,
        wishlist_id=wishlist.id,
        user_id=user.id,
        wallet_id=wallet.id,
        amount=amount,
        status="completed",
        reference=reference,
        processed_at=now,
    )
    db.add(withdrawal)
    record_transaction(
        db,
        wallet,
        TransactionTypeEnum.CONTRIBUTION,
        amount,
        balance_before,
        reference,
        description=f"Withdrawal from {item.name}",
        details={"wishlist_item_id": item.id, "wishlist_id": wishlist.id},
    )
    await db.flush()
    return withdrawal, wallet


async def _owned_item(db: AsyncSession, user: User, item_id: int) -> tuple[WishlistItem, Wishlist]:
    item = await db.get(WishlistItem, item_id)
    if item is None:
        raise not_found("Wishlist item")
    wishlist = await db.get(Wishlist, item.wishlist_id)
    if wishlist is None or wishlist.user_id != user.id:
        raise forbidden("Unauthorized to withdraw from this item")
    return item, wishlist


async def withdraw_from_item(
    db: AsyncSession,
    user: User,
    gateway: PaymentGateway,
    item_id: int,
    amount: float | None = None,
    payout_method_id: int | None = None,
    account_number: str | None = None,
    bank_code: str | None = None,
) -> tuple[ItemWithdrawal, Wallet, WithdrawalRequest | None]:
    """Move an item's available funds into the owner's wallet, optionally paying them out."""
    item, wishlist = await _owned_item(db, user, item_id)
    withdrawal, wallet = await _stage_item_withdrawal(db, user, item, wishlist, amount)
    payout_requested = payout_method_id is not None or bool(account_number and bank_code)
    payout = None
    if payout_requested:
        payout = await _stage_withdrawal(
            db, user, gateway, withdrawal.amount, payout_method_id, account_number, bank_code
        )
    await db.commit()
    logger.info(
        "Item withdrawal reference=%s item_id=%s amount=%.2f",
        withdrawal.reference,
        item.id,
        withdrawal.amount,
    )
    if payout is not None:
        payout = await process_withdrawal(db, gateway, await get_withdrawal(db, payout.id))
    await db.refresh(wallet)
    return withdrawal, wallet, payout


async def withdraw_all(
    db: AsyncSession, user: User, wishlist_id: int
) -> tuple[list[ItemWithdrawal], float]:
    wishlist = await db.get(Wishlist, wishlist_id)
    if wishlist is None:
        raise not_found("Wishlist")
    if wishlist.user_id != user.id:
        raise forbidden("Unauthorized to withdraw from this wishlist")

    result = await db.execute(
        select(WishlistItem.id).where(
            WishlistItem.wishlist_id == wishlist.id,
            WishlistItem.is_withdrawable.is_(True),
            WishlistItem.available_balance > 0,
        )
    )
    item_ids = list(result.scalars().all())
    if not item_ids:
        raise AppError("No funds available to withdraw")

    withdrawals: list[ItemWithdrawal] = []
    for item_id in item_ids:
        item = await db.get(WishlistItem, item_id)
        try:
            # checks run before any balance moves, so a skipped item leaves nothing staged
            withdrawal, _ = await _stage_item_withdrawal(db, user, item, wishlist)
        except AppError as exc:
            logger.warning("Skipping item %s in withdraw-all: %s", item_id, exc.message)
            continue
        withdrawals.append(withdrawal)

    if not withdrawals:
        raise AppError("No funds available to withdraw")
    await db.commit()
    total = money(sum(w.amount for w in withdrawals))
    logger.info("Withdraw-all wishlist_id=%s items=%d total=%.2f", wishlist.id, len(withdrawals), total)
    return withdrawals, total
