import logging

from fastapi import APIRouter, Request, status

from wishfund.api.deps import AdminUser, CurrentUser, DbSessionDep, GatewayDep, PageDep
from wishfund.core.audit import AuditAction, audit_log, audit_money
from wishfund.core.errors import AppError
from wishfund.models.models import WithdrawalStatusEnum
from wishfund.schemas.auth import MessageResponse
from wishfund.schemas.common import Pagination
from wishfund.schemas.wallet import (
    AccountVerifyRequest,
    AccountVerifyResult,
    BankOut,
    PayoutMethodCreate,
    PayoutMethodOut,
    TransactionOut,
    TransactionPage,
    WalletOut,
    WalletSummary,
    WithdrawalCreate,
    WithdrawalFailRequest,
    WithdrawalOut,
    WithdrawalPage,
)
from wishfund.services.payments import PaymentGatewayError
from wishfund.services.wallets import (
    add_payout_method,
    cancel_withdrawal,
    complete_withdrawal,
    create_withdrawal_request,
    delete_payout_method,
    fail_withdrawal,
    get_or_create_wallet,
    get_user_withdrawal,
    get_withdrawal,
    list_payout_methods,
    list_transactions,
    list_withdrawals,
    process_withdrawal,
    set_primary_payout_method,
    wallet_summary,
)


router = APIRouter(prefix="/wallet", tags=["wallet"])
logger = logging.getLogger("wishfund.wallet")


@router.get("", response_model=WalletOut)
async def get_wallet(db: DbSessionDep, current_user: CurrentUser) -> WalletOut:
    wallet = await get_or_create_wallet(db, current_user.id)
    await db.commit()
    return WalletOut.model_validate(wallet)


@router.get("/summary", response_model=WalletSummary)
async def get_wallet_summary(db: DbSessionDep, current_user: CurrentUser) -> WalletSummary:
    return WalletSummary(**await wallet_summary(db, current_user.id))


@router.get("/transactions", response_model=TransactionPage)
async def get_transactions(db: DbSessionDep, current_user: CurrentUser, paging: PageDep) -> TransactionPage:
    transactions, total = await list_transactions(db, current_user.id, paging.page, paging.limit)
    return TransactionPage(
        transactions=[TransactionOut.model_validate(tx) for tx in transactions],
        pagination=Pagination.build(paging.page, paging.limit, total),
    )


@router.get("/banks", response_model=list[BankOut])
async def get_banks(gateway: GatewayDep, current_user: CurrentUser) -> list[BankOut]:
    try:
        banks = await gateway.list_banks()
    except PaymentGatewayError as exc:
        raise AppError(f"Could not load banks: {exc.message}", status.HTTP_502_BAD_GATEWAY) from exc
    return [BankOut(**bank) for bank in banks]


@router.post("/verify-account", response_model=AccountVerifyResult)
async def verify_account(payload: AccountVerifyRequest, gateway: GatewayDep, current_user: CurrentUser) -> AccountVerifyResult:
    try:
        resolved = await gateway.resolve_account(payload.account_number, payload.bank_code)
    except PaymentGatewayError as exc:
        raise AppError(f"Could not verify account: {exc.message}") from exc
    return AccountVerifyResult(**resolved)


# Payout methods


@router.post("/payout-methods", response_model=PayoutMethodOut, status_code=status.HTTP_201_CREATED)
async def create_payout_method(
    payload: PayoutMethodCreate,
    db: DbSessionDep,
    gateway: GatewayDep,
    current_user: CurrentUser,
    request: Request,
) -> PayoutMethodOut:
    method = await add_payout_method(
        db,
        current_user,
        gateway,
        payload.account_number,
        payload.bank_code,
        bvn=payload.bvn,
        make_primary=payload.is_primary,
    )
    audit_log(
        AuditAction.PAYOUT_METHOD_ADD,
        request=request,
        user_id=current_user.id,
        details={"method_id": method.id, "bank_code": method.bank_code, "account_number": method.account_number},
    )
    return PayoutMethodOut.model_validate(method)


@router.get("/payout-methods", response_model=list[PayoutMethodOut])
async def get_payout_methods(db: DbSessionDep, current_user: CurrentUser) -> list[PayoutMethodOut]:
    return [PayoutMethodOut.model_validate(method) for method in await list_payout_methods(db, current_user.id)]


@router.post("/payout-methods/{method_id}/primary", response_model=PayoutMethodOut)
async def make_primary_payout_method(method_id: int, db: DbSessionDep, current_user: CurrentUser) -> PayoutMethodOut:
    return PayoutMethodOut.model_validate(await set_primary_payout_method(db, current_user, method_id))


@router.delete("/payout-methods/{method_id}", response_model=MessageResponse)
async def remove_payout_method(
    method_id: int, db: DbSessionDep, current_user: CurrentUser, request: Request
) -> MessageResponse:
    await delete_payout_method(db, current_user, method_id)
    audit_log(AuditAction.PAYOUT_METHOD_REMOVE, request=request, user_id=current_user.id, details={"method_id": method_id})
    return MessageResponse(message="Payout method deleted successfully")


# Withdrawals


@router.post("/withdrawals", response_model=WithdrawalOut, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(
    payload: WithdrawalCreate,
    db: DbSessionDep,
    gateway: GatewayDep,
    current_user: CurrentUser,
    request: Request,
) -> WithdrawalOut:
    withdrawal = await create_withdrawal_request(
        db,
        current_user,
        gateway,
        payload.amount,
        payout_method_id=payload.payout_method_id,
        account_number=payload.account_number,
        bank_code=payload.bank_code,
    )
    audit_money(
        AuditAction.WITHDRAWAL_REQUEST,
        request=request,
        user_id=current_user.id,
        reference=withdrawal.payment_reference,
        amount=withdrawal.amount,
        fee=withdrawal.fee,
    )
    return WithdrawalOut.model_validate(withdrawal)


@router.get("/withdrawals", response_model=WithdrawalPage)
async def my_withdrawals(db: DbSessionDep, current_user: CurrentUser, paging: PageDep) -> WithdrawalPage:
    withdrawals, total = await list_withdrawals(db, paging.page, paging.limit, user_id=current_user.id)
    return WithdrawalPage(
        withdrawals=[WithdrawalOut.model_validate(w) for w in withdrawals],
        pagination=Pagination.build(paging.page, paging.limit, total),
    )


@router.get("/withdrawals/{withdrawal_id}", response_model=WithdrawalOut)
async def withdrawal_details(withdrawal_id: int, db: DbSessionDep, current_user: CurrentUser) -> WithdrawalOut:
    return WithdrawalOut.model_validate(await get_user_withdrawal(db, current_user, withdrawal_id))


@router.post("/withdrawals/{withdrawal_id}/cancel", response_model=WithdrawalOut)
async def cancel_withdrawal_route(
    withdrawal_id: int, db: DbSessionDep, current_user: CurrentUser, request: Request
) -> WithdrawalOut:
    withdrawal = await cancel_withdrawal(db, current_user, withdrawal_id)
    audit_log(
        AuditAction.WITHDRAWAL_STATUS,
        request=request,
        user_id=current_user.id,
        details={"reference": withdrawal.payment_reference, "status": withdrawal.status},
    )
    return WithdrawalOut.model_validate(withdrawal)


# Admin


@router.get("/admin/withdrawals/pending", response_model=WithdrawalPage)
async def pending_withdrawals(db: DbSessionDep, admin: AdminUser, paging: PageDep) -> WithdrawalPage:
    withdrawals, total = await list_withdrawals(
        db,
        paging.page,
        paging.limit,
        statuses=(WithdrawalStatusEnum.PENDING.value,),
    )
    return WithdrawalPage(
        withdrawals=[WithdrawalOut.model_validate(w) for w in withdrawals],
        pagination=Pagination.build(paging.page, paging.limit, total),
    )


def _audit_status(request: Request, admin_id: int, reference: str, new_status: str) -> None:
    audit_log(
        AuditAction.WITHDRAWAL_STATUS,
        request=request,
        user_id=admin_id,
        details={"reference": reference, "status": new_status},
    )


@router.post("/admin/withdrawals/{withdrawal_id}/process", response_model=WithdrawalOut)
async def process_withdrawal_route(
    withdrawal_id: int, db: DbSessionDep, gateway: GatewayDep, admin: AdminUser, request: Request
) -> WithdrawalOut:
    withdrawal = await process_withdrawal(db, gateway, await get_withdrawal(db, withdrawal_id))
    _audit_status(request, admin.id, withdrawal.payment_reference, withdrawal.status)
    return WithdrawalOut.model_validate(withdrawal)


@router.post("/admin/withdrawals/{withdrawal_id}/complete", response_model=WithdrawalOut)
async def complete_withdrawal_route(
    withdrawal_id: int, db: DbSessionDep, admin: AdminUser, request: Request
) -> WithdrawalOut:
    withdrawal = await complete_withdrawal(db, await get_withdrawal(db, withdrawal_id))
    _audit_status(request, admin.id, withdrawal.payment_reference, withdrawal.status)
    return WithdrawalOut.model_validate(withdrawal)


@router.post("/admin/withdrawals/{withdrawal_id}/fail", response_model=WithdrawalOut)
async def fail_withdrawal_route(
    withdrawal_id: int,
    payload: WithdrawalFailRequest,
    db: DbSessionDep,
    admin: AdminUser,
    request: Request,
) -> WithdrawalOut:
    withdrawal = await fail_withdrawal(db, await get_withdrawal(db, withdrawal_id), payload.reason)
    _audit_status(request, admin.id, withdrawal.payment_reference, withdrawal.status)
    return WithdrawalOut.model_validate(withdrawal)
