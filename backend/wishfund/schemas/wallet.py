from datetime import datetime

from pydantic import BaseModel, Field

from wishfund.schemas.common import Pagination


class WalletOut(BaseModel):
    id: int
    available_balance: float
    pending_balance: float
    total_received: float
    total_withdrawn: float
    currency: str
    updated_at: datetime

    model_config = {"from_attributes": True}


class WalletSummary(BaseModel):
    available_balance: float
    pending_balance: float
    total_received: float
    total_withdrawn: float
    pending_withdrawals: int
    pending_withdrawals_amount: float
    items_available_balance: float
    currency: str


class TransactionOut(BaseModel):
    id: int
    type: str
    amount: float
    balance_before: float
    balance_after: float
    reference: str
    description: str | None = None
    details: dict | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionPage(BaseModel):
    transactions: list[TransactionOut]
    pagination: Pagination


class BankOut(BaseModel):
    name: str
    code: str


class AccountVerifyRequest(BaseModel):
    account_number: str = Field(pattern=r"^\d{10}$")
    bank_code: str = Field(min_length=1, max_length=16)


class AccountVerifyResult(BaseModel):
    account_number: str
    account_name: str
    bank_code: str


class PayoutMethodCreate(AccountVerifyRequest):
    bvn: str | None = Field(default=None, pattern=r"^\d{11}$")
    is_primary: bool = False


class PayoutMethodOut(BaseModel):
    id: int
    account_name: str
    account_number: str
    bank_name: str
    bank_code: str
    is_verified: bool
    is_primary: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class WithdrawalCreate(BaseModel):
    amount: float = Field(gt=0)
    payout_method_id: int | None = None
    account_number: str | None = Field(default=None, pattern=r"^\d{10}$")
    bank_code: str | None = Field(default=None, max_length=16)


class WithdrawalOut(BaseModel):
    id: int
    amount: float
    fee: float
    net_amount: float
    status: str
    payment_reference: str
    transfer_code: str | None = None
    failure_reason: str | None = None
    processed_at: datetime | None = None
    created_at: datetime
    payout_method: PayoutMethodOut | None = None

    model_config = {"from_attributes": True}


class WithdrawalPage(BaseModel):
    withdrawals: list[WithdrawalOut]
    pagination: Pagination


class WithdrawalFailRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=500)
