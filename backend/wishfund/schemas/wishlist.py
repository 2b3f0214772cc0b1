from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from wishfund.models.models import WishlistStatusEnum


class WishlistItemInput(BaseModel):
    curated_item_id: int
    quantity: int = Field(default=1, ge=1, le=100)


class WishlistCreate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    emoji: str | None = Field(default=None, max_length=16)
    color_theme: str | None = Field(default=None, max_length=32)
    celebration_event: str = Field(min_length=1, max_length=120)
    celebration_date: date
    is_public: bool = True
    items: list[WishlistItemInput] | None = None
    template_id: int | None = None

    @field_validator("celebration_event")
    @classmethod
    def _event_strip(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Celebration event is required")
        return normalized

    @field_validator("name", "description")
    @classmethod
    def _text_strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class WishlistUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    emoji: str | None = Field(default=None, max_length=16)
    color_theme: str | None = Field(default=None, max_length=32)
    is_public: bool | None = None
    status: Literal["draft", "active", "completed"] | None = None


class WishlistItemsAdd(BaseModel):
    items: list[WishlistItemInput] = Field(min_length=1)


class WishlistItemOut(BaseModel):
    id: int
    wishlist_id: int
    curated_item_id: int | None = None
    category_id: int | None = None
    name: str
    image_url: str | None = None
    price: float
    quantity: int
    priority: int | None = None
    total_contributed: float
    contributors_count: int
    views_count: int
    is_funded: bool
    funded_at: datetime | None = None
    unique_link: str
    amount_needed: float

    model_config = {"from_attributes": True}


class WishlistOut(BaseModel):
    id: int
    user_id: int
    name: str | None = None
    description: str | None = None
    unique_link: str
    share_url: str
    emoji: str | None = None
    color_theme: str | None = None
    status: WishlistStatusEnum
    total_contributed: float
    contributors_count: int
    views_count: int
    is_public: bool
    celebration_event: str
    celebration_date: date
    expires_at: datetime | None = None
    created_at: datetime
    owner_name: str | None = None
    items: list[WishlistItemOut] = []


class TopContributor(BaseModel):
    rank: int
    contributor_name: str
    initials: str
    total_amount: float
    contribution_count: int
    last_contribution: datetime | None = None


class WishlistStats(BaseModel):
    wishlist_id: int
    total_contributed: float
    contributors_count: int
    views_count: int
    items_count: int
    funded_items_count: int
    total_value: float
    completion_percentage: int
    top_contributors: list[TopContributor]


class ItemStats(BaseModel):
    item_id: int
    name: str
    price: float
    total_contributed: float
    remaining_amount: float
    funding_percentage: int
    contributors_count: int
    contributions_count: int
    views_count: int
    is_funded: bool


class ItemBalance(BaseModel):
    item_id: int
    total_contributed: float
    available_balance: float
    pending_balance: float
    withdrawn_amount: float
    is_withdrawable: bool
    last_withdrawal_at: datetime | None = None

    model_config = {"from_attributes": True}


class ItemWithdrawRequest(BaseModel):
    amount: float | None = Field(default=None, gt=0)
    payout_method_id: int | None = None
    account_number: str | None = Field(default=None, pattern=r"^\d{10}$")
    bank_code: str | None = Field(default=None, max_length=16)


class ItemWithdrawalOut(BaseModel):
    id: int
    wishlist_item_id: int
    wishlist_id: int
    amount: float
    status: str
    reference: str
    processed_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ItemWithdrawResult(BaseModel):
    message: str
    withdrawal: ItemWithdrawalOut
    wallet_balance: float
    payout_reference: str | None = None
    payout_status: str | None = None


class WithdrawAllResult(BaseModel):
    message: str
    total_withdrawn: float
    items_withdrawn: int
    withdrawals: list[ItemWithdrawalOut]
