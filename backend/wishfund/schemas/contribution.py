from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from wishfund.models.models import AllocationStrategyEnum
from wishfund.schemas.common import Pagination


class ContributorDetails(BaseModel):
    contributor_name: str = Field(min_length=1, max_length=120)
    contributor_email: EmailStr
    contributor_phone: str | None = Field(default=None, max_length=32)
    message: str | None = Field(default=None, max_length=1000)
    is_anonymous: bool = False
    amount: float = Field(gt=0)

    @field_validator("contributor_name")
    @classmethod
    def _name_strip(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Contributor name is required")
        return normalized

    @field_validator("contributor_email")
    @classmethod
    def _email_lower(cls, value: str) -> str:
        return value.lower()

    @field_validator("message")
    @classmethod
    def _message_strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class ItemContributionCreate(ContributorDetails):
    wishlist_item_id: int


class WishlistContributionCreate(ContributorDetails):
    wishlist_id: int
    strategy: AllocationStrategyEnum = AllocationStrategyEnum.PRIORITY


class ContributionInitiated(BaseModel):
    contribution_id: int
    payment_reference: str
    amount: float
    payment_url: str


class AllocationOut(BaseModel):
    item_id: int
    item_name: str
    amount: float


class BulkContributionInitiated(BaseModel):
    payment_reference: str
    total_amount: float
    net_amount: float
    platform_fee: float
    items_count: int
    strategy: AllocationStrategyEnum
    allocations: list[AllocationOut]
    payment_url: str


class ContributionOut(BaseModel):
    id: int
    wishlist_id: int
    wishlist_item_id: int
    contributor_name: str
    message: str | None = None
    is_anonymous: bool
    amount: float
    status: str
    owner_reply: str | None = None
    replied_at: datetime | None = None
    paid_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ContributionDetail(ContributionOut):
    """Owner and contributor views include contact details and the reference."""

    contributor_email: str
    contributor_phone: str | None = None
    payment_reference: str
    item_name: str | None = None


class ContributionPage(BaseModel):
    contributions: list[ContributionOut]
    pagination: Pagination


class ContributionDetailPage(BaseModel):
    contributions: list[ContributionDetail]
    pagination: Pagination


class ReplyRequest(BaseModel):
    owner_reply: str | None = Field(default=None, max_length=1000)


class RefundRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=500)


class PaymentVerification(BaseModel):
    reference: str
    status: str
    amount: float
    contributor_name: str | None = None
    paid_at: datetime | None = None
    contributions_count: int
