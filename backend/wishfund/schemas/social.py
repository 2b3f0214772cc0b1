from datetime import date, datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from wishfund.schemas.common import Pagination


class AddFriendRequest(BaseModel):
    email: EmailStr | None = None
    referral_code: str | None = Field(default=None, max_length=32)

    @field_validator("email")
    @classmethod
    def _email_lower(cls, value: str | None) -> str | None:
        return value.lower() if value else None

    @field_validator("referral_code")
    @classmethod
    def _code_upper(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().upper()
        return normalized or None


class FriendOut(BaseModel):
    id: int
    name: str
    username: str | None = None
    email: str | None = None
    initials: str
    has_active_wishlist: bool
    wishlist_count: int
    friend_since: datetime
    source: str


class FriendList(BaseModel):
    friends: list[FriendOut]
    total_friends: int
    pagination: Pagination


class FriendItemPreview(BaseModel):
    id: int
    name: str
    image_url: str | None = None
    price: float
    total_contributed: float
    is_funded: bool
    priority: int | None = None

    model_config = {"from_attributes": True}


class FriendWishlistOut(BaseModel):
    id: int
    name: str | None = None
    unique_link: str
    emoji: str | None = None
    color_theme: str | None = None
    celebration_event: str
    celebration_date: date
    owner_id: int
    owner_name: str
    items_count: int
    total_value: float
    total_contributed: float
    top_items: list[FriendItemPreview]


class ReferralCodeOut(BaseModel):
    id: int
    referral_code: str
    is_used: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class ReferralStats(BaseModel):
    total_codes: int
    used_codes: int
    unused_codes: int
    referral_count: int
    total_friends: int
