from datetime import date, datetime
from enum import Enum as StrEnumBase

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wishfund.core.identifiers import utc_now
from wishfund.db.session import Base


def Money(**kwargs):
    # floats in Python, exact decimals in the database
    return mapped_column(Numeric(14, 2, asdecimal=False), **kwargs)


class RoleEnum(str, StrEnumBase):
    USER = "user"
    ADMIN = "admin"


class GenderEnum(str, StrEnumBase):
    MALE = "male"
    FEMALE = "female"
    PREFER_NOT_TO_SAY = "prefer_not_to_say"


class FriendshipStatusEnum(str, StrEnumBase):
    ACCEPTED = "accepted"
    BLOCKED = "blocked"


class FriendshipSourceEnum(str, StrEnumBase):
    REFERRAL = "referral"
    MANUAL = "manual"


class ItemTypeEnum(str, StrEnumBase):
    GLOBAL = "global"
    CUSTOM = "custom"


class WishlistStatusEnum(str, StrEnumBase):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class ContributionStatusEnum(str, StrEnumBase):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class AllocationStrategyEnum(str, StrEnumBase):
    PRIORITY = "priority"
    EQUAL = "equal"
    PROPORTIONAL = "proportional"


class TransactionTypeEnum(str, StrEnumBase):
    CONTRIBUTION = "contribution"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"
    FEE = "fee"


class WithdrawalStatusEnum(str, StrEnumBase):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, index=True, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), unique=True, index=True, nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    username: Mapped[str | None] = mapped_column(String(40), unique=True, index=True, nullable=True)
    hashed_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(16), default=RoleEnum.USER.value)
    gender: Mapped[str | None] = mapped_column(String(32), nullable=True)
    dob: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_registration_complete: Mapped[bool] = mapped_column(Boolean, default=False)

    login_retries: Mapped[int] = mapped_column(Integer, default=0)
    last_login_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    otp_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    otp_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    otp_retries: Mapped[int] = mapped_column(Integer, default=0)
    otp_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    password_reset_retries: Mapped[int] = mapped_column(Integer, default=0)
    password_reset_jti: Mapped[str | None] = mapped_column(String(64), nullable=True)
    password_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_suspended: Mapped[bool] = mapped_column(Boolean, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    referred_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    referral_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    wishlists: Mapped[list["Wishlist"]] = relationship(back_populates="owner")
    wallet: Mapped["Wallet | None"] = relationship(back_populates="user", uselist=False)
    referral_codes: Mapped[list["ReferralCode"]] = relationship(
        back_populates="owner",
        foreign_keys="ReferralCode.user_id",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.ADMIN.value


class ReferralCode(Base):
    __tablename__ = "referral_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    referral_code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False)
    used_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    owner: Mapped[User] = relationship(back_populates="referral_codes", foreign_keys=[user_id])


class Friendship(Base):
    __tablename__ = "friendships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    friend_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    status: Mapped[str] = mapped_column(String(16), default=FriendshipStatusEnum.ACCEPTED.value)
    source: Mapped[str] = mapped_column(String(16), default=FriendshipSourceEnum.MANUAL.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    friend: Mapped[User] = relationship(foreign_keys=[friend_id])

    __table_args__ = (
        UniqueConstraint("user_id", "friend_id", name="uq_friendships_pair"),
        CheckConstraint("user_id <> friend_id", name="ck_friendships_not_self"),
    )


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    icon_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class CuratedItem(Base):
    __tablename__ = "curated_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    image_url: Mapped[str] = mapped_column(String(2048))
    price: Mapped[float] = Money()
    popularity: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    item_type: Mapped[str] = mapped_column(String(16), default=ItemTypeEnum.CUSTOM.value)
    gender: Mapped[str] = mapped_column(String(32), default=GenderEnum.PREFER_NOT_TO_SAY.value)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id"), index=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    category: Mapped[Category] = relationship()

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_curated_items_price_positive"),
    )


class WishlistTemplate(Base):
    __tablename__ = "wishlist_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120))
    emoji: Mapped[str | None] = mapped_column(String(16), nullable=True)
    color_theme: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    items: Mapped[list["WishlistTemplateItem"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="WishlistTemplateItem.id",
    )


class WishlistTemplateItem(Base):
    __tablename__ = "wishlist_template_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("wishlist_templates.id", ondelete="CASCADE"), index=True)
    curated_item_id: Mapped[int] = mapped_column(ForeignKey("curated_items.id"), index=True)

    template: Mapped[WishlistTemplate] = relationship(back_populates="items")
    curated_item: Mapped[CuratedItem] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint("template_id", "curated_item_id", name="uq_template_items_pair"),
    )


class Wishlist(Base):
    __tablename__ = "wishlists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    unique_link: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    emoji: Mapped[str | None] = mapped_column(String(16), nullable=True)
    color_theme: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=WishlistStatusEnum.ACTIVE.value, index=True)
    total_contributed: Mapped[float] = Money(default=0)
    contributors_count: Mapped[int] = mapped_column(Integer, default=0)
    views_count: Mapped[int] = mapped_column(Integer, default=0)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    celebration_event: Mapped[str] = mapped_column(String(120), nullable=False)
    celebration_date: Mapped[date] = mapped_column(Date, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    owner: Mapped[User] = relationship(back_populates="wishlists")
    items: Mapped[list["WishlistItem"]] = relationship(
        back_populates="wishlist",
        cascade="all, delete-orphan",
        order_by="WishlistItem.priority",
    )


class WishlistItem(Base):
    __tablename__ = "wishlist_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wishlist_id: Mapped[int] = mapped_column(ForeignKey("wishlists.id", ondelete="CASCADE"), nullable=False, index=True)
    curated_item_id: Mapped[int | None] = mapped_column(ForeignKey("curated_items.id"), nullable=True, index=True)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    price: Mapped[float] = Money(nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    priority: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_contributed: Mapped[float] = Money(default=0)
    contributors_count: Mapped[int] = mapped_column(Integer, default=0)
    views_count: Mapped[int] = mapped_column(Integer, default=0)
    is_funded: Mapped[bool] = mapped_column(Boolean, default=False)
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    unique_link: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    available_balance: Mapped[float] = Money(default=0)
    pending_balance: Mapped[float] = Money(default=0)
    withdrawn_amount: Mapped[float] = Money(default=0)
    is_withdrawable: Mapped[bool] = mapped_column(Boolean, default=True)
    last_withdrawal_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    wishlist: Mapped[Wishlist] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_wishlist_items_price_positive"),
        CheckConstraint("available_balance >= 0", name="ck_wishlist_items_available_non_negative"),
    )

    @property
    def amount_needed(self) -> float:
        return max(0.0, round(float(self.price) - float(self.total_contributed or 0), 2))


class WishlistView(Base):
    __tablename__ = "wishlist_views"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wishlist_id: Mapped[int] = mapped_column(ForeignKey("wishlists.id", ondelete="CASCADE"), index=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    referrer: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    viewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class WishlistItemView(Base):
    __tablename__ = "wishlist_item_views"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wishlist_item_id: Mapped[int] = mapped_column(ForeignKey("wishlist_items.id", ondelete="CASCADE"), index=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    referrer: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    viewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Contribution(Base):
    __tablename__ = "contributions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wishlist_id: Mapped[int] = mapped_column(ForeignKey("wishlists.id"), index=True)
    wishlist_item_id: Mapped[int] = mapped_column(ForeignKey("wishlist_items.id"), index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    receiver_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    contributor_name: Mapped[str] = mapped_column(String(120))
    contributor_email: Mapped[str] = mapped_column(String(320), index=True)
    contributor_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    message: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False)
    amount: Mapped[float] = Money(nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=ContributionStatusEnum.PENDING.value, index=True)
    payment_reference: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    payment_method: Mapped[str] = mapped_column(String(32), default="paystack")
    gateway_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    owner_reply: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    replied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    item: Mapped[WishlistItem] = relationship()
    wishlist: Mapped[Wishlist] = relationship()

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_contributions_amount_positive"),
    )


class Wallet(Base):
    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True)
    available_balance: Mapped[float] = Money(default=0)
    pending_balance: Mapped[float] = Money(default=0)
    total_received: Mapped[float] = Money(default=0)
    total_withdrawn: Mapped[float] = Money(default=0)
    currency: Mapped[str] = mapped_column(String(3), default="NGN")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    user: Mapped[User] = relationship(back_populates="wallet")

    __table_args__ = (
        CheckConstraint("available_balance >= 0", name="ck_wallets_available_non_negative"),
        CheckConstraint("pending_balance >= 0", name="ck_wallets_pending_non_negative"),
    )


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id", ondelete="CASCADE"), index=True)
    type: Mapped[str] = mapped_column(String(16))
    amount: Mapped[float] = Money()
    balance_before: Mapped[float] = Money()
    balance_after: Mapped[float] = Money()
    reference: Mapped[str] = mapped_column(String(160), index=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class PayoutMethod(Base):
    __tablename__ = "payout_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    account_name: Mapped[str] = mapped_column(String(160))
    account_number: Mapped[str] = mapped_column(String(10))
    bank_name: Mapped[str] = mapped_column(String(160))
    bank_code: Mapped[str] = mapped_column(String(16))
    bvn: Mapped[str | None] = mapped_column(String(11), nullable=True)
    recipient_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    is_normal_transfer: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id", ondelete="CASCADE"), index=True)
    payout_method_id: Mapped[int | None] = mapped_column(
        ForeignKey("payout_methods.id", ondelete="SET NULL"), nullable=True, index=True
    )
    amount: Mapped[float] = Money()
    fee: Mapped[float] = Money(default=0)
    net_amount: Mapped[float] = Money()
    status: Mapped[str] = mapped_column(String(16), default=WithdrawalStatusEnum.PENDING.value, index=True)
    payment_reference: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    transfer_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    payout_method: Mapped[PayoutMethod | None] = relationship(lazy="selectin")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawal_requests_amount_positive"),
    )


class ItemWithdrawal(Base):
    __tablename__ = "item_withdrawals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wishlist_item_id: Mapped[int] = mapped_column(ForeignKey("wishlist_items.id"), index=True)
    wishlist_id: Mapped[int] = mapped_column(ForeignKey("wishlists.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id", ondelete="CASCADE"), index=True)
    amount: Mapped[float] = Money()
    status: Mapped[str] = mapped_column(String(16), default="completed")
    reference: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_item_withdrawals_amount_positive"),
    )
