from alembic import op
import sqlalchemy as sa


revision = "20261018_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _money(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Numeric(14, 2), **kwargs)


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("first_name", sa.String(length=80), nullable=True),
        sa.Column("last_name", sa.String(length=80), nullable=True),
        sa.Column("username", sa.String(length=40), nullable=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("gender", sa.String(length=32), nullable=True),
        sa.Column("dob", sa.Date(), nullable=True),
        sa.Column("is_registration_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("login_retries", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("last_login_attempt_at"),
        sa.Column("otp_hash", sa.String(length=255), nullable=True),
        _timestamp("otp_expires_at"),
        sa.Column("otp_retries", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("otp_requested_at"),
        sa.Column("password_reset_retries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("password_reset_jti", sa.String(length=64), nullable=True),
        _timestamp("password_changed_at"),
        sa.Column("is_suspended", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("last_login"),
        sa.Column("referred_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("referral_count", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at", nullable=False),
        _timestamp("updated_at", nullable=False),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_phone", "users", ["phone"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "referral_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("referral_code", sa.String(length=32), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _timestamp("used_at"),
        _timestamp("created_at", nullable=False),
    )
    op.create_index("ix_referral_codes_user_id", "referral_codes", ["user_id"])
    op.create_index("ix_referral_codes_referral_code", "referral_codes", ["referral_code"], unique=True)

    op.create_table(
        "friendships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("friend_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="accepted"),
        sa.Column("source", sa.String(length=16), nullable=False, server_default="manual"),
        _timestamp("created_at", nullable=False),
        sa.UniqueConstraint("user_id", "friend_id", name="uq_friendships_pair"),
        sa.CheckConstraint("user_id <> friend_id", name="ck_friendships_not_self"),
    )
    op.create_index("ix_friendships_user_id", "friendships", ["user_id"])
    op.create_index("ix_friendships_friend_id", "friendships", ["friend_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("icon_url", sa.String(length=512), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at", nullable=False),
    )
    op.create_index("ix_categories_name", "categories", ["name"], unique=True)

    op.create_table(
        "curated_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("image_url", sa.String(length=2048), nullable=False),
        _money("price", nullable=False),
        sa.Column("popularity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("item_type", sa.String(length=16), nullable=False, server_default="custom"),
        sa.Column("gender", sa.String(length=32), nullable=False, server_default="prefer_not_to_say"),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _timestamp("created_at", nullable=False),
        _timestamp("updated_at", nullable=False),
        sa.CheckConstraint("price > 0", name="ck_curated_items_price_positive"),
    )
    op.create_index("ix_curated_items_category_id", "curated_items", ["category_id"])

    op.create_table(
        "wishlist_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("emoji", sa.String(length=16), nullable=True),
        sa.Column("color_theme", sa.String(length=32), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _timestamp("created_at", nullable=False),
    )

    op.create_table(
        "wishlist_template_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "template_id",
            sa.Integer(),
            sa.ForeignKey("wishlist_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("curated_item_id", sa.Integer(), sa.ForeignKey("curated_items.id"), nullable=False),
        sa.UniqueConstraint("template_id", "curated_item_id", name="uq_template_items_pair"),
    )
    op.create_index("ix_wishlist_template_items_template_id", "wishlist_template_items", ["template_id"])
    op.create_index("ix_wishlist_template_items_curated_item_id", "wishlist_template_items", ["curated_item_id"])

    op.create_table(
        "wishlists",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("description", sa.String(length=2000), nullable=True),
        sa.Column("unique_link", sa.String(length=255), nullable=False),
        sa.Column("emoji", sa.String(length=16), nullable=True),
        sa.Column("color_theme", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        _money("total_contributed", nullable=False, server_default="0"),
        sa.Column("contributors_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("views_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("celebration_event", sa.String(length=120), nullable=False),
        sa.Column("celebration_date", sa.Date(), nullable=False),
        _timestamp("expires_at"),
        _timestamp("created_at", nullable=False),
        _timestamp("updated_at", nullable=False),
    )
    op.create_index("ix_wishlists_user_id", "wishlists", ["user_id"])
    op.create_index("ix_wishlists_unique_link", "wishlists", ["unique_link"], unique=True)
    op.create_index("ix_wishlists_status", "wishlists", ["status"])

    op.create_table(
        "wishlist_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("wishlist_id", sa.Integer(), sa.ForeignKey("wishlists.id", ondelete="CASCADE"), nullable=False),
        sa.Column("curated_item_id", sa.Integer(), sa.ForeignKey("curated_items.id"), nullable=True),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("image_url", sa.String(length=2048), nullable=True),
        _money("price", nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("priority", sa.Integer(), nullable=True),
        _money("total_contributed", nullable=False, server_default="0"),
        sa.Column("contributors_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("views_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_funded", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("funded_at"),
        sa.Column("unique_link", sa.String(length=255), nullable=False),
        _money("available_balance", nullable=False, server_default="0"),
        _money("pending_balance", nullable=False, server_default="0"),
        _money("withdrawn_amount", nullable=False, server_default="0"),
        sa.Column("is_withdrawable", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("last_withdrawal_at"),
        _timestamp("created_at", nullable=False),
        _timestamp("updated_at", nullable=False),
        sa.CheckConstraint("price > 0", name="ck_wishlist_items_price_positive"),
        sa.CheckConstraint("available_balance >= 0", name="ck_wishlist_items_available_non_negative"),
    )
    op.create_index("ix_wishlist_items_wishlist_id", "wishlist_items", ["wishlist_id"])
    op.create_index("ix_wishlist_items_curated_item_id", "wishlist_items", ["curated_item_id"])
    op.create_index("ix_wishlist_items_unique_link", "wishlist_items", ["unique_link"], unique=True)

    for table, parent, column in (
        ("wishlist_views", "wishlists", "wishlist_id"),
        ("wishlist_item_views", "wishlist_items", "wishlist_item_id"),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(column, sa.Integer(), sa.ForeignKey(f"{parent}.id", ondelete="CASCADE"), nullable=False),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("user_agent", sa.String(length=512), nullable=True),
            sa.Column("referrer", sa.String(length=2048), nullable=True),
            _timestamp("viewed_at", nullable=False),
        )
        op.create_index(f"ix_{table}_{column}", table, [column])

    op.create_table(
        "contributions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("wishlist_id", sa.Integer(), sa.ForeignKey("wishlists.id"), nullable=False),
        sa.Column("wishlist_item_id", sa.Integer(), sa.ForeignKey("wishlist_items.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("receiver_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("contributor_name", sa.String(length=120), nullable=False),
        sa.Column("contributor_email", sa.String(length=320), nullable=False),
        sa.Column("contributor_phone", sa.String(length=32), nullable=True),
        sa.Column("message", sa.String(length=1000), nullable=True),
        sa.Column("is_anonymous", sa.Boolean(), nullable=False, server_default=sa.false()),
        _money("amount", nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("payment_reference", sa.String(length=128), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False, server_default="paystack"),
        sa.Column("gateway_reference", sa.String(length=128), nullable=True),
        sa.Column("owner_reply", sa.String(length=1000), nullable=True),
        _timestamp("replied_at"),
        sa.Column("refund_reason", sa.String(length=500), nullable=True),
        _timestamp("paid_at"),
        _timestamp("created_at", nullable=False),
        _timestamp("updated_at", nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_contributions_amount_positive"),
    )
    op.create_index("ix_contributions_wishlist_id", "contributions", ["wishlist_id"])
    op.create_index("ix_contributions_wishlist_item_id", "contributions", ["wishlist_item_id"])
    op.create_index("ix_contributions_user_id", "contributions", ["user_id"])
    op.create_index("ix_contributions_receiver_id", "contributions", ["receiver_id"])
    op.create_index("ix_contributions_contributor_email", "contributions", ["contributor_email"])
    op.create_index("ix_contributions_status", "contributions", ["status"])
    op.create_index("ix_contributions_payment_reference", "contributions", ["payment_reference"], unique=True)

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        _money("available_balance", nullable=False, server_default="0"),
        _money("pending_balance", nullable=False, server_default="0"),
        _money("total_received", nullable=False, server_default="0"),
        _money("total_withdrawn", nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
        _timestamp("created_at", nullable=False),
        _timestamp("updated_at", nullable=False),
        sa.CheckConstraint("available_balance >= 0", name="ck_wallets_available_non_negative"),
        sa.CheckConstraint("pending_balance >= 0", name="ck_wallets_pending_non_negative"),
    )
    op.create_index("ix_wallets_user_id", "wallets", ["user_id"], unique=True)

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("wallet_id", sa.Integer(), sa.ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        _money("amount", nullable=False),
        _money("balance_before", nullable=False),
        _money("balance_after", nullable=False),
        sa.Column("reference", sa.String(length=160), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        _timestamp("created_at", nullable=False),
    )
    op.create_index("ix_wallet_transactions_user_id", "wallet_transactions", ["user_id"])
    op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"])
    op.create_index("ix_wallet_transactions_reference", "wallet_transactions", ["reference"])

    op.create_table(
        "payout_methods",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("account_name", sa.String(length=160), nullable=False),
        sa.Column("account_number", sa.String(length=10), nullable=False),
        sa.Column("bank_name", sa.String(length=160), nullable=False),
        sa.Column("bank_code", sa.String(length=16), nullable=False),
        sa.Column("bvn", sa.String(length=11), nullable=True),
        sa.Column("recipient_code", sa.String(length=64), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_normal_transfer", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at", nullable=False),
    )
    op.create_index("ix_payout_methods_user_id", "payout_methods", ["user_id"])

    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("wallet_id", sa.Integer(), sa.ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "payout_method_id",
            sa.Integer(),
            sa.ForeignKey("payout_methods.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _money("amount", nullable=False),
        _money("fee", nullable=False, server_default="0"),
        _money("net_amount", nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("payment_reference", sa.String(length=64), nullable=False),
        sa.Column("transfer_code", sa.String(length=64), nullable=True),
        sa.Column("failure_reason", sa.String(length=500), nullable=True),
        _timestamp("processed_at"),
        _timestamp("created_at", nullable=False),
        _timestamp("updated_at", nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_withdrawal_requests_amount_positive"),
    )
    op.create_index("ix_withdrawal_requests_user_id", "withdrawal_requests", ["user_id"])
    op.create_index("ix_withdrawal_requests_wallet_id", "withdrawal_requests", ["wallet_id"])
    op.create_index("ix_withdrawal_requests_payout_method_id", "withdrawal_requests", ["payout_method_id"])
    op.create_index("ix_withdrawal_requests_status", "withdrawal_requests", ["status"])
    op.create_index(
        "ix_withdrawal_requests_payment_reference",
        "withdrawal_requests",
        ["payment_reference"],
        unique=True,
    )

    op.create_table(
        "item_withdrawals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("wishlist_item_id", sa.Integer(), sa.ForeignKey("wishlist_items.id"), nullable=False),
        sa.Column("wishlist_id", sa.Integer(), sa.ForeignKey("wishlists.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("wallet_id", sa.Integer(), sa.ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False),
        _money("amount", nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
        sa.Column("reference", sa.String(length=64), nullable=False),
        _timestamp("processed_at"),
        _timestamp("created_at", nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_item_withdrawals_amount_positive"),
    )
    op.create_index("ix_item_withdrawals_wishlist_item_id", "item_withdrawals", ["wishlist_item_id"])
    op.create_index("ix_item_withdrawals_wishlist_id", "item_withdrawals", ["wishlist_id"])
    op.create_index("ix_item_withdrawals_user_id", "item_withdrawals", ["user_id"])
    op.create_index("ix_item_withdrawals_wallet_id", "item_withdrawals", ["wallet_id"])
    op.create_index("ix_item_withdrawals_reference", "item_withdrawals", ["reference"], unique=True)


def downgrade() -> None:
    for table in (
        "item_withdrawals",
        "withdrawal_requests",
        "payout_methods",
        "wallet_transactions",
        "wallets",
        "contributions",
        "wishlist_item_views",
        "wishlist_views",
        "wishlist_items",
        "wishlists",
        "wishlist_template_items",
        "wishlist_templates",
        "curated_items",
        "categories",
        "friendships",
        "referral_codes",
        "users",
    ):
        op.drop_table(table)
