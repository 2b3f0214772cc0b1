import logging

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from wishfund.core.config import settings
from wishfund.core.errors import AppError, not_found
from wishfund.core.identifiers import random_code, utc_now
from wishfund.models.models import (
    Friendship,
    FriendshipSourceEnum,
    FriendshipStatusEnum,
    ReferralCode,
    RoleEnum,
    User,
)
from wishfund.services.wallets import get_or_create_wallet

logger = logging.getLogger("wishfund.referrals")


async def generate_referral_codes(db: AsyncSession, user_id: int, count: int | None = None) -> list[ReferralCode]:
    """Create ``count`` unique ``JOY-XXXXX`` codes for a user."""
    count = count or settings.referral_codes_per_user
    created: list[ReferralCode] = []
    taken: set[str] = set()
    while len(created) < count:
        code = f"{settings.referral_code_prefix}-{random_code(5)}"
        if code in taken:
            continue
        exists = await db.scalar(select(ReferralCode.id).where(ReferralCode.referral_code == code))
        if exists:
            continue
        taken.add(code)
        referral = ReferralCode(user_id=user_id, referral_code=code, is_used=False)
        db.add(referral)
        created.append(referral)
    await db.flush()
    return created


async def find_code(db: AsyncSession, code: str) -> ReferralCode | None:
    result = await db.execute(select(ReferralCode).where(ReferralCode.referral_code == code.strip().upper()))
    return result.scalar_one_or_none()


async def find_user_by_code(db: AsyncSession, code: str) -> User | None:
    referral = await find_code(db, code)
    if referral is None:
        return None
    return await db.get(User, referral.user_id)


def is_default_admin(user: User | None) -> bool:
    return bool(user and user.email and user.email.lower() == settings.default_admin_email.lower())


async def find_friendship(db: AsyncSession, user_id: int, friend_id: int) -> Friendship | None:
    result = await db.execute(
        select(Friendship).where(Friendship.user_id == user_id, Friendship.friend_id == friend_id)
    )
    return result.scalar_one_or_none()


async def create_friendship(
    db: AsyncSession,
    user_id: int,
    friend_id: int,
    source: FriendshipSourceEnum = FriendshipSourceEnum.MANUAL,
) -> None:
    """Store both directions of a friendship; existing rows are left alone."""
    for owner, other in ((user_id, friend_id), (friend_id, user_id)):
        if await find_friendship(db, owner, other) is None:
            db.add(
                Friendship(
                    user_id=owner,
                    friend_id=other,
                    status=FriendshipStatusEnum.ACCEPTED.value,
                    source=source.value,
                )
            )
    await db.flush()


async def remove_friendship(db: AsyncSession, user_id: int, friend_id: int) -> None:
    if await find_friendship(db, user_id, friend_id) is None:
        raise not_found("Friendship")
    await db.execute(
        delete(Friendship).where(
            or_(
                (Friendship.user_id == user_id) & (Friendship.friend_id == friend_id),
                (Friendship.user_id == friend_id) & (Friendship.friend_id == user_id),
            )
        )
    )
    await db.commit()


async def apply_referral(db: AsyncSession, user: User, code: str) -> User:
    """Link a registering user to the owner of ``code``.

    Codes are single use, except the default admin's which anyone may use.
    """
    referral = await find_code(db, code)
    if referral is None:
        raise AppError("Invalid referral code")
    referrer = await db.get(User, referral.user_id)
    if referrer is None:
        raise AppError("Invalid referral code")
    reusable = is_default_admin(referrer)
    if referral.is_used and not reusable:
        raise AppError("Referral code has already been used")
    if referrer.id == user.id:
        raise AppError("You cannot use your own referral code")

    user.referred_by_id = referrer.id
    if not reusable:
        referral.is_used = True
        referral.used_by_user_id = user.id
        referral.used_at = utc_now()

    if await find_friendship(db, user.id, referrer.id) is None:
        await create_friendship(db, user.id, referrer.id, FriendshipSourceEnum.REFERRAL)
        referrer.referral_count = (referrer.referral_count or 0) + 1
    logger.info("User %s referred by %s via %s", user.id, referrer.id, referral.referral_code)
    return referrer


async def add_friend(db: AsyncSession, user: User, email: str | None, referral_code: str | None) -> User:
    if email:
        result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
        friend = result.scalar_one_or_none()
        if friend is None or friend.is_deleted:
            raise not_found("User")
    elif referral_code:
        friend = await find_user_by_code(db, referral_code)
        if friend is None:
            raise AppError("Invalid referral code", 404)
    else:
        raise AppError("Email or referral code is required")

    if friend.id == user.id:
        raise AppError("Cannot add yourself as a friend")
    if await find_friendship(db, user.id, friend.id) is not None:
        raise AppError("Already friends")

    await create_friendship(db, user.id, friend.id, FriendshipSourceEnum.MANUAL)
    await db.commit()
    logger.info("Friendship created %s <-> %s", user.id, friend.id)
    return friend


async def referral_stats(db: AsyncSession, user: User) -> dict[str, int]:
    total = await db.scalar(select(func.count()).select_from(ReferralCode).where(ReferralCode.user_id == user.id))
    used = await db.scalar(
        select(func.count()).select_from(ReferralCode).where(
            ReferralCode.user_id == user.id, ReferralCode.is_used.is_(True)
        )
    )
    friends = await db.scalar(
        select(func.count()).select_from(Friendship).where(
            Friendship.user_id == user.id,
            Friendship.status == FriendshipStatusEnum.ACCEPTED.value,
        )
    )
    return {
        "total_codes": int(total or 0),
        "used_codes": int(used or 0),
        "unused_codes": int(total or 0) - int(used or 0),
        "referral_count": user.referral_count or 0,
        "total_friends": int(friends or 0),
    }


async def seed_default_admin(db: AsyncSession) -> User:
    """Make sure the bootstrap admin exists with a wallet and referral codes."""
    email = settings.default_admin_email.lower()
    result = await db.execute(select(User).where(User.email == email))
    admin = result.scalar_one_or_none()
    if admin is None:
        admin = User(
            email=email,
            first_name="WishFund",
            last_name="Admin",
            username="admin",
            role=RoleEnum.ADMIN.value,
            is_registration_complete=True,
        )
        db.add(admin)
        await db.flush()
        logger.info("Default admin created user_id=%s", admin.id)
    elif admin.role != RoleEnum.ADMIN.value:
        admin.role = RoleEnum.ADMIN.value

    await get_or_create_wallet(db, admin.id)
    existing = await db.scalar(select(func.count()).select_from(ReferralCode).where(ReferralCode.user_id == admin.id))
    if not existing:
        await generate_referral_codes(db, admin.id)
    await db.commit()
    return admin
