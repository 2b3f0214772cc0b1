import logging

from fastapi import APIRouter, Query, Request, status
from sqlalchemy import func, or_, select

from wishfund.api.deps import CurrentUser, DbSessionDep
from wishfund.api.routes.auth import apply_new_password
from wishfund.core.audit import AuditAction, audit_log
from wishfund.core.errors import AppError, not_found
from wishfund.core.mailer import send_password_changed_email, send_welcome_email
from wishfund.core.security import get_password_hash
from wishfund.models.models import ReferralCode, User
from wishfund.schemas.auth import ChangePasswordRequest, MessageResponse, UserProfile, UserPublic, UserUpdate
from wishfund.schemas.social import ReferralCodeOut, ReferralStats
from wishfund.services.referrals import apply_referral, find_user_by_code, generate_referral_codes, referral_stats
from wishfund.services.wallets import get_or_create_wallet


router = APIRouter(prefix="/users", tags=["users"])
logger = logging.getLogger("wishfund.users")

UNIQUE_FIELDS = (("email", "Email"), ("phone", "Phone number"), ("username", "Username"))


def _registration_ready(user: User) -> bool:
    return all(
        (
            user.email,
            user.first_name,
            user.last_name,
            user.phone,
            user.dob,
            user.username,
            user.gender,
            user.referred_by_id,
            user.hashed_password,
        )
    )


@router.get("/profile", response_model=UserProfile)
async def get_profile(current_user: CurrentUser) -> UserProfile:
    return UserProfile.model_validate(current_user)


@router.patch("/profile", response_model=UserProfile)
async def update_profile(
    payload: UserUpdate,
    db: DbSessionDep,
    current_user: CurrentUser,
    request: Request,
) -> UserProfile:
    data = payload.model_dump(exclude_unset=True, exclude_none=True)

    for field, label in UNIQUE_FIELDS:
        value = data.get(field)
        if value is None or value == getattr(current_user, field):
            continue
        column = getattr(User, field)
        taken = await db.scalar(select(User.id).where(column == value, User.id != current_user.id))
        if taken:
            raise AppError(f"{label} is already in use", status.HTTP_409_CONFLICT)

    referral_code = data.pop("referral_code", None)
    password = data.pop("password", None)
    if password is not None:
        if current_user.hashed_password:
            raise AppError("Use change-password to update your password")
        current_user.hashed_password = get_password_hash(password)

    for field, value in data.items():
        if field == "gender":
            value = value.value if hasattr(value, "value") else value
        setattr(current_user, field, value)

    if referral_code and current_user.referred_by_id is None:
        await apply_referral(db, current_user, referral_code)

    newly_registered = not current_user.is_registration_complete and _registration_ready(current_user)
    if newly_registered:
        current_user.is_registration_complete = True
        await get_or_create_wallet(db, current_user.id)
        await generate_referral_codes(db, current_user.id)

    await db.commit()
    await db.refresh(current_user)

    if newly_registered:
        send_welcome_email(current_user.email, current_user.first_name)
        audit_log(AuditAction.REGISTRATION_COMPLETE, request=request, user_id=current_user.id)
        logger.info("Registration complete user_id=%s", current_user.id)
    return UserProfile.model_validate(current_user)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    payload: ChangePasswordRequest,
    db: DbSessionDep,
    current_user: CurrentUser,
    request: Request,
) -> MessageResponse:
    apply_new_password(current_user, payload.password, payload.confirm_password)
    await db.commit()
    send_password_changed_email(current_user.email, current_user.first_name)
    audit_log(AuditAction.PASSWORD_CHANGE, request=request, user_id=current_user.id)
    return MessageResponse(message="Password changed successfully")


@router.get("/search", response_model=list[UserPublic])
async def search_users(
    db: DbSessionDep,
    current_user: CurrentUser,
    q: str = Query(min_length=2, max_length=100),
    limit: int = Query(default=20, ge=1, le=50),
) -> list[UserPublic]:
    pattern = f"%{q.strip().lower()}%"
    result = await db.execute(
        select(User)
        .where(
            or_(func.lower(User.username).like(pattern), func.lower(User.email).like(pattern)),
            User.id != current_user.id,
            User.is_deleted.is_(False),
            User.is_suspended.is_(False),
        )
        .order_by(User.username.asc())
        .limit(limit)
    )
    return [UserPublic.model_validate(user) for user in result.scalars().all()]


@router.get("/referral-codes", response_model=list[ReferralCodeOut])
async def my_referral_codes(db: DbSessionDep, current_user: CurrentUser) -> list[ReferralCodeOut]:
    result = await db.execute(
        select(ReferralCode)
        .where(ReferralCode.user_id == current_user.id, ReferralCode.is_used.is_(False))
        .order_by(ReferralCode.created_at.desc(), ReferralCode.id.desc())
    )
    return [ReferralCodeOut.model_validate(code) for code in result.scalars().all()]


@router.get("/referral-stats", response_model=ReferralStats)
async def my_referral_stats(db: DbSessionDep, current_user: CurrentUser) -> ReferralStats:
    return ReferralStats(**await referral_stats(db, current_user))


@router.get("/by-referral/{code}", response_model=UserPublic)
async def find_referrer(code: str, db: DbSessionDep, current_user: CurrentUser) -> UserPublic:
    referrer = await find_user_by_code(db, code)
    if referrer is None or referrer.is_deleted:
        raise not_found("User")
    return UserPublic.model_validate(referrer)
