from datetime import timedelta
import logging
from typing import TypedDict
from uuid import uuid4

from fastapi import APIRouter, Cookie, Request, Response, status
from sqlalchemy import select

from wishfund.api.deps import DbSessionDep
from wishfund.core.audit import AuditAction, audit_log, audit_sign_in
from wishfund.core.config import settings
from wishfund.core.errors import AppError, not_found, unauthorized
from wishfund.core.identifiers import as_utc, utc_now
from wishfund.core.mailer import (
    send_login_email,
    send_otp_email,
    send_otp_sms,
    send_password_changed_email,
    send_password_reset_email,
)
from wishfund.core.rate_limit import check_rate_limit
from wishfund.core.security import (
    create_access_token,
    create_password_reset_token,
    create_refresh_token,
    decode_password_reset_token,
    decode_refresh_token,
    generate_otp,
    get_password_hash,
    pwd_context,
    verify_password,
)
from wishfund.models.models import User
from wishfund.schemas.auth import (
    AuthResponse,
    ForgotPasswordRequest,
    MessageResponse,
    ResetPasswordRequest,
    SendOtpRequest,
    SignInRequest,
    SignUpRequest,
    SignUpResponse,
    UserProfile,
    VerifyOtpRequest,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("wishfund.auth")

OTP_WINDOW = timedelta(hours=1)


class CookieOptions(TypedDict, total=False):
    samesite: str
    secure: bool


def _cookie_options() -> CookieOptions:
    """Lax cookies over HTTP locally; cross-site secure cookies everywhere else."""
    if settings.is_local:
        return {"samesite": "lax", "secure": False}
    return {"samesite": "none", "secure": True}


def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        "access_token",
        token,
        httponly=True,
        max_age=settings.access_token_expire_minutes * 60,
        path="/",
        **_cookie_options(),
    )


def _set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        "refresh_token",
        token,
        httponly=True,
        max_age=settings.refresh_token_expire_minutes * 60,
        path="/",
        **_cookie_options(),
    )


def start_session(response: Response, user: User) -> None:
    _set_auth_cookie(response, create_access_token(str(user.id)))
    _set_refresh_cookie(response, create_refresh_token(str(user.id)))


async def _find_user(db, email: str | None, phone: str | None) -> User | None:
    if email:
        result = await db.execute(select(User).where(User.email == email))
    elif phone:
        result = await db.execute(select(User).where(User.phone == phone))
    else:
        raise AppError("Either email or phone number is required")
    return result.scalar_one_or_none()


def _ensure_active(user: User | None) -> User:
    if user is None:
        raise not_found("User")
    if user.is_suspended:
        raise unauthorized("Your account is currently suspended")
    if user.is_deleted:
        raise not_found("Account")
    return user


def issue_otp(user: User, request: Request | None = None) -> None:
    """Generate, store and deliver a fresh OTP; caller commits."""
    now = utc_now()
    requested_at = as_utc(user.otp_requested_at)
    if requested_at and now - requested_at >= OTP_WINDOW:
        user.otp_retries = 0
    if (user.otp_retries or 0) >= settings.otp_max_retries and requested_at and now - requested_at < OTP_WINDOW:
        raise AppError("Too many OTP requests. Please try again in an hour.", status.HTTP_429_TOO_MANY_REQUESTS)

    otp = generate_otp()
    user.otp_hash = pwd_context.hash(otp)
    user.otp_expires_at = now + timedelta(minutes=settings.otp_expire_minutes)
    user.otp_retries = (user.otp_retries or 0) + 1
    user.otp_requested_at = now

    if user.email:
        send_otp_email(user.email, user.first_name, otp)
    elif user.phone:
        send_otp_sms(user.phone, otp)
    audit_log(AuditAction.OTP_SENT, request=request, user_id=user.id)


@router.post("/sign-up", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(payload: SignUpRequest, response: Response, db: DbSessionDep, request: Request) -> SignUpResponse:
    if not payload.email and not payload.phone:
        raise AppError("Either email or phone number is required")

    if payload.email:
        existing = await _find_user(db, payload.email, None)
        if existing:
            response.status_code = status.HTTP_200_OK
            return SignUpResponse(message="User with this email already exists", user_id=existing.id)
    if payload.phone:
        existing = await _find_user(db, None, payload.phone)
        if existing:
            response.status_code = status.HTTP_200_OK
            return SignUpResponse(message="User with this phone number already exists", user_id=existing.id)

    user = User(email=payload.email, phone=payload.phone)
    db.add(user)
    await db.flush()
    issue_otp(user, request)
    await db.commit()
    audit_log(AuditAction.SIGN_UP, request=request, user_id=user.id)
    logger.info("User signed up user_id=%s via=%s", user.id, "email" if payload.email else "phone")
    return SignUpResponse(message="User created successfully", user_id=user.id)


@router.post("/send-otp", response_model=MessageResponse)
async def send_otp(payload: SendOtpRequest, db: DbSessionDep, request: Request) -> MessageResponse:
    check_rate_limit(request, key_suffix="otp")
    user = _ensure_active(await _find_user(db, payload.email, payload.phone))
    issue_otp(user, request)
    await db.commit()
    return MessageResponse(message="OTP sent. Please verify to continue.")


@router.post("/verify-otp", response_model=AuthResponse)
async def verify_otp(payload: VerifyOtpRequest, response: Response, db: DbSessionDep, request: Request) -> AuthResponse:
    check_rate_limit(request, key_suffix="verify-otp")
    if (not payload.email and not payload.phone) or not payload.otp:
        raise AppError("Email or phone number and OTP are required")

    user = await _find_user(db, payload.email, payload.phone)
    if user is None:
        raise not_found("User")

    now = utc_now()
    expires_at = as_utc(user.otp_expires_at)
    if not user.otp_hash or not expires_at or expires_at < now or not pwd_context.verify(payload.otp, user.otp_hash):
        audit_log(AuditAction.OTP_FAILED, request=request, user_id=user.id, success=False)
        raise unauthorized("Invalid or expired OTP")

    user.otp_hash = None
    user.otp_expires_at = None
    user.otp_retries = 0
    user.last_login = now
    await db.commit()
    await db.refresh(user)

    start_session(response, user)
    if user.is_registration_complete:
        send_login_email(user.email, user.first_name, now.strftime("%A, %B %d, %Y at %H:%M UTC"))
    audit_log(AuditAction.OTP_VERIFIED, request=request, user_id=user.id)
    return AuthResponse(message="OTP verified successfully", user=UserProfile.model_validate(user))


@router.post("/sign-in", response_model=AuthResponse)
async def sign_in(payload: SignInRequest, response: Response, db: DbSessionDep, request: Request) -> AuthResponse:
    check_rate_limit(
        request,
        max_requests=settings.rate_limit_login_requests,
        window_seconds=60,
        key_suffix="sign-in",
    )
    user = _ensure_active(await _find_user(db, payload.email, payload.phone))

    now = utc_now()
    last_attempt = as_utc(user.last_login_attempt_at)
    lock_window = timedelta(hours=settings.login_lock_hours)
    if (user.login_retries or 0) >= settings.login_max_retries:
        if last_attempt and now - last_attempt < lock_window:
            audit_sign_in(request, user.id, False, "locked")
            raise unauthorized("login retries exceeded!")
        user.login_retries = 0

    if not verify_password(payload.password, user.hashed_password):
        user.login_retries = (user.login_retries or 0) + 1
        user.last_login_attempt_at = now
        await db.commit()
        audit_sign_in(request, user.id, False, "invalid_password")
        logger.info("Sign-in failed user_id=%s retries=%s", user.id, user.login_retries)
        raise unauthorized("Invalid credentials")

    user.login_retries = 0
    user.last_login = now
    await db.commit()
    await db.refresh(user)

    start_session(response, user)
    send_login_email(user.email, user.first_name, now.strftime("%A, %B %d, %Y at %H:%M UTC"))
    audit_sign_in(request, user.id, True)
    return AuthResponse(message="User logged in successfully", user=UserProfile.model_validate(user))


@router.post("/sign-out", response_model=MessageResponse)
async def sign_out(response: Response, request: Request) -> MessageResponse:
    response.delete_cookie("access_token", path="/", **_cookie_options())
    response.delete_cookie("refresh_token", path="/", **_cookie_options())
    audit_log(AuditAction.SIGN_OUT, request=request)
    return MessageResponse(message="Signed out successfully")


@router.post("/refresh", response_model=MessageResponse)
async def refresh_session(
    response: Response,
    db: DbSessionDep,
    refresh_token: str | None = Cookie(default=None, alias="refresh_token"),
) -> MessageResponse:
    if not refresh_token:
        raise unauthorized("Not authenticated")
    payload = decode_refresh_token(refresh_token)
    subject = payload.get("sub") if payload else None
    if not isinstance(subject, str) or not subject.isdigit():
        response.delete_cookie("refresh_token", path="/", **_cookie_options())
        raise unauthorized("Invalid token")

    user = await db.get(User, int(subject))
    if user is None or user.is_deleted or user.is_suspended:
        raise unauthorized("Invalid token")
    start_session(response, user)
    return MessageResponse(message="Session refreshed")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(payload: ForgotPasswordRequest, db: DbSessionDep, request: Request) -> MessageResponse:
    check_rate_limit(request, key_suffix="forgot-password")
    result = await db.execute(select(User).where(User.email == payload.email))
    user = result.scalar_one_or_none()
    if user is None:
        raise AppError("No user found with provided email", status.HTTP_404_NOT_FOUND)

    if (user.password_reset_retries or 0) >= settings.password_reset_max_retries:
        user.is_suspended = True
        await db.commit()
        audit_log(AuditAction.ACCOUNT_SUSPENDED, request=request, user_id=user.id, success=False)
        raise unauthorized("Password reset retries exceeded! and account suspended")

    jti = uuid4().hex
    token = create_password_reset_token(str(user.id), jti)
    user.password_reset_jti = jti
    user.password_reset_retries = (user.password_reset_retries or 0) + 1
    await db.commit()

    send_password_reset_email(user.email, user.first_name, f"{settings.frontend_url}/reset-password?token={token}")
    audit_log(AuditAction.PASSWORD_RESET_REQUEST, request=request, user_id=user.id)
    return MessageResponse(message=f"Password reset link sent to {payload.email}")


def apply_new_password(user: User, password: str, confirm_password: str) -> None:
    """Shared rules for reset and change; caller commits."""
    if password != confirm_password:
        raise AppError("Passwords do not match", status.HTTP_403_FORBIDDEN)
    if verify_password(password, user.hashed_password):
        raise AppError("New password cannot be the same as the old password")
    user.hashed_password = get_password_hash(password)
    user.password_reset_retries = 0
    user.password_reset_jti = None
    user.password_changed_at = utc_now()


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(payload: ResetPasswordRequest, db: DbSessionDep, request: Request) -> MessageResponse:
    check_rate_limit(request, key_suffix="reset-password")
    if payload.password != payload.confirm_password:
        raise AppError("Passwords do not match", status.HTTP_403_FORBIDDEN)

    claims = decode_password_reset_token(payload.token)
    user = None
    if claims and str(claims.get("sub", "")).isdigit():
        user = await db.get(User, int(claims["sub"]))
    if user is None or not user.password_reset_jti or user.password_reset_jti != claims.get("jti"):
        raise AppError("Password reset token is invalid or has expired")

    apply_new_password(user, payload.password, payload.confirm_password)
    await db.commit()
    send_password_changed_email(user.email, user.first_name)
    audit_log(AuditAction.PASSWORD_RESET_COMPLETE, request=request, user_id=user.id)
    return MessageResponse(message="Password reset successfully")
