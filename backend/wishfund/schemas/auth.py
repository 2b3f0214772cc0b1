import re
from datetime import date, datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from wishfund.models.models import GenderEnum

PHONE_RE = re.compile(r"^\+?\d{7,15}$")


def _validate_password_strength(password: str) -> str:
    """Validate password has required complexity."""
    if len(password) < 8:
        raise ValueError("Password must be at least 8 characters")
    if len(password) > 128:
        raise ValueError("Password must be at most 128 characters")
    if not re.search(r"[A-Z]", password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise ValueError("Password must contain at least one digit")
    return password


def _normalize_phone(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = re.sub(r"[\s-]", "", value)
    if not normalized:
        return None
    if not PHONE_RE.match(normalized):
        raise ValueError("Invalid phone number")
    return normalized


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class ContactRequest(BaseModel):
    """Email or phone identifies the account; handlers decide which is required."""

    email: EmailStr | None = None
    phone: str | None = None

    @field_validator("email")
    @classmethod
    def _email_lower(cls, value: str | None) -> str | None:
        return value.lower() if value else None

    @field_validator("phone")
    @classmethod
    def _phone(cls, value: str | None) -> str | None:
        return _normalize_phone(value)


class SignUpRequest(ContactRequest):
    pass


class SendOtpRequest(ContactRequest):
    pass


class VerifyOtpRequest(ContactRequest):
    otp: str | None = Field(default=None, max_length=12)


class SignInRequest(ContactRequest):
    password: str = Field(min_length=1, max_length=128)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def _email_lower(cls, value: str) -> str:
        return value.lower()


class PasswordPair(BaseModel):
    password: str = Field(min_length=8, max_length=128)
    confirm_password: str = Field(min_length=1, max_length=128)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class ResetPasswordRequest(PasswordPair):
    token: str = Field(min_length=1)


class ChangePasswordRequest(PasswordPair):
    pass


class MessageResponse(BaseModel):
    message: str


class UserPublic(BaseModel):
    id: int
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    email: str | None = None

    model_config = {"from_attributes": True}


class UserProfile(BaseModel):
    id: int
    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    role: str
    gender: str | None = None
    dob: date | None = None
    is_registration_complete: bool
    referral_count: int
    referred_by_id: int | None = None
    last_login: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    message: str
    user: UserProfile


class SignUpResponse(BaseModel):
    message: str
    user_id: int


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    phone: str | None = None
    first_name: str | None = Field(default=None, min_length=1, max_length=80)
    last_name: str | None = Field(default=None, min_length=1, max_length=80)
    username: str | None = Field(default=None, min_length=3, max_length=40)
    gender: GenderEnum | None = None
    dob: date | None = None
    password: str | None = Field(default=None, min_length=8, max_length=128)
    referral_code: str | None = Field(default=None, max_length=32)

    @field_validator("email")
    @classmethod
    def _email_lower(cls, value: str | None) -> str | None:
        return value.lower() if value else None

    @field_validator("phone")
    @classmethod
    def _phone(cls, value: str | None) -> str | None:
        return _normalize_phone(value)

    @field_validator("first_name", "last_name")
    @classmethod
    def _name_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)

    @field_validator("username")
    @classmethod
    def _username(cls, value: str | None) -> str | None:
        normalized = _strip_or_none(value)
        if normalized is None:
            return None
        if not re.fullmatch(r"[A-Za-z0-9_.]+", normalized):
            raise ValueError("Username may only contain letters, digits, dots and underscores")
        return normalized.lower()

    @field_validator("referral_code")
    @classmethod
    def _code_upper(cls, value: str | None) -> str | None:
        normalized = _strip_or_none(value)
        return normalized.upper() if normalized else None

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _validate_password_strength(value)
