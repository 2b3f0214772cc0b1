import json
import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "WishFund API"
    backend_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:3000"
    environment: str = "local"
    backend_cors_origins_raw: str = ""  # Comma-separated or JSON array

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "allow",
    }

    @property
    def backend_cors_origins(self) -> list[str]:
        """Parse CORS origins from raw string."""
        raw = os.getenv("BACKEND_CORS_ORIGINS", self.backend_cors_origins_raw).strip()
        if not raw:
            return ["http://localhost:3000", "http://127.0.0.1:3000"]
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in raw.split(",") if item.strip()]

    # Database: sqlite+aiosqlite:///./wishfund.db (dev) | postgresql+asyncpg://... (prod)
    postgres_dsn: str = "sqlite+aiosqlite:///./wishfund.db"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800
    db_pool_timeout: int = 30

    access_token_expire_minutes: int = 60 * 24
    refresh_token_expire_minutes: int = 60 * 24 * 30
    password_reset_token_expire_minutes: int = 15
    # SECURITY: override via JWT_SECRET_KEY env var; app refuses to start with default outside local
    jwt_secret_key: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"

    # OTP
    otp_expire_minutes: int = 5
    otp_max_retries: int = 5
    otp_fixed_code: str = ""  # local/test only
    login_max_retries: int = 5
    login_lock_hours: int = 12
    password_reset_max_retries: int = 6

    # SMTP settings (optional)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "noreply@wishfund.local"
    smtp_use_tls: bool = True
    email_notifications_enabled: bool = True

    rate_limit_enabled: bool = True
    rate_limit_requests: int = 10
    rate_limit_window_seconds: int = 60
    rate_limit_login_requests: int = 5

    # Money
    currency: str = "NGN"
    min_contribution_amount: float = 100.0
    min_withdrawal_amount: float = 1000.0
    platform_fee_percent: float = 0.0

    # Payment provider; empty secret runs the local sandbox gateway
    payment_base_url: str = "https://api.paystack.co"
    payment_secret_key: str = ""
    payment_timeout_seconds: float = 15.0

    default_admin_email: str = "admin@example.com"
    seed_default_admin: bool = True
    referral_code_prefix: str = "JOY"
    referral_codes_per_user: int = 5

    log_level: str = "INFO"
    log_file: str = ""
    # Per-area overrides for wishfund.<area> loggers, e.g. "payments=DEBUG,db=WARNING"
    log_area_levels: str = ""

    @property
    def is_local(self) -> bool:
        return (self.environment or "local").lower() == "local"

    def validate_secrets(self) -> None:
        """Refuse to start with insecure defaults."""
        if self.jwt_secret_key == "CHANGE_ME":
            raise RuntimeError(
                "JWT_SECRET_KEY is still the default 'CHANGE_ME'. "
                "Set a strong random secret via the JWT_SECRET_KEY environment variable."
            )
        if len(self.jwt_secret_key) < 32:
            raise RuntimeError(
                f"JWT_SECRET_KEY is too short ({len(self.jwt_secret_key)} chars). "
                "Minimum 32 characters required."
            )
        if not self.payment_secret_key:
            raise RuntimeError(
                "PAYMENT_SECRET_KEY is empty. The sandbox gateway is only allowed when ENVIRONMENT=local."
            )


settings = Settings()
