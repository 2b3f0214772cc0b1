"""Link slugs, payment references and time/money helpers."""

from datetime import datetime, timezone
import re
import secrets
import string

TOKEN_ALPHABET = string.ascii_letters + string.digits + "_-"
CODE_ALPHABET = string.ascii_uppercase + string.digits

SINGLE_REFERENCE_RE = re.compile(r"CONT-[A-Za-z0-9_-]{16}")
BULK_REFERENCE_RE = re.compile(r"CONT-ALL-[A-Za-z0-9_-]{16}")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def money(value: float | int | None) -> float:
    return round(float(value or 0), 2)


def slugify(text: str, fallback: str = "wishlist") -> str:
    slug = text.strip().lower()
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug or fallback


def random_token(length: int) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def random_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def wishlist_slug(celebration_event: str) -> str:
    return f"{slugify(celebration_event)}-{random_token(6)}"


def item_slug(name: str) -> str:
    return f"{slugify(name, fallback='wishlist-item')}-{random_token(10)}"


def contribution_reference() -> str:
    return f"CONT-{random_token(16)}"


def bulk_contribution_reference() -> str:
    return f"CONT-ALL-{random_token(16)}"


def is_bulk_reference(reference: str) -> bool:
    return BULK_REFERENCE_RE.fullmatch(reference) is not None


def is_single_reference(reference: str) -> bool:
    return SINGLE_REFERENCE_RE.fullmatch(reference) is not None


def withdrawal_reference() -> str:
    return f"WTH-{random_token(16)}"


def item_withdrawal_reference() -> str:
    return f"ITWH-{random_token(16)}"


def initials(name: str | None, limit: int = 2) -> str:
    parts = [part for part in (name or "").split() if part]
    return "".join(part[0] for part in parts).upper()[:limit]
