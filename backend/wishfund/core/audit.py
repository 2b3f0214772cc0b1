"""Audit logging for auth and money-moving operations."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import Request


logger = logging.getLogger("wishfund.audit")

SENSITIVE_KEYS = {"password", "otp", "token", "secret", "authorization", "account_number", "bvn"}


class AuditAction(str, Enum):
    # Authentication
    SIGN_UP = "sign_up"
    SIGN_IN = "sign_in"
    SIGN_IN_FAILED = "sign_in_failed"
    SIGN_OUT = "sign_out"
    OTP_SENT = "otp_sent"
    OTP_VERIFIED = "otp_verified"
    OTP_FAILED = "otp_failed"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET_REQUEST = "password_reset_request"
    PASSWORD_RESET_COMPLETE = "password_reset_complete"
    ACCOUNT_SUSPENDED = "account_suspended"
    REGISTRATION_COMPLETE = "registration_complete"

    # Wishlists
    WISHLIST_CREATE = "wishlist_create"
    WISHLIST_UPDATE = "wishlist_update"
    WISHLIST_ITEMS_ADD = "wishlist_items_add"

    # Money
    CONTRIBUTION_INITIATE = "contribution_initiate"
    CONTRIBUTION_SETTLED = "contribution_settled"
    CONTRIBUTION_REFUND = "contribution_refund"
    ITEM_WITHDRAWAL = "item_withdrawal"
    WITHDRAWAL_REQUEST = "withdrawal_request"
    WITHDRAWAL_STATUS = "withdrawal_status"
    PAYOUT_METHOD_ADD = "payout_method_add"
    PAYOUT_METHOD_REMOVE = "payout_method_remove"

    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


def _redact(details: dict[str, Any]) -> dict[str, Any]:
    return {
        key: "***REDACTED***" if key in SENSITIVE_KEYS else value
        for key, value in details.items()
    }


def audit_log(
    action: AuditAction,
    request: Request | None = None,
    user_id: int | str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """
    Log an audit event.

    Args:
        action: The action being performed
        request: Incoming request, used for client IP, user agent and request id
        user_id: ID of the acting user
        details: Extra context; sensitive keys are redacted
        success: Whether the action succeeded
    """
    event: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action.value,
        "success": success,
    }
    if user_id is not None:
        event["user_id"] = str(user_id)

    if request is not None:
        client_host = request.client.host if request.client else None
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_host = forwarded.split(",")[0].strip()
        event["ip"] = client_host
        event["user_agent"] = request.headers.get("User-Agent", "")[:200]
        event["request_id"] = request.headers.get("X-Request-Id", "")

    if details:
        event["details"] = _redact(details)

    if success:
        logger.info("AUDIT: %s", event)
    else:
        logger.warning("AUDIT: %s", event)


def audit_sign_in(request: Request, user_id: int, success: bool, reason: str | None = None) -> None:
    audit_log(
        AuditAction.SIGN_IN if success else AuditAction.SIGN_IN_FAILED,
        request=request,
        user_id=user_id,
        details={"reason": reason} if reason else None,
        success=success,
    )


def audit_money(
    action: AuditAction,
    request: Request | None,
    user_id: int | None,
    reference: str,
    amount: float,
    **details: Any,
) -> None:
    audit_log(
        action,
        request=request,
        user_id=user_id,
        details={"reference": reference, "amount": amount, **details},
    )


def audit_rate_limit_exceeded(request: Request, endpoint: str, retry_after: int) -> None:
    audit_log(
        AuditAction.RATE_LIMIT_EXCEEDED,
        request=request,
        details={"endpoint": endpoint, "retry_after": retry_after},
        success=False,
    )
