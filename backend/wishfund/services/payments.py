"""
Payment provider adapter.

With ``PAYMENT_SECRET_KEY`` set, calls go to the provider's REST API
(Paystack-compatible, amounts in kobo). Without it the gateway runs as a
deterministic sandbox: payments verify as successful, accounts resolve to a
generated name and transfers are queued, all without network access.
"""

import hashlib
import hmac
import logging
from typing import Any

import httpx

from wishfund.core.config import settings
from wishfund.core.identifiers import utc_now

logger = logging.getLogger("wishfund.payments")

SANDBOX_BANKS = [
    {"name": "Access Bank", "code": "044"},
    {"name": "First Bank of Nigeria", "code": "011"},
    {"name": "Guaranty Trust Bank", "code": "058"},
    {"name": "Kuda Bank", "code": "50211"},
    {"name": "United Bank For Africa", "code": "033"},
    {"name": "Zenith Bank", "code": "057"},
]

# Sandbox account that never resolves, for exercising verification failures.
SANDBOX_INVALID_ACCOUNT = "0000000000"


class PaymentGatewayError(Exception):
    """Provider rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def calculate_withdrawal_fee(amount: float) -> float:
    if amount <= 5000:
        return 10.0
    if amount <= 50000:
        return 25.0
    return 50.0


def _to_kobo(amount: float) -> int:
    return int(round(amount * 100))


class PaymentGateway:
    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.payment_secret_key
        self.base_url = (base_url or settings.payment_base_url).rstrip("/")
        self.timeout = timeout or settings.payment_timeout_seconds

    @property
    def sandbox(self) -> bool:
        return not self.secret_key

    def _require_local_sandbox(self) -> None:
        """Sandbox confirmations are only honoured in local mode."""
        if not settings.is_local:
            raise PaymentGatewayError("Payment gateway is not configured", 503)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout) as client:
                response = await client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Payment provider request failed %s %s: %s", method, path, exc)
            raise PaymentGatewayError(f"Payment provider request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message") or f"Payment provider returned {response.status_code}"
            logger.warning("Payment provider error %s %s: %s", method, path, message)
            raise PaymentGatewayError(message, response.status_code)
        return body.get("data") or {}

    async def initialize_payment(
        self,
        email: str,
        amount: float,
        reference: str,
        callback_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Start a checkout; returns ``authorization_url`` and ``reference``."""
        if self.sandbox:
            return {
                "authorization_url": f"{settings.backend_url}/payments/callback?reference={reference}",
                "access_code": f"sandbox_{reference}",
                "reference": reference,
            }
        payload: dict[str, Any] = {
            "email": email,
            "amount": _to_kobo(amount),
            "reference": reference,
            "currency": settings.currency,
        }
        if callback_url:
            payload["callback_url"] = callback_url
        if metadata:
            payload["metadata"] = metadata
        return await self._request("POST", "/transaction/initialize", json=payload)

    async def verify_payment(self, reference: str) -> dict[str, Any]:
        """Returns ``status`` (``success``, ``failed``, ...), ``amount`` in naira and ``paid_at``."""
        if self.sandbox:
            self._require_local_sandbox()
            return {
                "status": "success",
                "reference": reference,
                "amount": None,
                "paid_at": utc_now().isoformat(),
                "gateway_reference": f"sandbox_{reference}",
            }
        data = await self._request("GET", f"/transaction/verify/{reference}")
        amount = data.get("amount")
        return {
            "status": data.get("status"),
            "reference": data.get("reference", reference),
            "amount": amount / 100 if amount is not None else None,
            "paid_at": data.get("paid_at"),
            "gateway_reference": str(data["id"]) if data.get("id") is not None else None,
        }

    async def list_banks(self) -> list[dict[str, str]]:
        if self.sandbox:
            return list(SANDBOX_BANKS)
        data = await self._request("GET", "/bank", params={"country": "nigeria", "currency": settings.currency})
        return [{"name": bank["name"], "code": bank["code"]} for bank in data or []]

    async def bank_name(self, bank_code: str) -> str:
        for bank in await self.list_banks():
            if bank["code"] == bank_code:
                return bank["name"]
        raise PaymentGatewayError("Unknown bank code", 400)

    async def resolve_account(self, account_number: str, bank_code: str) -> dict[str, str]:
        if self.sandbox:
            if account_number == SANDBOX_INVALID_ACCOUNT:
                raise PaymentGatewayError("Could not resolve account name", 422)
            await self.bank_name(bank_code)
            return {
                "account_number": account_number,
                "account_name": f"SANDBOX ACCOUNT {account_number[-4:]}",
                "bank_code": bank_code,
            }
        data = await self._request(
            "GET",
            "/bank/resolve",
            params={"account_number": account_number, "bank_code": bank_code},
        )
        return {
            "account_number": data.get("account_number", account_number),
            "account_name": data.get("account_name", ""),
            "bank_code": bank_code,
        }

    async def create_transfer_recipient(self, name: str, account_number: str, bank_code: str) -> str:
        if self.sandbox:
            digest = hashlib.sha256(f"{account_number}:{bank_code}".encode()).hexdigest()[:12]
            return f"RCP_sandbox{digest}"
        data = await self._request(
            "POST",
            "/transferrecipient",
            json={
                "type": "nuban",
                "name": name,
                "account_number": account_number,
                "bank_code": bank_code,
                "currency": settings.currency,
            },
        )
        return data["recipient_code"]

    async def initiate_transfer(
        self,
        amount: float,
        recipient_code: str,
        reference: str,
        reason: str | None = None,
    ) -> dict[str, Any]:
        """Queue a payout; the final state arrives later via webhook."""
        if self.sandbox:
            self._require_local_sandbox()
            return {"transfer_code": f"TRF_sandbox{reference[-8:]}", "status": "pending", "reference": reference}
        data = await self._request(
            "POST",
            "/transfer",
            json={
                "source": "balance",
                "amount": _to_kobo(amount),
                "recipient": recipient_code,
                "reference": reference,
                "reason": reason or "WishFund withdrawal",
            },
        )
        return {
            "transfer_code": data.get("transfer_code"),
            "status": data.get("status", "pending"),
            "reference": data.get("reference", reference),
        }

    def verify_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        if not self.secret_key or not signature:
            return False
        expected = hmac.new(self.secret_key.encode(), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)

    calculate_withdrawal_fee = staticmethod(calculate_withdrawal_fee)


gateway = PaymentGateway()


def get_gateway() -> PaymentGateway:
    return gateway
