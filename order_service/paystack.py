"""
Order Service — Paystack client

Thin async wrapper over the Paystack REST API. One instance is built at
startup and shared; it owns a pooled httpx.AsyncClient with the bearer secret
and a bounded timeout on every call.

Amounts handed to initialize_payment are already in minor units (kobo) and
are sent unchanged. Verified amounts are reported back in both units.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import uuid4

import httpx

from .config import DEFAULT_PAYSTACK_BASE_URL
from .errors import GatewayError
from .pricing import MINOR_UNITS_PER_MAJOR

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = (
    "card",
    "bank",
    "ussd",
    "qr",
    "mobile_money",
    "bank_transfer",
)


def generate_reference() -> str:
    """A new payment reference, unique per initialization attempt."""
    return f"PAY_{uuid4().hex}"


@dataclass(frozen=True, slots=True)
class PaymentInitialization:
    authorization_url: str
    reference: str
    access_code: str


@dataclass(frozen=True, slots=True)
class PaymentVerification:
    success: bool
    reference: str
    status: str | None = None
    amount: Decimal | None = None
    amount_minor: int | None = None
    currency: str | None = None
    paid_at: str | None = None
    gateway_response: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    customer: dict[str, Any] | None = None
    authorization: dict[str, Any] | None = None
    transaction_id: int | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class TransactionPage:
    data: list[dict[str, Any]]
    meta: dict[str, Any] | None


class PaystackClient:
    def __init__(
        self,
        secret_key: str,
        *,
        base_url: str = DEFAULT_PAYSTACK_BASE_URL,
        callback_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.callback_url = callback_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Transactions ─────────────────────────────

    async def initialize_payment(
        self,
        email: str,
        amount: int,
        metadata: dict[str, Any] | None = None,
        reference: str | None = None,
        callback_url: str | None = None,
        channels: list[str] | None = None,
    ) -> PaymentInitialization:
        if amount <= 0:
            raise GatewayError("Amount must be a positive number of minor units", 400)

        payload: dict[str, Any] = {
            "email": email,
            "amount": amount,
            "reference": reference or generate_reference(),
            "metadata": metadata or {},
            "channels": list(channels or DEFAULT_CHANNELS),
        }
        callback = callback_url or self.callback_url
        if callback:
            payload["callback_url"] = callback

        body = await self._request(
            "POST",
            "/transaction/initialize",
            fallback="Payment initialization failed. Please try again.",
            json=payload,
        )
        if not body.get("status"):
            raise GatewayError(body.get("message") or "Payment initialization failed", 400)

        data = body.get("data") or {}
        try:
            return PaymentInitialization(
                authorization_url=data["authorization_url"],
                reference=data["reference"],
                access_code=data["access_code"],
            )
        except KeyError as e:
            logger.error("Paystack initialize response missing %s", e)
            raise GatewayError("Payment initialization failed. Please try again.") from e

    async def verify_payment(self, reference: str) -> PaymentVerification:
        """
        Ask Paystack for the outcome of a transaction.

        A transaction Paystack reports as failed or abandoned comes back with
        success=False; only a failed call raises GatewayError.
        """
        body = await self._request(
            "GET",
            f"/transaction/verify/{reference}",
            fallback="Payment verification failed. Please try again.",
        )
        if not body.get("status"):
            return PaymentVerification(
                success=False,
                reference=reference,
                error=body.get("message") or "Payment verification failed",
            )

        data = body.get("data") or {}
        status = data.get("status")
        if status != "success":
            return PaymentVerification(
                success=False,
                reference=data.get("reference", reference),
                status=status,
                gateway_response=data.get("gateway_response"),
                metadata=data.get("metadata") or {},
                error=f"Payment {status}. {data.get('gateway_response') or ''}".strip(),
            )

        amount_minor = int(data.get("amount") or 0)
        return PaymentVerification(
            success=True,
            reference=data.get("reference", reference),
            status=status,
            amount=Decimal(amount_minor) / MINOR_UNITS_PER_MAJOR,
            amount_minor=amount_minor,
            currency=data.get("currency"),
            paid_at=data.get("paid_at"),
            gateway_response=data.get("gateway_response"),
            metadata=data.get("metadata") or {},
            customer=data.get("customer"),
            authorization=data.get("authorization"),
            transaction_id=data.get("id"),
        )

    async def list_transactions(self, page: int = 1, per_page: int = 50) -> TransactionPage:
        body = await self._request(
            "GET",
            "/transaction",
            fallback="Failed to fetch transactions",
            params={"page": page, "perPage": per_page},
        )
        if not body.get("status"):
            raise GatewayError(body.get("message") or "Failed to fetch transactions", 400)
        return TransactionPage(data=body.get("data") or [], meta=body.get("meta"))

    # ── Customers ────────────────────────────────

    async def create_customer(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
        }
        if phone:
            payload["phone"] = phone
        if metadata:
            payload["metadata"] = metadata

        body = await self._request(
            "POST", "/customer", fallback="Customer creation failed", json=payload
        )
        if not body.get("status"):
            raise GatewayError(body.get("message") or "Customer creation failed", 400)
        return body.get("data") or {}

    # ── Transport ────────────────────────────────

    async def _request(self, method: str, path: str, *, fallback: str, **kwargs: Any) -> dict:
        """
        Send one request and return the decoded JSON body.

        Upstream rejections carrying a message become GatewayError(message, 400);
        network failures and unreadable answers become GatewayError(fallback, 500).
        """
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Paystack %s %s failed: %s", method, path, e)
            raise GatewayError(fallback) from e

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.is_error:
            logger.error("Paystack %s %s returned %d", method, path, resp.status_code)
            if isinstance(body, dict) and body.get("message"):
                raise GatewayError(body["message"], 400)
            raise GatewayError(fallback)

        if not isinstance(body, dict):
            logger.error("Paystack %s %s returned a non-JSON body", method, path)
            raise GatewayError(fallback)
        return body
