"""
Order Service — Paystack webhook

Paystack signs every callback with HMAC-SHA512 over the exact body it sent,
keyed with the account's secret key, and puts the hex digest in the
`x-paystack-signature` header. The signature is checked against the raw
request bytes before anything is parsed.

A verified `charge.success` is confirmed again with the verify endpoint and
then turned into an order. Paystack redelivers on timeouts and errors, so
every path ends in a definitive status code and order creation is keyed by
the payment reference.
"""

import hashlib
import hmac
import logging
from typing import Any

import redis.asyncio as aioredis
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import commands
from .errors import GatewayError, SignatureError
from .models import PaymentStatus
from .paystack import PaystackClient
from .pricing import LineItem

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"
CHARGE_SUCCESS = "charge.success"


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str) -> None:
    """Raise SignatureError unless signature is the body's HMAC-SHA512."""
    if not signature:
        raise SignatureError("missing signature header")
    if not raw_body:
        raise SignatureError("empty body")
    expected = compute_signature(raw_body, secret)
    if not hmac.compare_digest(expected.encode(), signature.strip().lower().encode()):
        raise SignatureError("signature mismatch")


# ── Payload models ───────────────────────────────


class MetadataItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    productId: str
    # absent quantity means one unit; an explicit 0 or negative is rejected
    quantity: int = Field(default=1, ge=1)


class ChargeMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    userId: str
    items: list[MetadataItem] = Field(min_length=1)


class ChargeData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reference: str
    amount: int | None = None
    status: str | None = None
    gateway_response: str | None = None
    metadata: dict[str, Any] | None = None


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str
    data: dict[str, Any] = Field(default_factory=dict)


def parse_event(raw_body: bytes) -> WebhookEvent:
    """Deserialize a body whose signature has already been verified."""
    return WebhookEvent.model_validate_json(raw_body)


# ── Event handling ───────────────────────────────


async def handle_event(
    event: WebhookEvent,
    session_factory: async_sessionmaker[AsyncSession],
    gateway: PaystackClient,
    redis: aioredis.Redis | None,
) -> tuple[int, dict]:
    """Process a verified event; returns (status_code, body)."""
    logger.info("Received Paystack event: %s", event.event)

    if event.event != CHARGE_SUCCESS:
        return 200, {"status": "event_not_processed"}

    try:
        charge = ChargeData.model_validate(event.data)
        metadata = ChargeMetadata.model_validate(charge.metadata or {})
    except ValidationError:
        logger.warning("charge.success with invalid metadata")
        return 400, {"error": "Invalid metadata"}

    try:
        verification = await gateway.verify_payment(charge.reference)
    except GatewayError as e:
        logger.error("Verification call failed for %s: %s", charge.reference, e.message)
        return e.status_code, {"error": "Payment verification failed"}

    if not verification.success:
        logger.warning("Payment verification failed for %s: %s", charge.reference, verification.error)
        return 400, {"error": "Payment verification failed"}

    items = [LineItem(product_id=i.productId, quantity=i.quantity) for i in metadata.items]
    async with session_factory() as session:
        result = await commands.create_order(
            session,
            redis,
            user_id=metadata.userId,
            items=items,
            transaction_reference=charge.reference,
            payment_status=PaymentStatus.PAID,
        )

    if not result.success:
        logger.error("Order creation failed for %s: %s", charge.reference, result.error.message)
        return 400, {"error": "Order creation failed"}

    if result.duplicate:
        return 200, {"status": "already_processed"}

    if verification.amount_minor is not None and verification.amount_minor < result.order["total_amount"]:
        logger.warning(
            "Order %s total %d exceeds paid amount %d",
            result.order["id"],
            result.order["total_amount"],
            verification.amount_minor,
        )
    return 200, {"status": "success"}
