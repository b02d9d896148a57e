"""
Order Service — FastAPI entry point

    POST /orders               quote the cart and start a Paystack checkout
    GET  /orders               the caller's orders, newest first
    GET  /orders/{id}          one order, owner only
    POST /orders/{id}/cancel   cancel a pending order, owner only
    POST /webhook              Paystack callback; the only place orders are created

Orders are never written while the customer is still on the checkout page.
They appear when Paystack confirms the charge through the webhook.

The caller's identity is attached upstream by the authentication layer as
X-User-Id / X-User-Email headers.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import commands, db, queries, webhook
from .config import Settings
from .errors import ErrorKind, Failure, GatewayError, SignatureError
from .paystack import PaystackClient
from .pricing import LineItem, quote_order

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    engine = db.create_engine(settings.database_url)
    await db.create_schema(engine)
    app.state.session_factory = db.create_session_factory(engine)
    app.state.paystack = PaystackClient(
        settings.paystack_secret_key,
        base_url=settings.paystack_base_url,
        callback_url=settings.paystack_callback_url,
        timeout=settings.paystack_timeout,
    )
    app.state.webhook_secret = settings.paystack_secret_key
    app.state.redis = (
        aioredis.from_url(settings.redis_url, decode_responses=True)
        if settings.redis_url
        else None
    )
    yield
    await app.state.paystack.aclose()
    if app.state.redis is not None:
        await app.state.redis.aclose()
    await engine.dispose()


app = FastAPI(title="Order Service", lifespan=lifespan)


# ── Error mapping ────────────────────────────────


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation Error", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def raise_for_failure(failure: Failure) -> None:
    raise HTTPException(status_code=failure.status_code, detail=failure.message)


def check_access(order: dict | None, user_id: str, forbidden: str) -> Failure | None:
    if not order:
        return Failure(ErrorKind.NOT_FOUND, "Order not found")
    if order["user_id"] != user_id:
        return Failure(ErrorKind.FORBIDDEN, forbidden)
    return None


# ── Caller identity ──────────────────────────────


@dataclass(frozen=True, slots=True)
class CurrentUser:
    id: str
    email: str | None


async def current_user(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(401, "Unauthorized")
    return CurrentUser(id=x_user_id, email=x_user_email)


# ── Request Models ───────────────────────────────


class OrderLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId", pattern=r"^[0-9a-fA-F-]{36}$")
    quantity: int = Field(ge=1, strict=True)


class CreateOrderRequest(BaseModel):
    items: list[OrderLine] = Field(min_length=1)


# ── Order Endpoints ──────────────────────────────


@app.post("/orders")
async def create_order(
    req: CreateOrderRequest,
    request: Request,
    user: CurrentUser = Depends(current_user),
):
    """Quote the cart and hand back a Paystack checkout URL."""
    if not user.email:
        raise HTTPException(400, "A customer email is required to start a payment")

    items = [LineItem(product_id=line.product_id, quantity=line.quantity) for line in req.items]
    async with request.app.state.session_factory() as session:
        quote = await quote_order(session, items)
    if isinstance(quote, Failure):
        raise_for_failure(quote)

    init = await request.app.state.paystack.initialize_payment(
        email=user.email,
        amount=quote.total,
        metadata={
            "userId": user.id,
            "items": [{"productId": i.product_id, "quantity": i.quantity} for i in items],
        },
    )
    logger.info("Payment %s initialized for user %s, amount %d", init.reference, user.id, quote.total)
    return {
        "authorization_url": init.authorization_url,
        "reference": init.reference,
        "access_code": init.access_code,
        "amount": quote.total,
        "message": "Redirect to payment gateway",
    }


@app.get("/orders")
async def list_orders(request: Request, user: CurrentUser = Depends(current_user)):
    async with request.app.state.session_factory() as session:
        return await queries.list_user_orders(session, user.id)


@app.get("/orders/{order_id}")
async def get_order(order_id: str, request: Request, user: CurrentUser = Depends(current_user)):
    async with request.app.state.session_factory() as session:
        order = await queries.get_order(session, order_id)
    failure = check_access(order, user.id, "Forbidden: You do not have permission to view this order")
    if failure is not None:
        raise_for_failure(failure)
    return order


@app.post("/orders/{order_id}/cancel")
async def cancel_order(order_id: str, request: Request, user: CurrentUser = Depends(current_user)):
    async with request.app.state.session_factory() as session:
        order = await queries.get_order(session, order_id)
        failure = check_access(order, user.id, "Forbidden: You cannot cancel this order")
        if failure is not None:
            raise_for_failure(failure)

        result = await commands.cancel_order(session, request.app.state.redis, order_id)

    if not result.success:
        raise_for_failure(result.error)
    return {"message": "Order cancelled successfully", "order": result.order}


# ── Paystack ─────────────────────────────────────


@app.post("/webhook")
async def paystack_webhook(request: Request):
    raw_body = await request.body()
    try:
        webhook.verify_signature(
            raw_body,
            request.headers.get(webhook.SIGNATURE_HEADER),
            request.app.state.webhook_secret,
        )
    except SignatureError as e:
        logger.warning("Rejected webhook: %s", e)
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    try:
        event = webhook.parse_event(raw_body)
    except ValidationError:
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})

    try:
        status_code, body = await webhook.handle_event(
            event,
            request.app.state.session_factory,
            request.app.state.paystack,
            request.app.state.redis,
        )
    except Exception:
        logger.exception("Webhook processing error")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
    return JSONResponse(status_code=status_code, content=body)


@app.get("/payments/verify/{reference}")
async def verify_payment(reference: str, request: Request):
    """Landing point for the checkout callback: reports status, changes nothing."""
    verification = await request.app.state.paystack.verify_payment(reference)
    return {
        "reference": verification.reference,
        "success": verification.success,
        "status": verification.status,
        "amount": str(verification.amount) if verification.amount is not None else None,
        "currency": verification.currency,
        "error": verification.error,
    }


# ── Catalog (read side) ──────────────────────────


@app.get("/products")
async def list_products(request: Request):
    async with request.app.state.session_factory() as session:
        return await queries.list_products(session)


@app.get("/products/{product_id}")
async def get_product(product_id: str, request: Request):
    async with request.app.state.session_factory() as session:
        product = await queries.get_product(session, product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}
