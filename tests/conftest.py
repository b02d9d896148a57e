import hashlib
import hmac
import json

import httpx
import pytest
from sqlalchemy import func, select

from order_service import commands, db
from order_service.main import app
from order_service.models import Order, Product
from order_service.paystack import PaystackClient
from order_service.pricing import LineItem

SECRET = "sk_test_0123456789abcdef"

SHIRT_ID = "11111111-1111-4111-8111-111111111111"
BAG_ID = "22222222-2222-4222-8222-222222222222"
SANDALS_ID = "33333333-3333-4333-8333-333333333333"
MISSING_ID = "99999999-9999-4999-8999-999999999999"


def sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


class RecordingRedis:
    """Stands in for the Redis connection; keeps what was published."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, json.loads(message)))
        return 1

    def event_types(self) -> list[str]:
        return [payload["event_type"] for _, payload in self.published]


class FakePaystack:
    """Answers httpx requests the way the Paystack API does."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.transactions: dict[str, dict] = {}

    def charge(self, reference: str, amount: int, metadata: dict, status: str = "success") -> dict:
        tx = {
            "id": len(self.transactions) + 1000,
            "status": status,
            "reference": reference,
            "amount": amount,
            "currency": "NGN",
            "paid_at": "2026-10-16T10:00:00.000Z" if status == "success" else None,
            "gateway_response": "Successful" if status == "success" else "The transaction was not completed",
            "metadata": metadata,
            "customer": {"email": "ada@example.com"},
            "authorization": {"last4": "4081"},
        }
        self.transactions[reference] = tx
        return tx

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == "/transaction/initialize":
            payload = json.loads(request.content)
            reference = payload["reference"]
            self.charge(reference, payload["amount"], payload["metadata"], status="abandoned")
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": f"https://checkout.paystack.com/{reference}",
                        "access_code": f"ac_{reference[-8:]}",
                        "reference": reference,
                    },
                },
            )

        if request.method == "GET" and path.startswith("/transaction/verify/"):
            reference = path.rsplit("/", 1)[-1]
            tx = self.transactions.get(reference)
            if tx is None:
                return httpx.Response(
                    400, json={"status": False, "message": "Transaction reference not found"}
                )
            return httpx.Response(
                200, json={"status": True, "message": "Verification successful", "data": tx}
            )

        if request.method == "GET" and path == "/transaction":
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Transactions retrieved",
                    "data": list(self.transactions.values()),
                    "meta": {"total": len(self.transactions), "page": 1},
                },
            )

        if request.method == "POST" and path == "/customer":
            payload = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Customer created",
                    "data": {**payload, "id": 1, "customer_code": "CUS_test"},
                },
            )

        return httpx.Response(404, json={"status": False, "message": "Not found"})

    def initialize_payloads(self) -> list[dict]:
        return [
            json.loads(r.content)
            for r in self.requests
            if r.method == "POST" and r.url.path == "/transaction/initialize"
        ]


@pytest.fixture
async def engine(tmp_path):
    engine = db.create_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await db.create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return db.create_session_factory(engine)


@pytest.fixture
async def products(session_factory):
    async with session_factory() as session:
        session.add_all(
            [
                Product(id=SHIRT_ID, name="Ankara Shirt", price=500, stock=5),
                Product(id=BAG_ID, name="Woven Bag", price=1200, stock=3),
                Product(id=SANDALS_ID, name="Leather Sandals", price=250, stock=10),
            ]
        )
        await session.commit()


@pytest.fixture
def redis():
    return RecordingRedis()


@pytest.fixture
def fake_paystack():
    return FakePaystack()


@pytest.fixture
async def gateway(fake_paystack):
    client = PaystackClient(SECRET, transport=httpx.MockTransport(fake_paystack.handler))
    yield client
    await client.aclose()


@pytest.fixture
async def client(session_factory, gateway, redis, products):
    app.state.session_factory = session_factory
    app.state.paystack = gateway
    app.state.webhook_secret = SECRET
    app.state.redis = redis
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def place_order(session_factory, redis, products):
    async def _place(user_id: str, items: list[tuple[str, int]], reference: str):
        async with session_factory() as session:
            return await commands.create_order(
                session,
                redis,
                user_id=user_id,
                items=[LineItem(product_id=pid, quantity=qty) for pid, qty in items],
                transaction_reference=reference,
            )

    return _place


@pytest.fixture
def stock_of(session_factory):
    async def _stock(product_id: str) -> int:
        async with session_factory() as session:
            product = await session.get(Product, product_id)
            return product.stock

    return _stock


@pytest.fixture
def order_count(session_factory):
    async def _count() -> int:
        async with session_factory() as session:
            return await session.scalar(select(func.count()).select_from(Order))

    return _count
