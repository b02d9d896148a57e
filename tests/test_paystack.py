import json
from decimal import Decimal

import httpx
import pytest

from order_service.errors import GatewayError
from order_service.paystack import DEFAULT_CHANNELS, PaystackClient, generate_reference

from tests.conftest import SECRET


def client_answering(handler) -> PaystackClient:
    return PaystackClient(SECRET, transport=httpx.MockTransport(handler))


async def test_initialize_sends_minor_units_unchanged(gateway, fake_paystack):
    init = await gateway.initialize_payment(
        email="ada@example.com",
        amount=100000,
        metadata={"userId": "user-1", "items": [{"productId": "p", "quantity": 2}]},
    )

    [request] = fake_paystack.requests
    payload = json.loads(request.content)
    assert request.headers["Authorization"] == f"Bearer {SECRET}"
    assert payload["amount"] == 100000
    assert payload["email"] == "ada@example.com"
    assert payload["channels"] == list(DEFAULT_CHANNELS)
    assert payload["metadata"]["userId"] == "user-1"
    assert "callback_url" not in payload
    assert payload["reference"].startswith("PAY_")
    assert init.reference == payload["reference"]
    assert init.authorization_url.endswith(init.reference)
    assert init.access_code


async def test_initialize_keeps_given_reference_and_callback(fake_paystack):
    client = PaystackClient(
        SECRET,
        callback_url="https://shop.example.com/payments/return",
        transport=httpx.MockTransport(fake_paystack.handler),
    )
    init = await client.initialize_payment("ada@example.com", 5000, reference="PAY_fixed")
    await client.aclose()

    payload = fake_paystack.initialize_payloads()[0]
    assert init.reference == "PAY_fixed"
    assert payload["callback_url"] == "https://shop.example.com/payments/return"


def test_generated_references_do_not_collide():
    references = {generate_reference() for _ in range(1000)}
    assert len(references) == 1000


async def test_initialize_rejects_non_positive_amount(gateway, fake_paystack):
    with pytest.raises(GatewayError) as exc:
        await gateway.initialize_payment("ada@example.com", 0)
    assert exc.value.status_code == 400
    assert fake_paystack.requests == []


async def test_initialize_status_false_carries_upstream_message():
    client = client_answering(
        lambda request: httpx.Response(200, json={"status": False, "message": "Invalid email"})
    )
    with pytest.raises(GatewayError) as exc:
        await client.initialize_payment("not-an-email", 5000)
    await client.aclose()

    assert exc.value.status_code == 400
    assert exc.value.message == "Invalid email"


async def test_upstream_error_response_is_client_correctable():
    client = client_answering(
        lambda request: httpx.Response(401, json={"status": False, "message": "Invalid key"})
    )
    with pytest.raises(GatewayError) as exc:
        await client.initialize_payment("ada@example.com", 5000)
    await client.aclose()

    assert exc.value.status_code == 400
    assert exc.value.message == "Invalid key"


async def test_network_failure_is_generic_gateway_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = client_answering(refuse)
    with pytest.raises(GatewayError) as exc:
        await client.initialize_payment("ada@example.com", 5000)
    await client.aclose()

    assert exc.value.status_code == 500
    assert "connection refused" not in exc.value.message


async def test_server_error_without_body_is_generic():
    client = client_answering(lambda request: httpx.Response(502, text="Bad Gateway"))
    with pytest.raises(GatewayError) as exc:
        await client.verify_payment("PAY_x")
    await client.aclose()

    assert exc.value.status_code == 500
    assert exc.value.message == "Payment verification failed. Please try again."


async def test_verify_success_reports_major_units(gateway, fake_paystack):
    fake_paystack.charge("PAY_ok", 100000, {"userId": "user-1"})

    result = await gateway.verify_payment("PAY_ok")

    assert result.success
    assert result.status == "success"
    assert result.amount_minor == 100000
    assert result.amount == Decimal("1000")
    assert result.currency == "NGN"
    assert result.metadata == {"userId": "user-1"}
    assert result.gateway_response == "Successful"


async def test_verify_abandoned_is_a_failed_result_not_an_error(gateway, fake_paystack):
    fake_paystack.charge("PAY_gone", 100000, {}, status="abandoned")

    result = await gateway.verify_payment("PAY_gone")

    assert not result.success
    assert result.status == "abandoned"
    assert result.error.startswith("Payment abandoned.")


async def test_verify_status_false_is_a_failed_result():
    client = client_answering(
        lambda request: httpx.Response(200, json={"status": False, "message": "Try again later"})
    )
    result = await client.verify_payment("PAY_x")
    await client.aclose()

    assert not result.success
    assert result.error == "Try again later"


async def test_verify_unknown_reference_raises(gateway):
    with pytest.raises(GatewayError) as exc:
        await gateway.verify_payment("PAY_unknown")
    assert exc.value.message == "Transaction reference not found"


async def test_list_transactions_pages(gateway, fake_paystack):
    fake_paystack.charge("PAY_a", 1000, {})

    page = await gateway.list_transactions(page=2, per_page=10)

    request = fake_paystack.requests[-1]
    assert request.url.params["page"] == "2"
    assert request.url.params["perPage"] == "10"
    assert [tx["reference"] for tx in page.data] == ["PAY_a"]
    assert page.meta["total"] == 1


async def test_create_customer(gateway, fake_paystack):
    customer = await gateway.create_customer(
        "ada@example.com", "Ada", "Obi", phone="+2348000000000"
    )

    payload = json.loads(fake_paystack.requests[-1].content)
    assert payload == {
        "email": "ada@example.com",
        "first_name": "Ada",
        "last_name": "Obi",
        "phone": "+2348000000000",
    }
    assert customer["customer_code"] == "CUS_test"


async def test_every_call_has_a_bounded_timeout():
    client = PaystackClient(SECRET, timeout=5.0)
    assert client._client.timeout.read == 5.0
    assert client._client.timeout.connect == 5.0
    await client.aclose()
