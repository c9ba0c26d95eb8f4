import json

import httpx
import pytest
from x402.encoding import safe_base64_encode

from spoon_pay.payments import ConfigError, PaymentTransport, ProtocolError

ENDPOINT = "https://paid.example/weather"


def make_transport(handler, **kwargs):
    return PaymentTransport(retry_backoff=0, transport=httpx.MockTransport(handler), **kwargs)


class Recorder:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.mark.asyncio
async def test_paid_request_success_returns_body_and_receipt():
    receipt = safe_base64_encode(
        json.dumps({"success": True, "transaction": "0xsettled", "network": "base-sepolia", "payer": "0xabc123"})
    )
    recorder = Recorder(httpx.Response(200, json={"temperature": 21}, headers={"X-PAYMENT-RESPONSE": receipt}))

    outcome = await make_transport(recorder).request_with_payment(ENDPOINT, "encoded-payment")

    assert outcome.success
    assert outcome.status == 200
    assert outcome.paid
    assert outcome.data == {"temperature": 21}
    assert outcome.receipt is not None
    assert outcome.receipt.transaction == "0xsettled"
    assert recorder.requests[0].headers["X-PAYMENT"] == "encoded-payment"
    assert recorder.requests[0].headers["Content-Type"] == "application/json"


@pytest.mark.asyncio
async def test_undecodable_receipt_is_ignored():
    recorder = Recorder(httpx.Response(200, json={"ok": True}, headers={"X-PAYMENT-RESPONSE": "%%%"}))

    outcome = await make_transport(recorder).request_with_payment(ENDPOINT, "encoded-payment")

    assert outcome.success
    assert outcome.receipt is None


@pytest.mark.asyncio
async def test_unpaid_request_sends_no_payment_header():
    recorder = Recorder(httpx.Response(200, json={"temperature": 21}))

    outcome = await make_transport(recorder).request_without_payment(ENDPOINT)

    assert outcome.success
    assert not outcome.paid
    assert "X-PAYMENT" not in recorder.requests[0].headers


@pytest.mark.asyncio
async def test_rejected_payment_is_terminal():
    recorder = Recorder(
        httpx.Response(402, json={"error": "Payment verification failed", "invalidReason": "insufficient_funds"})
    )

    outcome = await make_transport(recorder).request_with_payment(ENDPOINT, "encoded-payment")

    assert not outcome.success
    assert outcome.status == 402
    assert outcome.error == "Payment verification failed"
    assert outcome.invalid_reason == "insufficient_funds"
    assert outcome.error_type == "ProtocolError"
    assert len(recorder.requests) == 1

    with pytest.raises(ProtocolError) as excinfo:
        outcome.raise_for_error()
    assert excinfo.value.status == 402
    assert excinfo.value.invalid_reason == "insufficient_funds"


@pytest.mark.asyncio
async def test_invalid_reason_used_when_error_missing():
    recorder = Recorder(httpx.Response(402, json={"invalidReason": "invalid_exact_evm_payload_signature"}))

    outcome = await make_transport(recorder).request_with_payment(ENDPOINT, "encoded-payment")

    assert outcome.error == "invalid_exact_evm_payload_signature"


@pytest.mark.asyncio
async def test_server_error_with_text_body():
    recorder = Recorder(httpx.Response(500, text="upstream exploded"))

    outcome = await make_transport(recorder).request_without_payment(ENDPOINT)

    assert not outcome.success
    assert outcome.error == "HTTP 500"
    assert outcome.data == "upstream exploded"
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_connection_errors_are_retried_then_reported():
    recorder = Recorder(httpx.ConnectError("connection refused"))

    outcome = await make_transport(recorder, max_retries=2).request_with_payment(ENDPOINT, "encoded-payment")

    assert not outcome.success
    assert outcome.error_type == "TransportError"
    assert outcome.paid
    assert len(recorder.requests) == 3


@pytest.mark.asyncio
async def test_retry_disabled():
    recorder = Recorder(httpx.ConnectError("connection refused"))

    outcome = await make_transport(recorder, max_retries=0).request_without_payment(ENDPOINT)

    assert outcome.error_type == "TransportError"
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_transient_timeout_recovers():
    recorder = Recorder(httpx.ReadTimeout("slow"), httpx.Response(200, json={"temperature": 21}))

    outcome = await make_transport(recorder).request_with_payment(ENDPOINT, "encoded-payment")

    assert outcome.success
    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_missing_endpoint_is_a_config_error():
    recorder = Recorder(httpx.Response(200, json={}))

    outcome = await make_transport(recorder).request_without_payment("")

    assert outcome.error_type == "ConfigError"
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_fetch_payment_challenge():
    requirement = {
        "scheme": "exact",
        "network": "base-sepolia",
        "maxAmountRequired": "1000",
        "resource": ENDPOINT,
        "description": "Weather report",
        "mimeType": "application/json",
        "payTo": "0x903918bB1903714E0518Ea2122aCeBfa27f11b6F",
        "maxTimeoutSeconds": 60,
        "asset": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        "extra": {"name": "USDC", "version": "2"},
    }
    recorder = Recorder(
        httpx.Response(402, json={"x402Version": 1, "error": "X-PAYMENT header is required", "accepts": [requirement]})
    )

    challenge = await make_transport(recorder).fetch_payment_challenge(ENDPOINT)

    assert challenge is not None
    assert challenge.error == "X-PAYMENT header is required"
    assert len(challenge.accepts) == 1
    assert challenge.accepts[0].max_amount_required == "1000"
    assert challenge.accepts[0].pay_to == requirement["payTo"]
    assert challenge.accepts[0].extra == {"name": "USDC", "version": "2"}
    assert "X-PAYMENT" not in recorder.requests[0].headers


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"x402Version": 1, "error": "X-PAYMENT header is required", "accepts": [{"scheme": "exact"}]},
        {"x402Version": 1, "accepts": "none"},
        ["not", "a", "challenge"],
    ],
)
async def test_malformed_challenge_is_a_config_error(body):
    recorder = Recorder(httpx.Response(402, json=body))

    with pytest.raises(ConfigError, match="Unusable payment challenge"):
        await make_transport(recorder).fetch_payment_challenge(ENDPOINT)


@pytest.mark.asyncio
async def test_no_challenge_when_resource_is_free():
    recorder = Recorder(httpx.Response(200, json={"temperature": 21}))

    assert await make_transport(recorder).fetch_payment_challenge(ENDPOINT) is None
