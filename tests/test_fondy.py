"""
Tests for the Fondy checkout client.

Uses httpx.MockTransport, so no request leaves the process.
"""

from __future__ import annotations

import asyncio
import hashlib
import json

import httpx
import pytest

from schoolhub.core.config import Config, FondyConfig, PaymentConfig
from schoolhub.payment import GeneratePaymentLinkInput, PaymentGatewayError
from schoolhub.payment.fondy import CHECKOUT_URL, FondyClient, client_factory, sign

ORDER = GeneratePaymentLinkInput(
    order_id="order-1",
    amount=1000,
    currency="USD",
    order_desc="Test order",
)


def _transport(captured: list, status_code: int = 200, body=None) -> httpx.MockTransport:
    if body is None:
        body = {"response": {
            "response_status": "success",
            "checkout_url": "https://pay.fondy.eu/merchants/abc/checkout",
        }}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(status_code, json=body)

    return httpx.MockTransport(handler)


class TestSign:
    def test_sorted_non_empty_values(self):
        params = {
            "order_id": "order-1",
            "merchant_id": "1396424",
            "order_desc": "Test order",
            "amount": 1000,
            "currency": "USD",
            "response_url": "",
        }
        expected = hashlib.sha1(b"secret|1000|USD|1396424|Test order|order-1").hexdigest()
        assert sign("secret", params) == expected


class TestFondyClient:
    def test_success_returns_checkout_url(self):
        captured: list = []
        client = FondyClient("1396424", "secret", transport=_transport(captured))

        url = asyncio.run(client.generate_payment_link(ORDER))

        assert url == "https://pay.fondy.eu/merchants/abc/checkout"
        assert len(captured) == 1
        request = captured[0]
        assert str(request.url) == CHECKOUT_URL
        assert request.method == "POST"

    def test_request_is_signed(self):
        captured: list = []
        client = FondyClient("1396424", "secret", transport=_transport(captured))

        asyncio.run(client.generate_payment_link(ORDER))

        sent = json.loads(captured[0].content)["request"]
        assert sent["merchant_id"] == "1396424"
        assert sent["amount"] == 1000
        assert sent["currency"] == "USD"
        assert sent["signature"] == hashlib.sha1(
            b"secret|1000|USD|1396424|Test order|order-1"
        ).hexdigest()
        assert "server_callback_url" not in sent

    def test_callback_urls_included_when_configured(self):
        captured: list = []
        client = FondyClient(
            "1396424", "secret",
            callback_url="https://api.example.com/callback",
            response_url="https://school.example.com/thanks",
            transport=_transport(captured),
        )

        asyncio.run(client.generate_payment_link(ORDER))

        sent = json.loads(captured[0].content)["request"]
        assert sent["server_callback_url"] == "https://api.example.com/callback"
        assert sent["response_url"] == "https://school.example.com/thanks"

    def test_failure_status_raises(self):
        body = {"response": {
            "response_status": "failure",
            "error_message": "Invalid merchant_id",
            "error_code": 1002,
        }}
        client = FondyClient("bad", "secret", transport=_transport([], body=body))

        with pytest.raises(PaymentGatewayError, match="Invalid merchant_id"):
            asyncio.run(client.generate_payment_link(ORDER))

    def test_http_error_raises(self):
        client = FondyClient("1396424", "secret", transport=_transport([], status_code=500))

        with pytest.raises(PaymentGatewayError):
            asyncio.run(client.generate_payment_link(ORDER))

    def test_connection_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = FondyClient("1396424", "secret", transport=httpx.MockTransport(handler))

        with pytest.raises(PaymentGatewayError):
            asyncio.run(client.generate_payment_link(ORDER))

    def test_unexpected_body_raises(self):
        client = FondyClient("1396424", "secret", transport=_transport([], body=["nope"]))

        with pytest.raises(PaymentGatewayError):
            asyncio.run(client.generate_payment_link(ORDER))


class TestClientFactory:
    def test_carries_configured_urls(self):
        config = Config(payment=PaymentConfig(
            fondy=FondyConfig(merchant_id="platform"),
            callback_url="https://api.example.com/callback",
            response_url="https://school.example.com/thanks",
        ))

        client = client_factory(config)("1396424", "secret")

        assert client.merchant_id == "1396424"
        assert client.callback_url == "https://api.example.com/callback"
        assert client.response_url == "https://school.example.com/thanks"
