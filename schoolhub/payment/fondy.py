"""
fondy.py — minimal Fondy checkout client.

Only the call needed to verify merchant credentials is implemented:

    POST https://pay.fondy.eu/api/checkout/url/
    {"request": {..., "signature": sha1("password|v1|v2|...")}}

Signature: SHA-1 over the merchant password followed by every non-empty
request value, ordered by parameter name, joined with "|".
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Callable, Dict, Optional

import httpx

from schoolhub.core.config import Config
from schoolhub.payment import GeneratePaymentLinkInput, PaymentGatewayError

logger = logging.getLogger(__name__)

CHECKOUT_URL = "https://pay.fondy.eu/api/checkout/url/"
REQUEST_TIMEOUT = 10.0


def sign(password: str, params: Dict[str, Any]) -> str:
    values = [str(params[k]) for k in sorted(params) if params[k] not in ("", None)]
    return hashlib.sha1("|".join([password, *values]).encode("utf-8")).hexdigest()


class FondyClient:

    def __init__(
        self,
        merchant_id: str,
        merchant_password: str,
        *,
        callback_url: str = "",
        response_url: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.merchant_id = merchant_id
        self._password = merchant_password
        self.callback_url = callback_url
        self.response_url = response_url
        self._transport = transport

    async def generate_payment_link(self, inp: GeneratePaymentLinkInput) -> str:
        params: Dict[str, Any] = {
            "order_id": inp.order_id,
            "merchant_id": self.merchant_id,
            "order_desc": inp.order_desc,
            "amount": inp.amount,
            "currency": inp.currency,
            "server_callback_url": self.callback_url,
            "response_url": self.response_url,
        }
        params = {k: v for k, v in params.items() if v not in ("", None)}
        params["signature"] = sign(self._password, params)

        try:
            async with httpx.AsyncClient(
                timeout=REQUEST_TIMEOUT, transport=self._transport
            ) as client:
                response = await client.post(CHECKOUT_URL, json={"request": params})
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PaymentGatewayError(f"checkout request failed: {e}") from e

        result = body.get("response", {}) if isinstance(body, dict) else {}
        if result.get("response_status") != "success":
            raise PaymentGatewayError(
                result.get("error_message") or "unexpected gateway response"
            )

        logger.debug("Fondy checkout link generated [order=%s]", inp.order_id)
        return result.get("checkout_url", "")


def client_factory(config: Config) -> Callable[[str, str], FondyClient]:
    """Build per-school clients carrying the configured callback URLs."""

    def build(merchant_id: str, merchant_password: str) -> FondyClient:
        return FondyClient(
            merchant_id,
            merchant_password,
            callback_url=config.payment.callback_url,
            response_url=config.payment.response_url,
        )

    return build
