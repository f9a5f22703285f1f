"""
Payment gateway integration.

Modules:
    fondy — Fondy checkout client
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class PaymentGatewayError(Exception):
    """The gateway refused the request or could not be reached."""


@dataclass(frozen=True)
class GeneratePaymentLinkInput:
    order_id: str
    amount: int          # minor units (cents)
    currency: str
    order_desc: str


class PaymentGateway(Protocol):

    async def generate_payment_link(self, inp: GeneratePaymentLinkInput) -> str:
        ...
