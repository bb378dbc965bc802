"""
services/payment/gateway.py
Stub payment gateways. No money moves: `demo` always captures, `simulated`
captures with a configurable probability.
"""

import random
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from config.settings import settings


@dataclass
class ChargeResult:
    succeeded: bool
    transaction_id: Optional[str]
    receipt_url: Optional[str]
    error: Optional[str] = None


class DemoGateway:
    """Deterministic gateway: every charge succeeds."""

    prefix = "DEMO"

    def charge(self, booking_id: uuid.UUID, amount: Decimal, currency: str) -> ChargeResult:
        transaction_id = f"{self.prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        return ChargeResult(
            succeeded=True,
            transaction_id=transaction_id,
            receipt_url=f"{settings.RECEIPT_BASE_URL}/{transaction_id}",
        )


class SimulatedGateway(DemoGateway):
    """Random outcome; success with probability `success_rate`."""

    prefix = "SIM"

    def __init__(self, success_rate: float, rng: Optional[random.Random] = None):
        self.success_rate = success_rate
        self.rng = rng or random.Random()

    def charge(self, booking_id: uuid.UUID, amount: Decimal, currency: str) -> ChargeResult:
        if self.rng.random() < self.success_rate:
            return super().charge(booking_id, amount, currency)
        return ChargeResult(
            succeeded=False,
            transaction_id=None,
            receipt_url=None,
            error="Payment declined by gateway",
        )


def get_gateway() -> DemoGateway:
    """FastAPI dependency: the gateway selected by PAYMENT_GATEWAY_MODE."""
    if settings.PAYMENT_GATEWAY_MODE == "simulated":
        return SimulatedGateway(settings.PAYMENT_SIMULATED_SUCCESS_RATE)
    return DemoGateway()
