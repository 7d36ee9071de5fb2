from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import stripe

from . import config


logger = logging.getLogger(__name__)


class PaymentFailed(RuntimeError):
    pass


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str
    amount: int
    status: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class PaymentGateway(Protocol):
    def create_intent(self, plan: str, metadata: Dict[str, str]) -> PaymentIntent:
        ...

    def retrieve(self, intent_id: str) -> PaymentIntent:
        ...

    def is_paid(self, intent_id: str) -> bool:
        ...


def plan_amount(plan: str) -> int:
    try:
        return config.PLAN_PRICES_CENTS[plan]
    except KeyError:
        plans = ", ".join(sorted(config.PLAN_PRICES_CENTS))
        raise ValueError(f"Unknown plan {plan!r}; expected one of {plans}") from None


def verify_payment(
    gateway: PaymentGateway,
    intent_id: str,
    amount: int,
    metadata: Optional[Dict[str, str]] = None,
) -> PaymentIntent:
    """Check that an intent succeeded for at least `amount` and belongs to the order named by `metadata`."""
    intent = gateway.retrieve(intent_id)
    if not intent.succeeded:
        raise PaymentFailed("Payment not successful")
    if intent.amount < amount:
        raise PaymentFailed(f"Payment {intent_id} covers {intent.amount}, order costs {amount}")
    for key, value in (metadata or {}).items():
        if intent.metadata.get(key) != value:
            raise PaymentFailed(f"Payment {intent_id} belongs to another order")
    return intent


class StripeGateway:
    def __init__(self, api_key: Optional[str] = None) -> None:
        self.api_key = api_key or config.STRIPE_SECRET_KEY

    def create_intent(self, plan: str, metadata: Dict[str, str]) -> PaymentIntent:
        amount = plan_amount(plan)
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=config.CURRENCY,
                metadata=metadata,
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            raise PaymentFailed(f"Could not create payment: {exc}") from exc
        return PaymentIntent(id=intent.id, client_secret=intent.client_secret, amount=amount)

    def retrieve(self, intent_id: str) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            raise PaymentFailed(f"Could not check payment {intent_id}: {exc}") from exc
        logger.info("Payment %s status %s", intent_id, intent.status)
        return PaymentIntent(
            id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount_received or 0,
            status=intent.status,
            metadata=dict(intent.metadata or {}),
        )

    def is_paid(self, intent_id: str) -> bool:
        return self.retrieve(intent_id).succeeded
