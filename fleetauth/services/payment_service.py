# fleetauth/services/payment_service.py
"""
Payment provider access (Stripe).

Only two calls are needed: create a customer for an identity's email and
attach a card token to that customer. The Stripe SDK is synchronous, so
calls run in a worker thread.

Environment variables:
- STRIPE_SECRET_KEY: Stripe API secret key
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import stripe

from fleetauth.core.exceptions import PaymentServiceError, ValidationFailedError

_logger = logging.getLogger(__name__)

STRIPE_API_VERSION = "2023-10-16"


class PaymentService:
    """Thin async wrapper over the Stripe customer/source API."""

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    def is_enabled(self) -> bool:
        return bool(self.api_key and len(self.api_key) > 10)

    def _require_key(self) -> str:
        if not self.is_enabled():
            raise PaymentServiceError("Stripe not configured. Check STRIPE_SECRET_KEY.")
        return self.api_key

    async def create_customer(self, email: str) -> str:
        """Create a Stripe customer and return its id."""
        api_key = self._require_key()
        try:
            customer = await asyncio.to_thread(
                stripe.Customer.create,
                email=email,
                api_key=api_key,
                stripe_version=STRIPE_API_VERSION,
            )
        except stripe.StripeError as e:
            raise PaymentServiceError(f"Customer creation failed: {e}", operation="create_customer")

        _logger.info(f"Created Stripe customer {customer.id}")
        return customer.id

    async def create_card(self, token: str, customer_id: str) -> str:
        """
        Attach a card token to a customer and return the card id.

        Raises:
            ValidationFailedError: If Stripe declines the card
            PaymentServiceError: For any other Stripe failure
        """
        api_key = self._require_key()
        try:
            card = await asyncio.to_thread(
                stripe.Customer.create_source,
                customer_id,
                source=token,
                api_key=api_key,
                stripe_version=STRIPE_API_VERSION,
            )
        except stripe.CardError as e:
            raise ValidationFailedError(e.user_message or "The card was declined.", field="token")
        except stripe.StripeError as e:
            raise PaymentServiceError(f"Card creation failed: {e}", operation="create_card")

        return card.id

    def health_summary(self) -> Dict[str, Any]:
        return {"healthy": True, "status": "configured" if self.is_enabled() else "disabled"}
