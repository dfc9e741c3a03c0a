"""Simulated checkout."""
import asyncio
import logging
from typing import Any, Dict

from opentelemetry import trace

from storefront import schemas
from storefront.config import CHECKOUT_PROCESSING_DELAY
from storefront.monitoring import checkout_amount_histogram, checkout_counter
from storefront.views.cart import CartView, calculate_total

logger = logging.getLogger(__name__)


class CheckoutService:
    """Service completing a purchase; no payment provider is involved."""

    def __init__(self, cart_view: CartView, processing_delay: float = CHECKOUT_PROCESSING_DELAY):
        """
        Initialize checkout service.

        Args:
            cart_view: Cart view used to read and clear the cart
            processing_delay: Seconds the simulated payment takes
        """
        self.cart_view = cart_view
        self.processing_delay = processing_delay
        self.tracer = trace.get_tracer(__name__)

    async def summary(self, user_id: str) -> schemas.CheckoutSummary:
        """Order summary for the user's current cart."""
        items = await self.cart_view.items(user_id)
        subtotal = calculate_total(items)
        return schemas.CheckoutSummary(items=items, subtotal=subtotal, total=subtotal)

    async def process_checkout(self, user_id: str, request: schemas.CheckoutRequest) -> Dict[str, Any]:
        """
        Process checkout for user's cart.

        Args:
            user_id: User identifier
            request: Validated card details; they are not stored or forwarded

        Returns:
            Checkout result with the charged total

        Raises:
            ValueError: If cart is empty
        """
        span = trace.get_current_span()
        span.set_attribute("user.id", user_id)

        items = await self.cart_view.items(user_id, refresh=True)
        if not items:
            checkout_counter.add(1, {"status": "empty_cart"})
            raise ValueError("Cart is empty")

        total_amount = calculate_total(items)
        item_count = sum(item.quantity for item in items)

        with self.tracer.start_as_current_span("checkout.simulated_payment") as payment_span:
            payment_span.set_attribute("checkout.amount", float(total_amount))
            payment_span.set_attribute("checkout.card_last4", request.card_number[-4:])
            await asyncio.sleep(self.processing_delay)

        await self.cart_view.clear(user_id)

        checkout_counter.add(1, {"status": "completed"})
        checkout_amount_histogram.record(float(total_amount))

        logger.info("Checkout completed", extra={
            "user_id": user_id,
            "amount": str(total_amount),
            "item_count": item_count
        })

        return {
            "total_amount": total_amount,
            "item_count": item_count
        }
