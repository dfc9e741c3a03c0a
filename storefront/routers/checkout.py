"""Checkout API router."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from opentelemetry import trace

from storefront.auth import get_current_user_id
from storefront.dependencies import get_checkout_service
from storefront.schemas import CheckoutRequest, CheckoutResponse, CheckoutSummary
from storefront.services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.get("", response_model=CheckoutSummary)
async def checkout_summary(
    user_id: str = Depends(get_current_user_id),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Order summary; an empty cart sends the caller back to the cart page."""
    summary = await checkout_service.summary(user_id)
    if not summary.items:
        return RedirectResponse("/cart", status_code=303)
    return summary


@router.post("", response_model=CheckoutResponse)
async def checkout(
    request: CheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """
    Process checkout - requires authentication.

    Card details are validated by the request schema and never stored.
    """
    span = trace.get_current_span()
    span.set_attribute("checkout.user_id", user_id)

    try:
        result = await checkout_service.process_checkout(user_id, request)
    except ValueError as e:
        logger.warning("Checkout rejected", extra={"user_id": user_id, "error": str(e)})
        raise HTTPException(status_code=400, detail=str(e))

    return CheckoutResponse(
        message="Payment successful",
        total_amount=result["total_amount"],
        item_count=result["item_count"]
    )
