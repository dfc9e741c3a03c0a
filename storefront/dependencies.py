"""Dependency injection for services."""
from fastapi import Request

from storefront.services.checkout_service import CheckoutService
from storefront.services.identity_service import IdentityService
from storefront.services.storage_service import StorageService
from storefront.views.cart import CartView
from storefront.views.products import ProductListingView


def get_identity_service(request: Request) -> IdentityService:
    """Get identity provider client from app state."""
    return request.app.state.identity_service


def get_storage_service(request: Request) -> StorageService:
    """Get object storage client from app state."""
    return request.app.state.storage_service


def get_cart_view(request: Request) -> CartView:
    """Get cart view instance."""
    return request.app.state.cart_view


def get_product_view(request: Request) -> ProductListingView:
    """Get product listing view instance."""
    return request.app.state.product_view


def get_checkout_service(request: Request) -> CheckoutService:
    """Get checkout service instance."""
    return request.app.state.checkout_service
