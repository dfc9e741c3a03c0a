"""Error types for the storefront service."""
from typing import Any

from fastapi import HTTPException, status


class StoreError(Exception):
    """A data-access call came back with an error."""

    def __init__(self, error: Any, operation: str = ""):
        self.error = error
        self.operation = operation
        super().__init__(f"{operation} failed: {error}" if operation else str(error))


class AuthenticationRequired(HTTPException):
    """Exception raised when a session is required"""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )


class ProductNotFound(HTTPException):
    """Exception raised when a product is absent or not owned by the caller"""

    def __init__(self, product_ref: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Product '{product_ref}' not found"
        )


class CartItemNotFound(HTTPException):
    """Exception raised when a cart row does not belong to the caller's cart"""

    def __init__(self, cart_item_id: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Cart item '{cart_item_id}' not found"
        )
