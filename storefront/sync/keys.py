"""Query keys for the storefront collections."""
from typing import List, Optional

from storefront.config import ALL_CATEGORIES

CART = "cart"
PRODUCTS = "products"


def cart_all():
    return (CART,)


def cart_list(user_id: str):
    return (CART, "list", user_id)


def product_lists():
    return (PRODUCTS, "list")


def product_lists_for(user_id: str):
    return (PRODUCTS, "list", user_id)


def product_list(user_id: str, page: int, category: Optional[str], page_size: int):
    return (PRODUCTS, "list", user_id, page, category or ALL_CATEGORIES, page_size)


def product_detail(product_id: str):
    return (PRODUCTS, "detail", product_id)


def product_shares():
    return (PRODUCTS, "share")


def product_by_share(share_id: str):
    return (PRODUCTS, "share", share_id)


def user_scoped(user_id: str) -> List[tuple]:
    """Prefixes holding data that belongs to one signed-in user."""
    return [cart_list(user_id), product_lists_for(user_id)]
