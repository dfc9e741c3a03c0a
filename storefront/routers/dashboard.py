"""Dashboard router."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from storefront import schemas
from storefront.auth import get_current_user_id
from storefront.config import ALL_CATEGORIES, PAGE_SIZE, PRODUCT_CATEGORIES
from storefront.dependencies import get_cart_view, get_product_view
from storefront.views.cart import CartView
from storefront.views.products import ProductListingView

router = APIRouter(tags=["dashboard"])


@router.get("/dashboard", response_model=schemas.DashboardResponse)
async def dashboard(
    page: int = Query(1, ge=1),
    page_size: int = Query(PAGE_SIZE, ge=1, le=100),
    category: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    products: ProductListingView = Depends(get_product_view),
    cart: CartView = Depends(get_cart_view)
):
    """
    The caller's products, one page at a time, with the ids already in the cart.

    ``category`` filters exactly; omitting it or passing "All" shows everything.
    """
    category = category or ALL_CATEGORIES
    if category != ALL_CATEGORIES and category not in PRODUCT_CATEGORIES:
        raise HTTPException(status_code=400, detail=f"Unknown category '{category}'")

    product_page = await products.list(user_id, page=page, page_size=page_size, category=category)
    in_cart = await cart.product_ids(user_id)
    return schemas.DashboardResponse(
        products=product_page,
        category=category,
        cart_product_ids=sorted(in_cart)
    )
