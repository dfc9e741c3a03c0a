"""Cart API router."""
from fastapi import APIRouter, Depends, HTTPException, status

from storefront.auth import get_current_user_id
from storefront.dependencies import get_cart_view, get_product_view
from storefront.exceptions import CartItemNotFound, ProductNotFound
from storefront.schemas import AddToCartRequest, CartItem, CartResponse, UpdateQuantityRequest
from storefront.views.cart import CartView, calculate_total
from storefront.views.products import ProductListingView

router = APIRouter(prefix="/cart", tags=["cart"])


async def _cart_response(cart: CartView, user_id: str) -> CartResponse:
    items = await cart.items(user_id)
    return CartResponse(user_id=user_id, items=items, total=calculate_total(items))


@router.get("", response_model=CartResponse)
async def get_cart(
    user_id: str = Depends(get_current_user_id),
    cart: CartView = Depends(get_cart_view)
):
    """Get user's cart - requires authentication."""
    return await _cart_response(cart, user_id)


@router.post("/items", response_model=CartItem, status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    request: AddToCartRequest,
    user_id: str = Depends(get_current_user_id),
    cart: CartView = Depends(get_cart_view),
    products: ProductListingView = Depends(get_product_view)
):
    """Add item to cart; adding a product already in the cart raises its quantity."""
    if await products.detail(request.product_id) is None:
        raise ProductNotFound(request.product_id)

    try:
        return await cart.add(user_id, request.product_id, request.quantity)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.patch("/items/{cart_item_id}", response_model=CartResponse)
async def update_cart_item(
    cart_item_id: str,
    request: UpdateQuantityRequest,
    user_id: str = Depends(get_current_user_id),
    cart: CartView = Depends(get_cart_view)
):
    """Set a row's quantity; quantities below 1 leave the cart unchanged."""
    try:
        await cart.update_quantity(user_id, cart_item_id, request.quantity)
    except LookupError:
        raise CartItemNotFound(cart_item_id)
    return await _cart_response(cart, user_id)


@router.delete("/items/{cart_item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_cart_item(
    cart_item_id: str,
    user_id: str = Depends(get_current_user_id),
    cart: CartView = Depends(get_cart_view)
):
    """Remove a row from the cart."""
    try:
        await cart.remove(user_id, cart_item_id)
    except LookupError:
        raise CartItemNotFound(cart_item_id)
