"""Public share-link router."""
from fastapi import APIRouter, Depends

from storefront import schemas
from storefront.dependencies import get_product_view
from storefront.exceptions import ProductNotFound
from storefront.monitoring import share_link_views_counter
from storefront.views.products import ProductListingView

router = APIRouter(tags=["share"])


@router.get("/p/{share_id}", response_model=schemas.Product)
async def get_shared_product(
    share_id: str,
    view: ProductListingView = Depends(get_product_view)
):
    """Resolve a share link; no session is needed."""
    product = await view.by_share_id(share_id)
    if product is None:
        share_link_views_counter.add(1, {"status": "not_found"})
        raise ProductNotFound(share_id)

    share_link_views_counter.add(1, {"status": "found"})
    return product
