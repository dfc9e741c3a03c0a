"""Products API router."""
import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from opentelemetry import trace

from storefront import schemas
from storefront.auth import get_current_session, get_current_user_id
from storefront.dependencies import get_product_view, get_storage_service
from storefront.exceptions import ProductNotFound
from storefront.services.identity_service import Session
from storefront.services.storage_service import StorageService
from storefront.views.products import ProductListingView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


@router.post("", response_model=schemas.Product, status_code=status.HTTP_201_CREATED)
async def create_product(
    request: schemas.ProductCreate,
    user_id: str = Depends(get_current_user_id),
    view: ProductListingView = Depends(get_product_view)
):
    """Create a product owned by the caller; at least one image URL is required."""
    try:
        return await view.create(user_id, request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/images", response_model=schemas.ImageUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    file: UploadFile = File(...),
    session: Session = Depends(get_current_session),
    storage: StorageService = Depends(get_storage_service)
):
    """Upload a product image and return its public URL."""
    content = await file.read()
    url = await storage.upload_product_image(
        session.user.id,
        file.filename or "upload",
        content,
        file.content_type or "",
        access_token=session.access_token
    )
    if url is None:
        raise HTTPException(status_code=400, detail="Image could not be uploaded")
    return schemas.ImageUploadResponse(url=url)


@router.get("/{product_id}", response_model=schemas.Product)
async def get_product(
    product_id: str,
    user_id: str = Depends(get_current_user_id),
    view: ProductListingView = Depends(get_product_view)
):
    """Get one of the caller's products."""
    product = await view.detail(product_id)
    if product is None or product.user_id != user_id:
        raise ProductNotFound(product_id)

    span = trace.get_current_span()
    span.set_attribute("product.id", product_id)
    return product


@router.patch("/{product_id}", response_model=schemas.Product)
async def update_product(
    product_id: str,
    request: schemas.ProductUpdate,
    user_id: str = Depends(get_current_user_id),
    view: ProductListingView = Depends(get_product_view)
):
    """Partially update one of the caller's products."""
    try:
        return await view.update(user_id, product_id, request)
    except LookupError:
        raise ProductNotFound(product_id)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: str,
    user_id: str = Depends(get_current_user_id),
    view: ProductListingView = Depends(get_product_view)
):
    """Delete one of the caller's products; it also leaves every cart."""
    try:
        await view.delete(user_id, product_id)
    except LookupError:
        raise ProductNotFound(product_id)


@router.post("/{product_id}/like", response_model=schemas.LikeResponse)
async def toggle_like(
    product_id: str,
    user_id: str = Depends(get_current_user_id),
    view: ProductListingView = Depends(get_product_view)
):
    """Like the product, or remove the caller's like if present."""
    if await view.detail(product_id) is None:
        raise ProductNotFound(product_id)
    liked = await view.toggle_like(user_id, product_id)
    return schemas.LikeResponse(product_id=product_id, liked=liked)
