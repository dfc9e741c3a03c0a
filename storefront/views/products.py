"""Product listing view: pages, details, share links, likes and product CRUD."""
import logging
from typing import Optional

from starlette.concurrency import run_in_threadpool

from storefront import schemas
from storefront.config import PAGE_SIZE
from storefront.exceptions import StoreError
from storefront.monitoring import likes_toggled_counter, product_views_counter, products_created_counter
from storefront.services.product_service import ProductService
from storefront.sync import keys
from storefront.sync.mutations import Mutation, OptimisticPatch
from storefront.sync.query_client import QueryClient

logger = logging.getLogger(__name__)


def _flip_like(product_id: str):
    def flip(product: schemas.Product) -> schemas.Product:
        delta = -1 if product.has_liked else 1
        return product.model_copy(update={
            "has_liked": not product.has_liked,
            "likes_count": max(0, product.likes_count + delta),
        })

    def updater(page: schemas.ProductPage) -> schemas.ProductPage:
        return page.model_copy(update={
            "items": [flip(p) if p.id == product_id else p for p in page.items]
        })
    return updater


def _drop_product(product_id: str):
    def updater(page: schemas.ProductPage) -> schemas.ProductPage:
        items = [p for p in page.items if p.id != product_id]
        if len(items) == len(page.items):
            return page
        return page.model_copy(update={"items": items, "total": max(0, page.total - 1)})
    return updater


class ProductListingView:
    """Cached reads and mutations of products."""

    def __init__(self, client: QueryClient, product_service: ProductService):
        self.client = client
        self.product_service = product_service

    async def list(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = PAGE_SIZE,
        category: Optional[str] = None
    ) -> schemas.ProductPage:
        """
        One page of the user's products with like state overlaid.

        Raises:
            ValueError: If page or page_size is below 1
        """
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be at least 1")

        async def fetch():
            result = await run_in_threadpool(
                self.product_service.get_user_products, user_id, page, page_size, category
            )
            if not result.ok:
                raise StoreError(result.error, "products.list")
            return result.data

        product_views_counter.add(1, {"view": "list"})
        return await self.client.fetch_query(keys.product_list(user_id, page, category, page_size), fetch)

    async def detail(self, product_id: str) -> Optional[schemas.Product]:
        async def fetch():
            result = await run_in_threadpool(self.product_service.get_product_by_id, product_id)
            if not result.ok:
                raise StoreError(result.error, "products.detail")
            return result.data

        product_views_counter.add(1, {"view": "detail"})
        return await self.client.fetch_query(keys.product_detail(product_id), fetch)

    async def by_share_id(self, share_id: str) -> Optional[schemas.Product]:
        async def fetch():
            result = await run_in_threadpool(self.product_service.get_product_by_share_id, share_id)
            if not result.ok:
                raise StoreError(result.error, "products.share")
            return result.data

        return await self.client.fetch_query(keys.product_by_share(share_id), fetch)

    async def create(self, user_id: str, payload: schemas.ProductCreate) -> schemas.Product:
        """
        Create a product for the user.

        Raises:
            ValueError: If the product has no image or a negative price
            StoreError: If the store rejected the insert
        """
        if not payload.image_urls:
            raise ValueError("Please upload at least one image")
        if payload.price < 0:
            raise ValueError("price must not be negative")

        product = await Mutation(self.client, "products.create").run(
            lambda: run_in_threadpool(
                self.product_service.create_product,
                user_id,
                payload.name,
                payload.description,
                payload.price,
                payload.image_urls,
                payload.category,
                payload.tags,
            ),
            invalidate=[keys.product_lists_for(user_id)],
        )
        self.client.set_query_data(keys.product_detail(product.id), product)
        products_created_counter.add(1, {"category": payload.category or "none"})
        return product

    async def update(
        self,
        user_id: str,
        product_id: str,
        changes: schemas.ProductUpdate
    ) -> schemas.Product:
        """
        Apply a partial update to one of the user's products.

        Cart rows carry the joined product, so every cached cart is refetched
        along with the owner's pages.

        Raises:
            LookupError: If the product does not exist or belongs to someone else
        """
        updates = changes.model_dump(exclude_unset=True)
        product = await Mutation(self.client, "products.update").run(
            lambda: run_in_threadpool(self.product_service.update_product, user_id, product_id, updates),
            invalidate=[keys.product_lists_for(user_id), keys.cart_all()],
        )
        if product is None:
            raise LookupError(product_id)

        self.client.set_query_data(keys.product_detail(product.id), product)
        self.client.remove_queries(keys.product_by_share(product.share_id))
        return product

    async def delete(self, user_id: str, product_id: str) -> None:
        """
        Delete one of the user's products.

        The product leaves the cached pages at once. Its cart rows go with it
        in the store, so every cached cart is refetched afterwards.

        Raises:
            LookupError: If the product does not exist or belongs to someone else
        """
        deleted = await Mutation(self.client, "products.delete").run(
            lambda: run_in_threadpool(self.product_service.delete_product, user_id, product_id),
            patches=[OptimisticPatch(keys.product_lists_for(user_id), _drop_product(product_id))],
            invalidate=[keys.product_lists_for(user_id), keys.cart_all()],
        )
        if not deleted:
            raise LookupError(product_id)

        self.client.remove_queries(keys.product_detail(product_id))
        for key, product in self.client.get_queries_data(keys.product_shares()):
            if product is not None and product.id == product_id:
                self.client.remove_queries(key)
        logger.info("Product removed from cache", extra={"user_id": user_id, "product_id": product_id})

    async def toggle_like(self, user_id: str, product_id: str) -> bool:
        """
        Like or unlike a product; returns the new like state.

        Every cached page of the user showing the product is flipped before
        the store answers and restored if it fails. Other owners' pages show the
        like count too, so every cached list is refetched afterwards.
        """
        liked = await Mutation(self.client, "products.toggle_like").run(
            lambda: run_in_threadpool(self.product_service.toggle_product_like, user_id, product_id),
            patches=[OptimisticPatch(keys.product_lists_for(user_id), _flip_like(product_id))],
            invalidate=[keys.product_lists(), keys.product_detail(product_id)],
        )
        likes_toggled_counter.add(1, {"liked": str(liked).lower()})
        return liked
