"""Cart aggregate view over the cached cart collection."""
import logging
from decimal import Decimal
from typing import Iterable, List, Set

from starlette.concurrency import run_in_threadpool

from storefront import schemas
from storefront.exceptions import StoreError
from storefront.monitoring import cart_additions_counter, cart_mutations_counter
from storefront.services.cart_service import CartService
from storefront.sync import keys
from storefront.sync.mutations import Mutation, OptimisticPatch
from storefront.sync.query_client import QueryClient

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def calculate_total(items: Iterable[schemas.CartItem]) -> Decimal:
    """
    Sum quantity x price over cart rows.

    A row whose product join is missing contributes 0.
    """
    total = Decimal("0")
    for item in items:
        price = item.product.price if item.product is not None else 0
        total += Decimal(str(price or 0)) * item.quantity
    return total.quantize(CENTS)


def _set_quantity(cart_item_id: str, quantity: int):
    def updater(items):
        return [
            item.model_copy(update={"quantity": quantity}) if item.id == cart_item_id else item
            for item in items
        ]
    return updater


def _add_quantity(product_id: str, quantity: int):
    def updater(items):
        return [
            item.model_copy(update={"quantity": item.quantity + quantity})
            if item.product_id == product_id else item
            for item in items
        ]
    return updater


def _without(cart_item_id: str):
    def updater(items):
        return [item for item in items if item.id != cart_item_id]
    return updater


class CartView:
    """Reads and mutations of a user's cart through the query cache."""

    def __init__(self, client: QueryClient, cart_service: CartService):
        self.client = client
        self.cart_service = cart_service

    async def items(self, user_id: str, refresh: bool = False) -> List[schemas.CartItem]:
        """Cart rows of the user; ``refresh`` waits for an authoritative read."""
        async def fetch():
            result = await run_in_threadpool(self.cart_service.get_cart_items, user_id)
            if not result.ok:
                raise StoreError(result.error, "cart.list")
            return result.data or []

        return await self.client.fetch_query(keys.cart_list(user_id), fetch, force=refresh)

    async def total(self, user_id: str) -> Decimal:
        return calculate_total(await self.items(user_id))

    async def product_ids(self, user_id: str) -> Set[str]:
        return {item.product_id for item in await self.items(user_id)}

    async def contains(self, user_id: str, product_id: str) -> bool:
        return product_id in await self.product_ids(user_id)

    async def add(self, user_id: str, product_id: str, quantity: int = 1) -> schemas.CartItem:
        """
        Add ``quantity`` of a product to the cart.

        Repeated adds of the same product accumulate on one row. A row that is
        already cached has its quantity bumped before the store answers.

        Raises:
            ValueError: If quantity is below 1
            StoreError: If the store rejected the write
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        try:
            item = await Mutation(self.client, "cart.add").run(
                lambda: run_in_threadpool(self.cart_service.add_to_cart, user_id, product_id, quantity),
                patches=[OptimisticPatch(keys.cart_list(user_id), _add_quantity(product_id, quantity))],
                invalidate=[keys.cart_list(user_id)],
            )
        except StoreError:
            cart_mutations_counter.add(1, {"operation": "add", "status": "failed"})
            raise

        cart_additions_counter.add(1, {"product_id": product_id})
        cart_mutations_counter.add(1, {"operation": "add", "status": "ok"})
        return item

    async def update_quantity(self, user_id: str, cart_item_id: str, quantity: int) -> bool:
        """
        Set a row's quantity.

        Quantities below 1 are ignored: nothing is patched or sent, and False
        is returned.

        Raises:
            LookupError: If the row is not in the user's cart
            StoreError: If the store rejected the write; the cache is restored
        """
        if quantity < 1:
            return False

        try:
            updated = await Mutation(self.client, "cart.update_quantity").run(
                lambda: run_in_threadpool(self.cart_service.update_cart_item, user_id, cart_item_id, quantity),
                patches=[OptimisticPatch(keys.cart_list(user_id), _set_quantity(cart_item_id, quantity))],
                invalidate=[keys.cart_list(user_id)],
            )
        except StoreError:
            cart_mutations_counter.add(1, {"operation": "update_quantity", "status": "failed"})
            raise

        if not updated:
            raise LookupError(cart_item_id)
        cart_mutations_counter.add(1, {"operation": "update_quantity", "status": "ok"})
        return True

    async def remove(self, user_id: str, cart_item_id: str) -> None:
        """
        Remove a row from the cart, optimistically.

        Raises:
            LookupError: If the row is not in the user's cart
            StoreError: If the store rejected the delete; the cache is restored
        """
        try:
            removed = await Mutation(self.client, "cart.remove").run(
                lambda: run_in_threadpool(self.cart_service.remove_from_cart, user_id, cart_item_id),
                patches=[OptimisticPatch(keys.cart_list(user_id), _without(cart_item_id))],
                invalidate=[keys.cart_list(user_id)],
            )
        except StoreError:
            cart_mutations_counter.add(1, {"operation": "remove", "status": "failed"})
            raise

        if not removed:
            raise LookupError(cart_item_id)
        cart_mutations_counter.add(1, {"operation": "remove", "status": "ok"})

    async def clear(self, user_id: str) -> int:
        """Empty the cart; returns the number of rows deleted."""
        deleted = await Mutation(self.client, "cart.clear").run(
            lambda: run_in_threadpool(self.cart_service.clear_cart, user_id),
            patches=[OptimisticPatch(keys.cart_list(user_id), lambda items: [])],
            invalidate=[keys.cart_list(user_id)],
        )
        cart_mutations_counter.add(1, {"operation": "clear", "status": "ok"})
        return deleted
