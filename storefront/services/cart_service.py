"""Cart data access."""
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.orm import joinedload

from storefront import schemas
from storefront.models import CartItem
from storefront.services.store import StoreResult, StoreService, insert_for

logger = logging.getLogger(__name__)


class CartService(StoreService):
    """Queries against ``cart_items``; every call returns a StoreResult."""

    def add_to_cart(self, user_id: str, product_id: str, quantity: int = 1) -> StoreResult:
        """
        Add ``quantity`` of a product to the user's cart.

        A single upsert either inserts the row or increments the existing
        quantity, so concurrent adds for the same product never produce a
        second row.

        Args:
            user_id: Cart owner
            product_id: Product identifier
            quantity: Quantity to add

        Returns:
            StoreResult with the resulting cart row
        """
        def work(db):
            insert = insert_for(db)
            stmt = insert(CartItem).values(
                id=str(uuid.uuid4()),
                user_id=user_id,
                product_id=product_id,
                quantity=quantity,
                created_at=datetime.now(timezone.utc),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[CartItem.user_id, CartItem.product_id],
                set_={"quantity": CartItem.quantity + stmt.excluded.quantity},
            )
            db.execute(stmt)
            row = db.execute(
                select(CartItem)
                .options(joinedload(CartItem.product))
                .where(CartItem.user_id == user_id, CartItem.product_id == product_id)
            ).scalar_one()
            return schemas.CartItem.model_validate(row)

        result = self._execute(
            "UPSERT", "cart_items", work,
            **{"user.id": user_id, "product.id": product_id, "quantity": quantity}
        )
        if result.ok:
            logger.info("Added product to cart", extra={
                "user_id": user_id,
                "product_id": product_id,
                "quantity": quantity,
                "cart_quantity": result.data.quantity
            })
        return result

    def get_cart_items(self, user_id: str) -> StoreResult:
        """
        Get cart rows for a user, each joined with its product.

        Args:
            user_id: Cart owner

        Returns:
            StoreResult with a list of cart items
        """
        def work(db):
            rows = db.execute(
                select(CartItem)
                .options(joinedload(CartItem.product))
                .where(CartItem.user_id == user_id)
                .order_by(CartItem.created_at, CartItem.id)
            ).scalars().all()
            return [schemas.CartItem.model_validate(row) for row in rows]

        return self._execute("SELECT", "cart_items", work, **{"user.id": user_id})

    def update_cart_item(self, user_id: str, cart_item_id: str, quantity: int) -> StoreResult:
        """Set the quantity of one of the user's cart rows; data is the row count."""
        def work(db):
            return db.execute(
                update(CartItem)
                .where(CartItem.id == cart_item_id, CartItem.user_id == user_id)
                .values(quantity=quantity)
            ).rowcount

        return self._execute(
            "UPDATE", "cart_items", work,
            **{"user.id": user_id, "cart_item.id": cart_item_id, "quantity": quantity}
        )

    def remove_from_cart(self, user_id: str, cart_item_id: str) -> StoreResult:
        """Delete one of the user's cart rows; data is the row count."""
        def work(db):
            return db.execute(
                delete(CartItem).where(CartItem.id == cart_item_id, CartItem.user_id == user_id)
            ).rowcount

        return self._execute(
            "DELETE", "cart_items", work,
            **{"user.id": user_id, "cart_item.id": cart_item_id}
        )

    def clear_cart(self, user_id: str) -> StoreResult:
        """Delete every cart row of the user; data is the row count."""
        def work(db):
            return db.execute(delete(CartItem).where(CartItem.user_id == user_id)).rowcount

        result = self._execute("DELETE", "cart_items", work, **{"user.id": user_id})
        if result.ok:
            logger.info("Cleared cart", extra={"user_id": user_id, "rows_deleted": result.data})
        return result
