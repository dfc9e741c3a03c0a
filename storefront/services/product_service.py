"""Product and like data access."""
import logging
import secrets
import string
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from storefront import schemas
from storefront.config import ALL_CATEGORIES
from storefront.models import Product, ProductLike
from storefront.services.store import StoreResult, StoreService, insert_for

logger = logging.getLogger(__name__)

SHARE_ID_ALPHABET = string.ascii_letters + string.digits + "_-"
SHARE_ID_LENGTH = 10


def generate_share_id() -> str:
    """Generate the public share token for a new product."""
    return "".join(secrets.choice(SHARE_ID_ALPHABET) for _ in range(SHARE_ID_LENGTH))


def _likes_counts(db: Session, product_ids: Iterable[str]) -> Dict[str, int]:
    rows = db.execute(
        select(ProductLike.product_id, func.count())
        .where(ProductLike.product_id.in_(list(product_ids)))
        .group_by(ProductLike.product_id)
    ).all()
    return {product_id: count for product_id, count in rows}


def _liked_by(db: Session, user_id: str, product_ids: Iterable[str]) -> Set[str]:
    return set(db.execute(
        select(ProductLike.product_id).where(
            ProductLike.user_id == user_id,
            ProductLike.product_id.in_(list(product_ids)),
        )
    ).scalars())


def _to_schema(row: Product, likes_count: int = 0, has_liked: bool = False) -> schemas.Product:
    product = schemas.Product.model_validate(row)
    return product.model_copy(update={"likes_count": likes_count, "has_liked": has_liked})


def _with_likes(db: Session, row: Optional[Product], viewer_id: Optional[str]) -> Optional[schemas.Product]:
    if row is None:
        return None
    counts = _likes_counts(db, [row.id])
    liked = _liked_by(db, viewer_id, [row.id]) if viewer_id else set()
    return _to_schema(row, counts.get(row.id, 0), row.id in liked)


class ProductService(StoreService):
    """Queries against ``products`` and ``product_likes``."""

    def create_product(
        self,
        user_id: str,
        name: str,
        description: str,
        price: Decimal,
        image_urls: List[str],
        category: Optional[str] = None,
        tags: Optional[List[str]] = None
    ) -> StoreResult:
        """
        Insert a product with a freshly generated share token.

        Returns:
            StoreResult with the created product
        """
        def work(db):
            product = Product(
                user_id=user_id,
                name=name,
                description=description,
                price=price,
                share_id=generate_share_id(),
                image_urls=list(image_urls),
                category=category,
                tags=tags,
            )
            db.add(product)
            db.flush()
            db.refresh(product)
            return _to_schema(product)

        result = self._execute("INSERT", "products", work, **{"user.id": user_id})
        if result.ok:
            logger.info("Created product", extra={
                "user_id": user_id,
                "product_id": result.data.id,
                "share_id": result.data.share_id,
                "category": category
            })
        return result

    def get_user_products(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 12,
        category: Optional[str] = None
    ) -> StoreResult:
        """
        Get one page of a user's products, newest first.

        The page is overlaid with like counts and the user's own likes. A
        separate count query gives the total so callers know whether more
        pages exist.

        Args:
            user_id: Owner and viewing user
            page: 1-indexed page number
            limit: Page size
            category: Exact category filter; None or "All" disables it

        Returns:
            StoreResult with a ProductPage
        """
        offset = (page - 1) * limit

        def work(db):
            conditions = [Product.user_id == user_id]
            if category and category != ALL_CATEGORIES:
                conditions.append(Product.category == category)

            total = db.execute(
                select(func.count()).select_from(Product).where(*conditions)
            ).scalar_one()
            rows = db.execute(
                select(Product)
                .where(*conditions)
                .order_by(Product.created_at.desc(), Product.id.desc())
                .offset(offset)
                .limit(limit)
            ).scalars().all()

            items = []
            if rows:
                ids = [row.id for row in rows]
                counts = _likes_counts(db, ids)
                liked = _liked_by(db, user_id, ids)
                items = [_to_schema(row, counts.get(row.id, 0), row.id in liked) for row in rows]

            return schemas.ProductPage(
                items=items,
                page=page,
                page_size=limit,
                total=total,
                has_more=offset + len(items) < total,
            )

        return self._execute(
            "SELECT", "products", work,
            **{"user.id": user_id, "page": page, "category": category or ALL_CATEGORIES}
        )

    def get_product_by_id(self, product_id: str, viewer_id: Optional[str] = None) -> StoreResult:
        """Get a product by primary key; data is None when absent."""
        def work(db):
            return _with_likes(db, db.get(Product, product_id), viewer_id)

        return self._execute("SELECT", "products", work, **{"product.id": product_id})

    def get_product_by_share_id(self, share_id: str) -> StoreResult:
        """Get a product by its public share token; data is None when absent."""
        def work(db):
            row = db.execute(select(Product).where(Product.share_id == share_id)).scalar_one_or_none()
            return _with_likes(db, row, None)

        return self._execute("SELECT", "products", work, **{"product.share_id": share_id})

    def update_product(self, user_id: str, product_id: str, updates: Dict[str, Any]) -> StoreResult:
        """
        Update a product owned by ``user_id``.

        The owner filter is part of the UPDATE itself, so a non-owner changes
        nothing and gets None back. The row carries no viewer like state, as
        it goes to the shared detail cache.
        """
        def work(db):
            if updates:
                updated = db.execute(
                    update(Product)
                    .where(Product.id == product_id, Product.user_id == user_id)
                    .values(**updates)
                ).rowcount
                if not updated:
                    return None
            row = db.execute(
                select(Product).where(Product.id == product_id, Product.user_id == user_id)
            ).scalar_one_or_none()
            if row is not None:
                db.refresh(row)
            return _with_likes(db, row, None)

        return self._execute(
            "UPDATE", "products", work,
            **{"user.id": user_id, "product.id": product_id}
        )

    def delete_product(self, user_id: str, product_id: str) -> StoreResult:
        """Delete a product owned by ``user_id``; data is the row count."""
        def work(db):
            return db.execute(
                delete(Product).where(Product.id == product_id, Product.user_id == user_id)
            ).rowcount

        result = self._execute(
            "DELETE", "products", work,
            **{"user.id": user_id, "product.id": product_id}
        )
        if result.ok and result.data:
            logger.info("Deleted product", extra={"user_id": user_id, "product_id": product_id})
        return result

    def toggle_product_like(self, user_id: str, product_id: str) -> StoreResult:
        """
        Like the product if the user has not, otherwise unlike it.

        Deleting first and inserting with ON CONFLICT DO NOTHING keeps the
        composite key the only source of truth for the relation.

        Returns:
            StoreResult whose data is the new like state
        """
        def work(db):
            removed = db.execute(
                delete(ProductLike).where(
                    ProductLike.user_id == user_id,
                    ProductLike.product_id == product_id,
                )
            ).rowcount
            if removed:
                return False
            insert = insert_for(db)
            db.execute(
                insert(ProductLike)
                .values(user_id=user_id, product_id=product_id)
                .on_conflict_do_nothing(index_elements=[ProductLike.user_id, ProductLike.product_id])
            )
            return True

        return self._execute(
            "TOGGLE", "product_likes", work,
            **{"user.id": user_id, "product.id": product_id}
        )
