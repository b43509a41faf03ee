from typing import Dict, Iterable, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.product import Product

logger = logging.getLogger(__name__)


class CatalogService:
    """Read-only access to authoritative product price and stock."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_product(self, product_id: str) -> Optional[Product]:
        """Get product by ID."""
        stmt = select(Product).where(Product.id == product_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_products(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        """Get several products in one query, keyed by ID. Unknown IDs are absent."""
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}
        stmt = select(Product).where(Product.id.in_(ids))
        result = await self.db.execute(stmt)
        return {product.id: product for product in result.scalars().all()}
