from typing import Iterable, List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import Product


class CatalogService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_products(self) -> List[Product]:
        result = await self.session.execute(select(Product).order_by(Product.id))
        return list(result.scalars().all())

    async def seed_products(self, products: Iterable[dict]) -> List[Product]:
        """Bulk insert catalog rows. The HTTP surface never writes products."""
        rows = [Product(**data) for data in products]
        self.session.add_all(rows)
        await self.session.commit()
        return rows
