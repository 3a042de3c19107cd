import logging
from decimal import Decimal
from typing import List
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import CartItem, Product
from storefront.schemas import CartLine
from storefront.shared.utils import ValidationException, NotFoundException

logger = logging.getLogger(__name__)


def format_price(amount: Decimal) -> str:
    return f"${amount:,.2f}"


class CartService:
    """Pending line items of a single user. One row per (user, product)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_cart(self, user_id: int) -> List[CartLine]:
        stmt = (
            select(
                CartItem.id,
                CartItem.quantity,
                Product.id.label("product_id"),
                Product.name,
                Product.price,
                Product.image,
            )
            .join(Product, CartItem.product_id == Product.id)
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.id)
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            CartLine(
                id=row.id,
                product_id=row.product_id,
                name=row.name,
                price=format_price(row.price),
                amount=float(row.price),
                img=row.image,
                quantity=row.quantity,
            )
            for row in rows
        ]

    async def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> None:
        if not product_id or quantity is None or quantity < 1:
            raise ValidationException("Product ID and quantity are required")

        if await self.session.get(Product, product_id) is None:
            raise NotFoundException("Product not found")

        try:
            if not await self._increment(user_id, product_id, quantity):
                self.session.add(CartItem(user_id=user_id, product_id=product_id, quantity=quantity))
                await self.session.flush()
            await self.session.commit()
        except IntegrityError:
            # a concurrent request inserted the same line first
            await self.session.rollback()
            await self._increment(user_id, product_id, quantity)
            await self.session.commit()

    async def update_cart_item(self, user_id: int, item_id: int, quantity: int) -> int:
        """Set the quantity of one of the user's lines; returns rows affected."""
        if quantity is None or quantity < 1:
            raise ValidationException("Valid quantity is required")

        result = await self.session.execute(
            update(CartItem)
            .where(CartItem.id == item_id, CartItem.user_id == user_id)
            .values(quantity=quantity)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount

    async def remove_from_cart(self, user_id: int, item_id: int) -> int:
        result = await self.session.execute(
            delete(CartItem)
            .where(CartItem.id == item_id, CartItem.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount

    async def clear_cart(self, user_id: int) -> int:
        result = await self.session.execute(
            delete(CartItem)
            .where(CartItem.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount

    async def _increment(self, user_id: int, product_id: int, quantity: int) -> int:
        result = await self.session.execute(
            update(CartItem)
            .where(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .values(quantity=CartItem.quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
