"""
Checkout: turn a user's cart into an order.

The order row, its items and the removal of the consumed cart rows are
written in one transaction. Any database failure rolls all of it back.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Sequence
from sqlalchemy import delete, select
from sqlalchemy.engine import Row
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import CartItem, Order, OrderItem, Product
from storefront.shared.utils import ValidationException, ServerException

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def calculate_total(lines: Iterable[Row]) -> Decimal:
    total = sum((Decimal(line.price) * line.quantity for line in lines), Decimal("0"))
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


class CheckoutService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_order(self, user_id: int, payment_method: str) -> Order:
        if not payment_method or not payment_method.strip():
            raise ValidationException("Payment method is required")

        lines = await self._load_cart(user_id)
        if not lines:
            raise ValidationException("Cart is empty")

        total = calculate_total(lines)

        try:
            order = await self._insert_order(user_id, total, payment_method, lines)
            await self._clear_cart(user_id, [line.id for line in lines])
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("Checkout failed, transaction rolled back", extra={"user_id": user_id})
            raise ServerException()

        logger.info("Order created", extra={"user_id": user_id, "order_id": order.id})
        return order

    async def list_orders(self, user_id: int) -> List[Order]:
        result = await self.session.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(result.scalars().all())

    async def _load_cart(self, user_id: int) -> Sequence[Row]:
        # prices are read here, not taken from add-to-cart time
        stmt = (
            select(CartItem.id, CartItem.product_id, CartItem.quantity, Product.price)
            .join(Product, CartItem.product_id == Product.id)
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.id)
            .with_for_update(of=CartItem)
        )
        return (await self.session.execute(stmt)).all()

    async def _insert_order(self, user_id: int, total: Decimal, payment_method: str, lines: Sequence[Row]) -> Order:
        order = Order(
            user_id=user_id,
            total_amount=total,
            payment_method=payment_method,
            items=[
                OrderItem(product_id=line.product_id, quantity=line.quantity, price=line.price)
                for line in lines
            ],
        )
        self.session.add(order)
        await self.session.flush()
        return order

    async def _clear_cart(self, user_id: int, item_ids: List[int]) -> None:
        # only the rows that were priced into the order
        await self.session.execute(
            delete(CartItem)
            .where(CartItem.user_id == user_id, CartItem.id.in_(item_ids))
            .execution_options(synchronize_session=False)
        )
