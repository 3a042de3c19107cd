"""
Component tests for checkout and order listing.

Checkout is the only multi-row write in the API: the order, its items and
the removal of the cart lines must all happen or none of them.
"""
from decimal import Decimal
from types import SimpleNamespace

from fastapi.testclient import TestClient
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from storefront.models import Order, OrderItem, Product
from storefront.services.checkout import CheckoutService, calculate_total


def _count(run_db, model):
    async def _run(session):
        return await session.scalar(select(func.count()).select_from(model))
    return run_db(_run)


def _fill_cart(test_client, headers, products):
    test_client.post("/api/cart", headers=headers, json={"product_id": products["Mechanical Keyboard"], "quantity": 2})
    test_client.post("/api/cart", headers=headers, json={"product_id": products["USB-C Cable"], "quantity": 1})


class TestCreateOrder:
    def test_checkout_creates_order_items_and_empties_cart(self, test_client: TestClient, auth_headers, products, run_db):
        """
        Validates:
        - [10.00 x 2, 5.50 x 1] totals 25.50
        - exactly one order and two order items are written
        - the cart is empty afterwards
        """
        # Arrange
        headers = auth_headers()
        _fill_cart(test_client, headers, products)

        # Act
        response = test_client.post("/api/orders", headers=headers, json={"payment_method": "credit_card"})

        # Assert
        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Order created successfully"
        assert Decimal(str(data["total_amount"])) == Decimal("25.50")
        assert isinstance(data["order_id"], int)

        assert _count(run_db, Order) == 1
        assert _count(run_db, OrderItem) == 2
        assert test_client.get("/api/cart", headers=headers).json() == []

    def test_order_items_snapshot_checkout_price(self, test_client: TestClient, auth_headers, products, run_db):
        """
        Validates:
        - the total uses the price at checkout, not at add-to-cart
        - later catalog changes do not touch stored item prices
        """
        headers = auth_headers()
        keyboard = products["Mechanical Keyboard"]
        test_client.post("/api/cart", headers=headers, json={"product_id": keyboard, "quantity": 3})

        def _set_price(price):
            async def _run(session):
                await session.execute(update(Product).where(Product.id == keyboard).values(price=price))
                await session.commit()
            return _run

        run_db(_set_price(Decimal("12.25")))
        response = test_client.post("/api/orders", headers=headers, json={"payment_method": "paypal"})
        assert Decimal(str(response.json()["total_amount"])) == Decimal("36.75")

        run_db(_set_price(Decimal("99.00")))

        async def _item_prices(session):
            return list((await session.execute(select(OrderItem.price))).scalars())
        assert run_db(_item_prices) == [Decimal("12.25")]

    def test_empty_cart_is_rejected_without_writes(self, test_client: TestClient, auth_headers, run_db):
        response = test_client.post("/api/orders", headers=auth_headers(), json={"payment_method": "credit_card"})

        assert response.status_code == 400
        assert response.json()["error"] == "Cart is empty"
        assert _count(run_db, Order) == 0
        assert _count(run_db, OrderItem) == 0

    def test_missing_payment_method_is_rejected(self, test_client: TestClient, auth_headers, products, run_db):
        headers = auth_headers()
        _fill_cart(test_client, headers, products)

        response = test_client.post("/api/orders", headers=headers, json={})

        assert response.status_code == 400
        assert _count(run_db, Order) == 0
        assert len(test_client.get("/api/cart", headers=headers).json()) == 2

    def test_blank_payment_method_is_rejected(self, test_client: TestClient, auth_headers, products):
        headers = auth_headers()
        _fill_cart(test_client, headers, products)

        response = test_client.post("/api/orders", headers=headers, json={"payment_method": "   "})

        assert response.status_code == 400
        assert response.json()["error"] == "Payment method is required"

    def test_payment_method_is_stored_as_typed(self, test_client: TestClient, auth_headers, products, run_db):
        """
        Validates:
        - a 50-character method full of ampersands is stored unchanged
        - the stored value fits the 50-character column
        """
        headers = auth_headers()
        _fill_cart(test_client, headers, products)
        method = "&" * 50

        response = test_client.post("/api/orders", headers=headers, json={"payment_method": method})

        assert response.status_code == 200

        async def _stored_method(session):
            return await session.scalar(select(Order.payment_method))
        stored = run_db(_stored_method)
        assert stored == method
        assert len(stored) == 50
        assert test_client.get("/api/orders", headers=headers).json()[0]["payment_method"] == method

    def test_payment_method_over_fifty_characters_is_rejected(self, test_client: TestClient, auth_headers, products):
        headers = auth_headers()
        _fill_cart(test_client, headers, products)

        response = test_client.post("/api/orders", headers=headers, json={"payment_method": "x" * 51})

        assert response.status_code == 400

    def test_client_supplied_total_is_not_accepted(self, test_client: TestClient, auth_headers, products):
        headers = auth_headers()
        _fill_cart(test_client, headers, products)

        response = test_client.post(
            "/api/orders", headers=headers, json={"payment_method": "credit_card", "total_amount": "0.01"}
        )

        assert response.status_code == 400

    def test_failure_mid_transaction_rolls_everything_back(
        self, test_client: TestClient, auth_headers, products, run_db, monkeypatch
    ):
        """
        Validates:
        - a database error after the order insert leaves no order, no items
        - the cart is untouched
        - the client only sees a generic 500
        """
        headers = auth_headers()
        _fill_cart(test_client, headers, products)

        async def _broken_clear(self, user_id, item_ids):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(CheckoutService, "_clear_cart", _broken_clear)

        response = test_client.post("/api/orders", headers=headers, json={"payment_method": "credit_card"})

        assert response.status_code == 500
        assert response.json()["error"] == "Server error"
        assert "disk" not in response.text

        monkeypatch.undo()
        assert _count(run_db, Order) == 0
        assert _count(run_db, OrderItem) == 0
        cart = test_client.get("/api/cart", headers=headers).json()
        assert [line["quantity"] for line in cart] == [2, 1]

        # the same cart checks out fine once the fault is gone
        retry = test_client.post("/api/orders", headers=headers, json={"payment_method": "credit_card"})
        assert retry.status_code == 200
        assert _count(run_db, Order) == 1

    def test_checkout_only_consumes_own_cart(self, test_client: TestClient, auth_headers, products):
        alice = auth_headers("alice@mailbox.org")
        bob = auth_headers("bob@mailbox.org")
        _fill_cart(test_client, alice, products)
        _fill_cart(test_client, bob, products)

        test_client.post("/api/orders", headers=alice, json={"payment_method": "credit_card"})

        assert test_client.get("/api/cart", headers=alice).json() == []
        assert len(test_client.get("/api/cart", headers=bob).json()) == 2


class TestListOrders:
    def test_orders_newest_first(self, test_client: TestClient, auth_headers, products):
        headers = auth_headers()
        test_client.post("/api/cart", headers=headers, json={"product_id": products["USB-C Cable"], "quantity": 1})
        first = test_client.post("/api/orders", headers=headers, json={"payment_method": "credit_card"}).json()
        test_client.post("/api/cart", headers=headers, json={"product_id": products["Graphics Card"], "quantity": 1})
        second = test_client.post("/api/orders", headers=headers, json={"payment_method": "paypal"}).json()

        response = test_client.get("/api/orders", headers=headers)

        assert response.status_code == 200
        orders = response.json()
        assert [o["id"] for o in orders] == [second["order_id"], first["order_id"]]
        assert orders[0]["payment_method"] == "paypal"
        assert Decimal(str(orders[0]["total_amount"])) == Decimal("1299.99")
        assert Decimal(str(orders[1]["total_amount"])) == Decimal("5.50")

    def test_orders_are_private(self, test_client: TestClient, auth_headers, products):
        alice = auth_headers("alice@mailbox.org")
        bob = auth_headers("bob@mailbox.org")
        _fill_cart(test_client, alice, products)
        test_client.post("/api/orders", headers=alice, json={"payment_method": "credit_card"})

        assert len(test_client.get("/api/orders", headers=alice).json()) == 1
        assert test_client.get("/api/orders", headers=bob).json() == []


class TestCalculateTotal:
    def test_sums_price_times_quantity_without_float_drift(self):
        lines = [SimpleNamespace(price=Decimal("0.10"), quantity=1) for _ in range(3)]

        assert calculate_total(lines) == Decimal("0.30")

    def test_rounds_to_cents(self):
        lines = [
            SimpleNamespace(price=Decimal("10.00"), quantity=2),
            SimpleNamespace(price=Decimal("5.50"), quantity=1),
        ]

        assert calculate_total(lines) == Decimal("25.50")
        assert str(calculate_total(lines)) == "25.50"
