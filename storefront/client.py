"""
Thin HTTP client for the storefront API.

Every call maps to one endpoint. ``register`` and ``login`` keep the returned
credential on the client as an explicit :class:`Session`; later calls send it
as a bearer token until :meth:`StorefrontClient.logout` drops it.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000/api"


class Session(BaseModel):
    token: str
    token_type: str = "bearer"
    issued_at: datetime
    expires_at: datetime
    user: Dict[str, Any]

    @property
    def expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.expires_at


class StorefrontAPIError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class StorefrontClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        http: Optional[httpx.Client] = None,
        session: Optional[Session] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_http = http is None
        self.http = http or httpx.Client(timeout=timeout)
        self.session = session

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        if self._owns_http:
            self.http.close()

    def request(self, method: str, endpoint: str, json: Optional[dict] = None) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.session:
            headers["Authorization"] = f"Bearer {self.session.token}"

        try:
            response = self.http.request(method, f"{self.base_url}{endpoint}", json=json, headers=headers)
        except httpx.RequestError as e:
            logger.error("API request failed", extra={"method": method, "path": endpoint})
            raise StorefrontAPIError(0, f"Request failed: {e}") from e

        try:
            data = response.json() if response.content else None
        except ValueError:
            # proxies and crashed workers answer with plain text
            data = None
        if response.is_error:
            message = data.get("error", "Request failed") if isinstance(data, dict) else "Request failed"
            raise StorefrontAPIError(response.status_code, message)
        return data

    # --- Auth ---
    def register(self, name: str, email: str, phone: str, address: str, password: str) -> Session:
        data = self.request("POST", "/register", json={
            "name": name,
            "email": email,
            "phone": phone,
            "address": address,
            "password": password,
        })
        self.session = Session(**data)
        return self.session

    def login(self, email: str, password: str) -> Session:
        data = self.request("POST", "/login", json={"email": email, "password": password})
        self.session = Session(**data)
        return self.session

    def logout(self):
        self.session = None

    def is_authenticated(self) -> bool:
        return self.session is not None and not self.session.expired

    def get_current_user(self) -> dict:
        return self.request("GET", "/user")

    def update_user(self, name: str, email: str, phone: str, address: str) -> dict:
        data = self.request("PUT", "/user", json={
            "name": name,
            "email": email,
            "phone": phone,
            "address": address,
        })
        if self.session and data.get("user"):
            self.session = self.session.model_copy(update={"user": data["user"]})
        return data

    # --- Cart ---
    def get_cart(self) -> List[dict]:
        return self.request("GET", "/cart")

    def add_to_cart(self, product_id: int, quantity: int = 1) -> dict:
        return self.request("POST", "/cart", json={"product_id": product_id, "quantity": quantity})

    def update_cart_item(self, item_id: int, quantity: int) -> dict:
        return self.request("PUT", f"/cart/{item_id}", json={"quantity": quantity})

    def remove_from_cart(self, item_id: int) -> dict:
        return self.request("DELETE", f"/cart/{item_id}")

    def clear_cart(self) -> dict:
        return self.request("DELETE", "/cart")

    # --- Products ---
    def get_products(self) -> List[dict]:
        return self.request("GET", "/products")

    # --- Orders ---
    def create_order(self, payment_method: str) -> dict:
        return self.request("POST", "/orders", json={"payment_method": payment_method})

    def get_orders(self) -> List[dict]:
        return self.request("GET", "/orders")

    def health(self) -> dict:
        return self.request("GET", "/health")
