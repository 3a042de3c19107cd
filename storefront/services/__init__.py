from storefront.services.auth import AuthService
from storefront.services.cart import CartService
from storefront.services.catalog import CatalogService
from storefront.services.checkout import CheckoutService

__all__ = ["AuthService", "CartService", "CatalogService", "CheckoutService"]
