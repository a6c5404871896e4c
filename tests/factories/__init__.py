from .accounts import UserFactory
from .core import TenantFactory, LocationFactory
from .coupons import CouponFactory
from .menu import MenuItemFactory
from .orders import OrderFactory, OrderItemFactory

__all__ = [
    "UserFactory",
    "TenantFactory",
    "LocationFactory",
    "CouponFactory",
    "MenuItemFactory",
    "OrderFactory",
    "OrderItemFactory",
]
