from __future__ import annotations

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .api_views import CouponViewSet, validate_coupon_view

router = DefaultRouter()
router.register(r'coupons', CouponViewSet, basename='coupon')

urlpatterns = [
    path('validate/', validate_coupon_view, name='coupon-validate'),
    path('', include(router.urls)),
]
