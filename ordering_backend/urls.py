from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView, SpectacularSwaggerView

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/auth/", include("rest_framework.urls")),

    # API Documentation
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),
    path("api/redoc/", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),

    path("api/", include(("orders.api_urls", "orders_api"), namespace="orders_api")),
    path("api/coupons/", include(("coupons.api_urls", "coupons_api"), namespace="coupons_api")),
    path("api/payments/", include("payments.urls", namespace="payments")),
    path("api/billing/", include(("billing.api_urls", "billing_api"), namespace="billing_api")),
]
