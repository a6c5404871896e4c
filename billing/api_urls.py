from django.urls import path

from .api_views import order_invoice

urlpatterns = [
    path('orders/<int:order_id>/invoice/', order_invoice, name='order-invoice'),
]
