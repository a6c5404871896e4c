from django.urls import path

from . import views

app_name = 'payments'

urlpatterns = [
    path('gateway-order/', views.create_gateway_order, name='gateway-order'),
    path('capture/', views.capture_payment, name='capture'),
    path('webhook/', views.gateway_webhook, name='webhook'),
]
