from django.urls import path

from .views import OrderCreateAPI, OrderDetailAPI

urlpatterns = [
    path("orders/", OrderCreateAPI.as_view(), name="api_order_create"),
    path("orders/<int:order_id>/", OrderDetailAPI.as_view(), name="api_order_detail"),
]
