from django.urls import path

from .views import PromoCodeValidateAPI

urlpatterns = [
    path("promo-codes/validate/", PromoCodeValidateAPI.as_view(), name="api_promo_code_validate"),
]
