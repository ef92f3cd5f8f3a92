"""
URL configuration for the storefront project.

Every HTTP surface lives under `/api/`; see `storefront.api_urls`.
"""

from django.contrib import admin
from django.urls import include, path

from . import error_views

handler404 = "storefront.error_views.handle_404"
handler500 = "storefront.error_views.handle_500"

urlpatterns = [
    path("healthz", error_views.healthz, name="healthz"),
    path("admin/", admin.site.urls),
    path("api/", include("storefront.api_urls")),
]
