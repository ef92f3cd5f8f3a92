from django.urls import path

from .views import (
    AdminDesignFileDeleteAPI,
    AdminOrderCompleteAPI,
    AdminOrderFilesAPI,
    OrderFileDownloadAPI,
)

urlpatterns = [
    path("admin/orders/<int:order_id>/complete/", AdminOrderCompleteAPI.as_view(), name="api_admin_order_complete"),
    path("admin/orders/<int:order_id>/files/", AdminOrderFilesAPI.as_view(), name="api_admin_order_files"),
    path(
        "admin/design-files/<int:design_file_id>/",
        AdminDesignFileDeleteAPI.as_view(),
        name="api_admin_design_file_delete",
    ),
    path(
        "orders/<int:order_id>/files/<int:design_file_id>/download/",
        OrderFileDownloadAPI.as_view(),
        name="api_order_file_download",
    ),
]
