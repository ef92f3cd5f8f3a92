from __future__ import annotations

from dataclasses import dataclass

from apps.fulfillment.services.delivery_service import DeliveryService
from apps.orders.services.order_service import OrderService


@dataclass(frozen=True)
class ListOrderFilesCommand:
    order_id: int


class ListOrderFilesUseCase:
    """Files the customer can currently download for the order."""

    @staticmethod
    def execute(cmd: ListOrderFilesCommand) -> list[dict]:
        order = OrderService.get(cmd.order_id)
        return [
            {
                "grant_id": grant.id,
                "design_file_id": grant.design_file_id,
                "product_id": grant.design_file.product_id,
                "file_name": grant.design_file.file_name,
                "file_type": grant.design_file.file_type,
                "file_size": grant.design_file.file_size,
                "color_name": grant.design_file.color_name,
                "color_hex": grant.design_file.color_hex,
                "is_for_order": grant.design_file.is_for_order,
                "download_count": grant.download_count,
                "max_downloads": grant.design_file.max_downloads,
                "expires_at": grant.expires_at.isoformat() if grant.expires_at else None,
                "download_url": DeliveryService.download_url(order, grant.design_file),
            }
            for grant in DeliveryService.active_grants(order)
        ]
