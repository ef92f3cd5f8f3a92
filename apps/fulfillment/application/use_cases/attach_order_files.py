from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import transaction

from apps.fulfillment.domain.errors import FulfillmentPreconditionError
from apps.fulfillment.models import DesignFile
from apps.fulfillment.services.delivery_service import DeliveryService
from apps.orders.models import Order
from apps.orders.services.order_service import OrderService

logger = logging.getLogger("storefront.fulfillment")


@dataclass(frozen=True)
class UploadedFile:
    file_name: str
    file_url: str
    file_type: str
    file_size: int
    description: str = ""


@dataclass(frozen=True)
class AttachOrderFilesCommand:
    order_id: int
    product_id: int
    files: tuple[UploadedFile, ...]
    changed_by: str
    created_by_id: int | None = None
    color_name: str = ""
    color_hex: str = ""


@dataclass(frozen=True)
class AttachOrderFilesResult:
    order: Order
    files: list[DesignFile]
    grants_created: int


class AttachOrderFilesUseCase:
    @staticmethod
    @transaction.atomic
    def execute(cmd: AttachOrderFilesCommand) -> AttachOrderFilesResult:
        order = OrderService.get_for_update(cmd.order_id)

        if not cmd.files:
            raise FulfillmentPreconditionError("At least one file is required.", field="files")
        if order.order_status == Order.STATUS_CANCELLED:
            raise FulfillmentPreconditionError("Cannot attach files to a cancelled order.")
        if not order.items.filter(product_id=cmd.product_id).exists():
            raise FulfillmentPreconditionError("Product is not part of this order.", field="product_id")

        created_files = [
            DesignFile.objects.create(
                product_id=cmd.product_id,
                order=order,
                is_for_order=True,
                color_name=cmd.color_name,
                color_hex=cmd.color_hex,
                file_name=uploaded.file_name,
                file_url=uploaded.file_url,
                file_type=uploaded.file_type,
                file_size=uploaded.file_size,
                description=uploaded.description,
                created_by_id=cmd.created_by_id,
            )
            for uploaded in cmd.files
        ]
        expires_at = order.download_expiry or DeliveryService.access_expiry()
        grants_created = DeliveryService.grant_files(order, created_files, expires_at=expires_at)

        note = f"{len(created_files)} file(s) uploaded for product {cmd.product_id}."
        if order.customization_status == Order.CUSTOMIZATION_PENDING:
            order = OrderService.update_status(
                order.id,
                {"customization_status": Order.CUSTOMIZATION_PROCESSING},
                history_status="customization_processing",
                note=note,
                changed_by=cmd.changed_by,
            )
        else:
            OrderService.append_history(order, status="files_uploaded", note=note, changed_by=cmd.changed_by)

        logger.info(
            "order_files_attached",
            extra={
                "order_number": order.order_number,
                "product_id": cmd.product_id,
                "files": len(created_files),
                "grants_created": grants_created,
            },
        )
        return AttachOrderFilesResult(order=order, files=created_files, grants_created=grants_created)
