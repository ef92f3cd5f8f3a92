from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.fulfillment.domain.errors import DesignFileNotFoundError, DownloadNotAllowedError
from apps.fulfillment.models import DesignFileGrant
from apps.orders.domain.errors import OrderNotFoundError
from apps.orders.models import Order

logger = logging.getLogger("storefront.fulfillment")


@dataclass(frozen=True)
class RecordDownloadCommand:
    order_id: int
    design_file_id: int
    customer_id: int


@dataclass(frozen=True)
class DownloadTicket:
    file_name: str
    file_url: str
    mime_type: str
    download_count: int


class RecordDownloadUseCase:
    @staticmethod
    @transaction.atomic
    def execute(cmd: RecordDownloadCommand) -> DownloadTicket:
        order = Order.objects.filter(id=cmd.order_id, customer_id=cmd.customer_id).first()
        if order is None:
            raise OrderNotFoundError(f"Order {cmd.order_id} not found.")
        if not order.is_payment_settled:
            raise DownloadNotAllowedError("Order has not been paid.", reason="unpaid")

        grant = (
            DesignFileGrant.objects.select_for_update()
            .select_related("design_file")
            .filter(order=order, design_file_id=cmd.design_file_id)
            .first()
        )
        if grant is None:
            raise DesignFileNotFoundError("File not found for this order.")

        design_file = grant.design_file
        if not grant.is_active or not design_file.is_active:
            raise DownloadNotAllowedError("Download access has been revoked.", reason="revoked")
        if grant.is_expired or design_file.is_expired:
            raise DownloadNotAllowedError("Download access has expired.", reason="expired")

        now = timezone.now()
        counters = DesignFileGrant.objects.filter(pk=grant.pk)
        if design_file.max_downloads is not None:
            counters = counters.filter(download_count__lt=design_file.max_downloads)
        updated = counters.update(
            download_count=F("download_count") + 1,
            last_downloaded_at=now,
        )
        if not updated:
            raise DownloadNotAllowedError("Download limit reached.", reason="limit_reached")
        DesignFileGrant.objects.filter(pk=grant.pk).filter(first_downloaded_at__isnull=True).update(
            first_downloaded_at=now
        )
        grant.refresh_from_db(fields=["download_count"])

        logger.info(
            "design_file_downloaded",
            extra={
                "order_number": order.order_number,
                "design_file_id": design_file.id,
                "download_count": grant.download_count,
            },
        )
        return DownloadTicket(
            file_name=design_file.file_name,
            file_url=design_file.file_url,
            mime_type=design_file.mime_type,
            download_count=grant.download_count,
        )
