from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from apps.orders.models import Order, OrderItem

from ..models import DesignFile, DesignFileGrant

logger = logging.getLogger("storefront.fulfillment")


@dataclass(frozen=True)
class DeliveryResult:
    files_granted: int
    grants_created: int
    items_delivered: int
    expires_at: datetime


class DeliveryService:
    @staticmethod
    def access_expiry(now: datetime | None = None) -> datetime:
        now = now or timezone.now()
        return now + timedelta(days=int(getattr(settings, "DESIGN_FILE_ACCESS_DAYS", 30)))

    @staticmethod
    def files_for_item(order: Order, item: OrderItem) -> list[DesignFile]:
        """
        Files a customer receives for one item: the product's general stock
        files, stock files for the colors they picked, and files uploaded for
        this specific order.
        """
        now = timezone.now()
        available = DesignFile.objects.filter(product_id=item.product_id, is_active=True).filter(
            Q(expires_at__isnull=True) | Q(expires_at__gt=now)
        )
        colors = item.selected_color_hexes
        stock = Q(is_for_order=False, color_hex="")
        if colors:
            stock |= Q(is_for_order=False, color_hex__in=colors)
        bespoke = Q(is_for_order=True, order_id=order.id)
        return list(available.filter(stock | bespoke).order_by("id"))

    @staticmethod
    def has_deliverable_files(order: Order) -> bool:
        return any(DeliveryService.files_for_item(order, item) for item in order.items.all())

    @staticmethod
    def grant_files(order: Order, files: list[DesignFile], *, expires_at: datetime) -> int:
        created_count = 0
        for design_file in files:
            _, created = DesignFileGrant.objects.get_or_create(
                order=order,
                design_file=design_file,
                defaults={"expires_at": expires_at},
            )
            if created:
                created_count += 1
        return created_count

    @staticmethod
    def deliver_items(order: Order) -> DeliveryResult:
        now = timezone.now()
        expires_at = DeliveryService.access_expiry(now)
        granted = 0
        created = 0
        delivered = 0
        for item in order.items.all():
            files = DeliveryService.files_for_item(order, item)
            granted += len(files)
            created += DeliveryService.grant_files(order, files, expires_at=expires_at)
            if item.delivery_status != OrderItem.DELIVERY_DELIVERED:
                item.delivery_status = OrderItem.DELIVERY_DELIVERED
                item.delivered_at = now
                item.delivery_notes = f"{len(files)} file(s) available for download."
                item.save(update_fields=["delivery_status", "delivered_at", "delivery_notes"])
                delivered += 1

        logger.info(
            "order_items_delivered",
            extra={
                "order_number": order.order_number,
                "files_granted": granted,
                "grants_created": created,
                "items_delivered": delivered,
            },
        )
        return DeliveryResult(
            files_granted=granted,
            grants_created=created,
            items_delivered=delivered,
            expires_at=expires_at,
        )

    @staticmethod
    def items_needing_manual_work(order: Order) -> list[OrderItem]:
        """Undelivered items that are customizable or have no file to hand out yet."""
        return [
            item
            for item in order.items.all()
            if item.delivery_status != OrderItem.DELIVERY_DELIVERED
            and (item.requires_customization or not DeliveryService.files_for_item(order, item))
        ]

    @staticmethod
    def hold_for_customization(order: Order, items: list[OrderItem]) -> int:
        return order.items.filter(id__in=[item.id for item in items]).update(
            delivery_status=OrderItem.DELIVERY_AWAITING_CUSTOMIZATION
        )

    @staticmethod
    def revoke_access(order: Order) -> int:
        return DesignFileGrant.objects.filter(order=order, is_active=True).update(is_active=False)

    @staticmethod
    def active_grants(order: Order):
        now = timezone.now()
        return (
            DesignFileGrant.objects.select_related("design_file")
            .filter(order=order, is_active=True, design_file__is_active=True)
            .filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
            .filter(Q(design_file__expires_at__isnull=True) | Q(design_file__expires_at__gt=now))
            .order_by("id")
        )

    @staticmethod
    def download_url(order: Order, design_file: DesignFile) -> str:
        base = getattr(settings, "SITE_BASE_URL", "").rstrip("/")
        return f"{base}/api/orders/{order.id}/files/{design_file.id}/download/"

    @staticmethod
    def download_links(order: Order) -> list[dict]:
        return [
            {
                "file_name": grant.design_file.file_name,
                "file_type": grant.design_file.file_type,
                "file_size": grant.design_file.file_size,
                "url": DeliveryService.download_url(order, grant.design_file),
            }
            for grant in DeliveryService.active_grants(order)
        ]
