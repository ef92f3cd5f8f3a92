from __future__ import annotations

import logging

from django.db import transaction
from django.db.models import F

from ..domain.errors import OrderNotFoundError, OrderValidationError
from ..domain.policies import format_order_number
from ..models import Order, OrderHistoryEntry, OrderNumberSequence

logger = logging.getLogger("storefront.orders")

SYSTEM_ACTOR = "system"

_UPDATABLE_FIELDS = frozenset(
    {
        "payment_status",
        "order_status",
        "customization_status",
        "provider_order_id",
        "provider_transaction_id",
        "payer_email",
        "paid_at",
        "processed_at",
        "processed_by",
        "completed_at",
        "download_expiry",
    }
)


class OrderService:
    @staticmethod
    def get(order_id: int) -> Order:
        order = Order.objects.filter(id=order_id).first()
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found.")
        return order

    @staticmethod
    def get_for_update(order_id: int) -> Order:
        """Row-locks the order; call inside `transaction.atomic`."""
        order = Order.objects.select_for_update().filter(id=order_id).first()
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found.")
        return order

    @staticmethod
    def append_history(
        order: Order,
        *,
        status: str,
        note: str = "",
        changed_by: str = SYSTEM_ACTOR,
    ) -> OrderHistoryEntry:
        return OrderHistoryEntry.objects.create(
            order=order,
            status=status,
            note=note or "",
            changed_by=changed_by or SYSTEM_ACTOR,
        )

    @staticmethod
    @transaction.atomic
    def update_status(
        order_id: int,
        patch: dict,
        *,
        history_status: str,
        note: str = "",
        changed_by: str = SYSTEM_ACTOR,
    ) -> Order:
        unknown = set(patch) - _UPDATABLE_FIELDS
        if unknown:
            raise OrderValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}.")

        order = OrderService.get_for_update(order_id)
        changed = [name for name, value in patch.items() if getattr(order, name) != value]
        if not changed:
            return order

        for name in changed:
            setattr(order, name, patch[name])
        order.save(update_fields=changed + ["updated_at"])

        OrderService.append_history(order, status=history_status, note=note, changed_by=changed_by)
        logger.info(
            "order_updated",
            extra={"order_number": order.order_number, "status": history_status, "fields": changed},
        )
        return order

    @staticmethod
    def generate_order_number(*, prefix: str, year: int) -> str:
        with transaction.atomic():
            sequence, _ = OrderNumberSequence.objects.get_or_create(prefix=prefix, year=year)
            OrderNumberSequence.objects.filter(pk=sequence.pk).update(last_value=F("last_value") + 1)
            sequence.refresh_from_db(fields=["last_value"])
        return format_order_number(prefix=prefix, year=year, sequence=sequence.last_value)
