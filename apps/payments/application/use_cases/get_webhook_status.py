from __future__ import annotations

from dataclasses import dataclass

from apps.orders.services.order_service import OrderService
from apps.payments.models import WebhookEvent


@dataclass(frozen=True)
class GetWebhookStatusCommand:
    order_id: int


class GetWebhookStatusUseCase:
    @staticmethod
    def execute(cmd: GetWebhookStatusCommand) -> dict:
        order = OrderService.get(cmd.order_id)
        events = list(WebhookEvent.objects.filter(order=order).order_by("timestamp", "id"))
        processed = sum(1 for event in events if event.processed)
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "payment_status": order.payment_status,
            "order_status": order.order_status,
            "total_events": len(events),
            "processed_events": processed,
            "unprocessed_events": len(events) - processed,
            "events": [
                {
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "timestamp": event.timestamp.isoformat(),
                    "processed": event.processed,
                    "processed_at": event.processed_at.isoformat() if event.processed_at else None,
                }
                for event in events
            ],
        }
