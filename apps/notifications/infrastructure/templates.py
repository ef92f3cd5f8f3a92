from __future__ import annotations

from apps.notifications.domain.errors import EmailGatewayError
from apps.notifications.domain.types import NotificationKind, RenderedMessage


def _download_lines(context: dict) -> str:
    links = context.get("download_links") or []
    if not links:
        return "Your files will appear in your account shortly."
    return "\n".join(f"- {link['file_name']}: {link['url']}" for link in links)


def _customization_lines(context: dict) -> str:
    items = context.get("custom_work_items") or []
    return "\n".join(f"- {item['product_name']} x{item['quantity']}" for item in items)


def _refund_line(context: dict) -> str:
    refund = context.get("refund_status")
    if refund == "refunded":
        return (
            f"A refund of {context.get('refund_amount') or context.get('total_price', '')} "
            "has been issued and should reach your account within 3-5 business days."
        )
    if refund == "refund_failed":
        return "We could not issue the refund automatically; please contact us and we will sort it out."
    return "No payment was taken for this order."


def render(kind: NotificationKind, context: dict) -> RenderedMessage:
    order_number = context.get("order_number", "")
    name = context.get("customer_name") or "there"

    if kind == NotificationKind.ORDER_CREATED:
        return RenderedMessage(
            subject=f"New order {order_number}",
            body=(
                f"Order {order_number} was placed by {context.get('customer_email', '')}.\n"
                f"Total: {context.get('total_price', '')}\n"
                f"Requires customization: {'yes' if context.get('has_customizable_products') else 'no'}"
            ),
        )
    if kind == NotificationKind.CUSTOMIZATION_PROCESSING:
        return RenderedMessage(
            subject=f"Your order {order_number} is being prepared",
            body=(
                f"Hi {name},\n\n"
                f"We received your order {order_number}. The following items are being customized "
                f"by our team and will be delivered once ready:\n{_customization_lines(context)}"
            ),
        )
    if kind == NotificationKind.FILES_READY:
        expiry = context.get("download_expiry")
        expiry_line = f"\n\nDownload links are available until {expiry}." if expiry else ""
        return RenderedMessage(
            subject=f"Your files for order {order_number} are ready",
            body=f"Hi {name},\n\nYour design files are ready:\n{_download_lines(context)}{expiry_line}",
        )
    if kind == NotificationKind.PAYMENT_FAILED:
        return RenderedMessage(
            subject=f"Payment for order {order_number} was not completed",
            body=(
                f"Hi {name},\n\n"
                f"We could not complete the payment for order {order_number}. "
                "You can try again from your orders page."
            ),
        )
    if kind == NotificationKind.ORDER_CANCELLED:
        return RenderedMessage(
            subject=f"Your order {order_number} has been cancelled",
            body=f"Hi {name},\n\nYour order {order_number} has been cancelled. {_refund_line(context)}",
        )
    raise EmailGatewayError(f"Unknown notification kind: {kind}")
