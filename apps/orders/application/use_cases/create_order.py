from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.catalog.models import Product
from apps.fulfillment.application.use_cases.complete_free_order import (
    CompleteFreeOrderCommand,
    CompleteFreeOrderUseCase,
)
from apps.fulfillment.services.fulfillment_service import notify_on_commit
from apps.notifications.domain.ports import NotificationSender
from apps.notifications.domain.types import NotificationKind
from apps.orders.domain.errors import OrderNumberExhaustedError, OrderValidationError, ProductNotFoundError
from apps.orders.domain.policies import (
    ensure_expected_total,
    ensure_items_present,
    has_customizable_items,
    normalize_promo_code,
    to_money,
)
from apps.orders.models import Order, OrderItem
from apps.orders.services.order_service import OrderService
from apps.promotions.application.use_cases.validate_promo_code import (
    ValidatePromoCodeCommand,
    ValidatePromoCodeUseCase,
)
from apps.promotions.domain.policies import calculate_discount

logger = logging.getLogger("storefront.orders")


@dataclass(frozen=True)
class OrderItemInput:
    product_id: int
    quantity: int = 1
    promo_code: str = ""
    customization_payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CreateOrderCommand:
    customer_id: int
    customer_email: str
    customer_name: str
    items: tuple[OrderItemInput, ...]
    customer_notes: str = ""
    expected_total: Decimal | None = None


@dataclass(frozen=True)
class _PricedItem:
    product: Product
    quantity: int
    original_price: Decimal
    discount_amount: Decimal
    unit_price: Decimal
    total_price: Decimal
    promo_code: str
    customization_payload: dict


class CreateOrderUseCase:
    """
    Prices the cart from the catalog, applies item promo codes and persists a
    pending order with a fresh order number.

    Zero-value orders are settled as free right away and handed to fulfillment
    without touching the payment provider.
    """

    @staticmethod
    @transaction.atomic
    def execute(cmd: CreateOrderCommand, *, sender: NotificationSender | None = None) -> Order:
        inputs = ensure_items_present(cmd.items)
        products = CreateOrderUseCase._resolve_products(inputs)

        subtotal = to_money(
            sum((products[item.product_id].price * item.quantity for item in inputs), Decimal("0"))
        )
        priced = [
            CreateOrderUseCase._price_item(item, products[item.product_id], cmd.customer_id, subtotal)
            for item in inputs
        ]
        total_discount = to_money(sum((line.discount_amount for line in priced), Decimal("0")))
        total_price = to_money(max(Decimal("0"), subtotal - total_discount))
        ensure_expected_total(expected=cmd.expected_total, computed=total_price)

        customizable = has_customizable_items(line.product.enable_customizations for line in priced)
        applied_codes = sorted({line.promo_code for line in priced if line.promo_code})

        order = CreateOrderUseCase._insert_order(
            cmd,
            subtotal=subtotal,
            total_discount=total_discount,
            total_price=total_price,
            applied_codes=applied_codes,
            customizable=customizable,
        )
        OrderItem.objects.bulk_create(
            [
                OrderItem(
                    order=order,
                    position=position,
                    product=line.product,
                    product_name=line.product.name,
                    product_slug=line.product.slug,
                    quantity=line.quantity,
                    original_price=line.original_price,
                    discount_amount=line.discount_amount,
                    unit_price=line.unit_price,
                    total_price=line.total_price,
                    promo_code=line.promo_code,
                    requires_customization=line.product.enable_customizations,
                    customization_payload=line.customization_payload,
                )
                for position, line in enumerate(priced)
            ]
        )
        OrderService.append_history(
            order,
            status=Order.STATUS_PENDING,
            note=f"Order created with {len(priced)} item(s).",
            changed_by=f"customer:{cmd.customer_id}",
        )
        logger.info(
            "order_created",
            extra={
                "order_number": order.order_number,
                "customer_id": cmd.customer_id,
                "total_price": str(total_price),
                "customizable": customizable,
            },
        )
        notify_on_commit(order.id, NotificationKind.ORDER_CREATED, sender=sender)

        if order.is_free:
            CompleteFreeOrderUseCase.execute(CompleteFreeOrderCommand(order_id=order.id), sender=sender)
            order.refresh_from_db()
        return order

    @staticmethod
    def _resolve_products(inputs: list[OrderItemInput]) -> dict[int, Product]:
        for index, item in enumerate(inputs):
            if item.quantity < 1:
                raise OrderValidationError("Quantity must be at least 1.", field=f"items[{index}].quantity")

        ids = {item.product_id for item in inputs}
        products = Product.objects.filter(id__in=ids, is_active=True).in_bulk()
        for index, item in enumerate(inputs):
            if item.product_id not in products:
                raise ProductNotFoundError(
                    f"Product {item.product_id} not found.",
                    field=f"items[{index}].product_id",
                )
        return products

    @staticmethod
    def _price_item(item: OrderItemInput, product: Product, customer_id: int, subtotal: Decimal) -> _PricedItem:
        original_price = to_money(product.price)
        line_total = to_money(original_price * item.quantity)
        code = normalize_promo_code(item.promo_code)
        discount = Decimal("0.00")
        if code:
            result = ValidatePromoCodeUseCase.execute(
                ValidatePromoCodeCommand(
                    code=code,
                    customer_id=customer_id,
                    order_value=subtotal,
                    product_ids=(product.id,),
                )
            )
            discount = calculate_discount(result.promo_code, line_total)

        total = to_money(line_total - discount)
        return _PricedItem(
            product=product,
            quantity=item.quantity,
            original_price=original_price,
            discount_amount=discount,
            unit_price=to_money(total / item.quantity),
            total_price=total,
            promo_code=code,
            customization_payload=dict(item.customization_payload or {}),
        )

    @staticmethod
    def _insert_order(
        cmd: CreateOrderCommand,
        *,
        subtotal: Decimal,
        total_discount: Decimal,
        total_price: Decimal,
        applied_codes: list[str],
        customizable: bool,
    ) -> Order:
        prefix = getattr(settings, "ORDER_NUMBER_PREFIX", "PD")
        attempts = max(1, int(getattr(settings, "ORDER_NUMBER_MAX_ATTEMPTS", 5)))
        year = timezone.now().year

        for attempt in range(1, attempts + 1):
            order_number = OrderService.generate_order_number(prefix=prefix, year=year)
            try:
                with transaction.atomic():
                    return Order.objects.create(
                        order_number=order_number,
                        customer_id=cmd.customer_id,
                        customer_email=cmd.customer_email,
                        customer_name=cmd.customer_name,
                        customer_notes=cmd.customer_notes,
                        subtotal=subtotal,
                        total_promo_discount=total_discount,
                        total_price=total_price,
                        applied_promo_codes=applied_codes,
                        has_customizable_products=customizable,
                        customization_status=(
                            Order.CUSTOMIZATION_PENDING if customizable else Order.CUSTOMIZATION_NONE
                        ),
                    )
            except IntegrityError:
                logger.warning(
                    "order_number_collision",
                    extra={"order_number": order_number, "attempt": attempt},
                )

        raise OrderNumberExhaustedError(f"Could not allocate a unique order number after {attempts} attempts.")
