from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from .errors import OrderValidationError

_CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def format_order_number(*, prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:03d}"


def normalize_promo_code(raw: str | None) -> str:
    return (raw or "").strip().upper()


def ensure_items_present(items: Iterable) -> list:
    items = list(items or [])
    if not items:
        raise OrderValidationError("Order must contain at least one item.", field="items")
    return items


def has_customizable_items(flags: Iterable[bool]) -> bool:
    return any(bool(flag) for flag in flags)


def ensure_expected_total(*, expected: Decimal | None, computed: Decimal) -> None:
    if expected is None:
        return
    if to_money(expected) != to_money(computed):
        raise OrderValidationError(
            f"Order total mismatch: expected {to_money(expected)}, computed {to_money(computed)}.",
            field="expected_total",
        )
