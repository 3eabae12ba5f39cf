"""Amount validation for the appointment form.

Amounts are handled as ``Decimal`` cents throughout; floats never enter the
payment-ceiling arithmetic.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from clinicdesk.models import quantize_money

MAX_AMOUNT = Decimal("500000")


def filter_amount_input(raw: str) -> str:
    """Apply the typing filter used by amount inputs.

    Drops anything that is not a digit or the first decimal point, keeps at
    most two fraction digits and clamps the value to ``MAX_AMOUNT``.
    """

    kept: list[str] = []
    seen_point = False
    fraction_digits = 0
    for char in raw:
        if char.isdigit() and char.isascii():
            if seen_point:
                if fraction_digits >= 2:
                    continue
                fraction_digits += 1
            kept.append(char)
        elif char == "." and not seen_point:
            seen_point = True
            kept.append(char)
    text = "".join(kept)
    if text.startswith("."):
        text = "0" + text

    value = parse_amount(text)
    if value is not None and value > MAX_AMOUNT:
        return str(int(MAX_AMOUNT))
    return text


def parse_amount(text: Any) -> Decimal | None:
    """Parse user or wire input into a cent-precise amount."""

    if text is None:
        return None
    if isinstance(text, Decimal):
        return quantize_money(text)
    if isinstance(text, float):
        text = repr(text)
    text = str(text).strip()
    if not text or text == ".":
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return quantize_money(value)


def to_money(value: Any) -> Decimal:
    parsed = parse_amount(value)
    return parsed if parsed is not None else Decimal("0.00")


def format_amount(value: Decimal) -> str:
    """Render an amount without trailing zero cents (``700``, ``700.50``)."""

    value = quantize_money(value)
    if value == value.to_integral_value():
        return str(int(value))
    return f"{value:.2f}"


def amount_error(label: str, text: Any, *, required: bool = True) -> str | None:
    if text is None or not str(text).strip():
        return f"{label} is required" if required else None
    value = parse_amount(text)
    if value is None:
        return f"{label} must be a number"
    if value < 0:
        return f"{label} cannot be negative"
    if value > MAX_AMOUNT:
        return f"{label} cannot exceed {format_amount(MAX_AMOUNT)}"
    return None


def max_allowed_payment(total: Decimal, balance: Decimal) -> Decimal:
    """Largest payment allowed: the current charge plus prior debt."""

    return quantize_money(to_money(total) + max(to_money(balance), Decimal("0")))


def payment_error(total: Any, paid: Any, balance: Any) -> str | None:
    paid_value = parse_amount(paid)
    if paid_value is None:
        return None
    ceiling = max_allowed_payment(to_money(total), to_money(balance))
    if paid_value > ceiling:
        return f"Paid amount cannot exceed {format_amount(ceiling)}"
    return None


