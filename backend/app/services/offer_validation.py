from __future__ import annotations

from typing import Any, Optional

from app.services.offer_errors import ValidationFailed


def parse_choice(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationFailed(f"invalid {field}: {value!r}", context={"field": field}) from exc


def require_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationFailed(f"{field} must not be empty", context={"field": field})
    return text


def require_amount(value: Any, field: str) -> float:
    """Money amounts must be finite and strictly positive."""

    try:
        amount = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationFailed(f"{field} must be a number", context={"field": field}) from exc
    if amount != amount or amount in (float("inf"), float("-inf")):
        raise ValidationFailed(f"{field} must be finite", context={"field": field})
    if amount <= 0:
        raise ValidationFailed(f"{field} must be positive", context={"field": field, "value": amount})
    return amount
