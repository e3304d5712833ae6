from datetime import datetime
from decimal import Decimal

from flask import current_app


def format_amount(amount) -> str:
    symbol = current_app.config.get("CURRENCY_SYMBOL", "₵")
    return f"{symbol}{Decimal(amount or 0):,.2f}"


def format_datetime(value) -> str:
    if not isinstance(value, datetime):
        return value or ""
    return value.strftime("%B %d, %Y %I:%M %p")


def matches(term: str, *fields) -> bool:
    """Case-insensitive substring search over the non-empty fields."""
    term = (term or "").strip().lower()
    if not term:
        return True
    return any(term in str(f).lower() for f in fields if f)


def register_filters(app) -> None:
    app.add_template_filter(format_amount, "money")
    app.add_template_filter(format_datetime, "datetime")
