from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

_CURRENCY_NOISE = re.compile(r"^(?:R|ZAR|USD|EUR|GBP|\$|€|£)\s*|\s*(?:ZAR|USD|EUR|GBP)$", re.IGNORECASE)


def parse_amount_token(raw: str) -> Decimal:
    """Parse amounts such as ``R1,250.00`` or ``450 ZAR`` into a Decimal."""
    cleaned = _CURRENCY_NOISE.sub("", raw.strip()).replace(",", "").replace(" ", "")
    try:
        return Decimal(cleaned)
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount '{raw}'.") from exc


def format_money(amount: str | Decimal, currency: str = "ZAR") -> str:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return f"{amount} {currency}"

    text = f"{value:,.2f}"
    if currency.upper() == "ZAR":
        if text.startswith("-"):
            return f"-R{text[1:]}"
        return f"R{text}"
    return f"{currency.upper()} {text}"
