"""Money rounding and currency formatting helpers.

Every function here takes the currency code explicitly; only
``default_currency`` looks at the environment, and it is meant to be called
at the edges (routes, notifier, scripts).
"""

import os
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

FALLBACK_CURRENCY = "BDT"

CURRENCIES: Dict[str, Dict[str, Any]] = {
    "BDT": {
        "name": "Bangladeshi Taka",
        "symbol": "৳",
        "code": "BDT",
        "locale": "bn-BD",
        "decimal_places": 2,
    },
    "USD": {
        "name": "US Dollar",
        "symbol": "$",
        "code": "USD",
        "locale": "en-US",
        "decimal_places": 2,
    },
}


def to_money(value: Any) -> Decimal:
    """Coerce ``value`` to a Decimal rounded half-up to two places."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def default_currency() -> str:
    return os.getenv("APP_CURRENCY", FALLBACK_CURRENCY).upper()


def currency_config(code: Optional[str] = None, default: str = FALLBACK_CURRENCY) -> Dict[str, Any]:
    code = (code or default).upper()
    return dict(CURRENCIES.get(code) or CURRENCIES[FALLBACK_CURRENCY])


def currency_symbol(code: Optional[str] = None) -> str:
    return currency_config(code)["symbol"]


def format_currency(amount: Any, code: Optional[str] = None) -> str:
    """Format ``amount`` as ``"<symbol> 1,234.50"``."""
    config = currency_config(code)
    places = config["decimal_places"]
    quantum = Decimal(1).scaleb(-places)
    value = Decimal(str(amount if amount is not None else 0)).quantize(quantum, rounding=ROUND_HALF_UP)
    return f"{config['symbol']} {value:,.{places}f}"
