"""QuoteSource protocol: the only market data the resolver needs."""

from __future__ import annotations

import math
from typing import Protocol, runtime_checkable


@runtime_checkable
class QuoteSource(Protocol):
    """Latest traded price for a symbol.

    Stock and crypto ideas are priced by ticker ("AAPL", "BTC/USD"), option
    ideas by OCC contract symbol ("AAPL250117C00150000"). Return None when
    no price is available; implementations may also raise.
    """

    def get_price(self, symbol: str) -> float | None:
        ...


def usable_price(value: object) -> float | None:
    """Coerce a provider value to a positive finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price
