"""Alpaca latest-trade QuoteSource for stocks, crypto and options."""

from __future__ import annotations

import re
import time

import structlog
from alpaca.common.exceptions import APIError
from alpaca.data.historical import (
    CryptoHistoricalDataClient,
    OptionHistoricalDataClient,
    StockHistoricalDataClient,
)
from alpaca.data.requests import (
    CryptoLatestTradeRequest,
    OptionLatestTradeRequest,
    StockLatestTradeRequest,
)

from ideatracker.core.config import AlpacaConfig
from ideatracker.data.quotes import usable_price

logger = structlog.get_logger()

# Root, YYMMDD expiry, C/P, strike * 1000 padded to 8 digits
OCC_SYMBOL = re.compile(r"^[A-Z]{1,6}\d{6}[CP]\d{8}$")


def classify_symbol(symbol: str) -> str:
    """Route a symbol to the stock, crypto or option endpoint."""
    if "/" in symbol:
        return "crypto"
    if OCC_SYMBOL.match(symbol):
        return "option"
    return "stock"


class AlpacaQuoteSource:
    """QuoteSource backed by Alpaca's market data API.

    Uses the last trade price. Includes retry/backoff logic for API calls;
    after the final attempt the error propagates to the caller.
    """

    def __init__(self, config: AlpacaConfig, feed: str = "iex", max_retries: int = 3) -> None:
        self._feed = feed
        self._max_retries = max_retries
        self._log = logger.bind(component="alpaca_quotes", feed=feed)

        self._stock_client = StockHistoricalDataClient(
            api_key=config.api_key,
            secret_key=config.secret_key,
        )
        self._crypto_client = CryptoHistoricalDataClient(
            api_key=config.api_key or None,
            secret_key=config.secret_key or None,
        )
        self._option_client = OptionHistoricalDataClient(
            api_key=config.api_key,
            secret_key=config.secret_key,
        )

        self._log.info("alpaca_quote_source_initialized")

    def _retry(self, func, *args, **kwargs):
        """Retry a function with exponential backoff."""
        for attempt in range(self._max_retries):
            try:
                return func(*args, **kwargs)
            except APIError as e:
                if attempt == self._max_retries - 1:
                    self._log.error("api_call_failed", error=str(e), attempts=self._max_retries)
                    raise
                wait = 2 ** attempt
                self._log.warning("api_retry", attempt=attempt + 1, wait_seconds=wait, error=str(e))
                time.sleep(wait)
            except Exception as e:
                if attempt == self._max_retries - 1:
                    raise
                wait = 2 ** attempt
                self._log.warning("api_retry", attempt=attempt + 1, wait_seconds=wait, error=str(e))
                time.sleep(wait)

    def get_price(self, symbol: str) -> float | None:
        kind = classify_symbol(symbol)

        if kind == "crypto":
            request = CryptoLatestTradeRequest(symbol_or_symbols=symbol)
            fetch = self._crypto_client.get_crypto_latest_trade
        elif kind == "option":
            request = OptionLatestTradeRequest(symbol_or_symbols=symbol)
            fetch = self._option_client.get_option_latest_trade
        else:
            request = StockLatestTradeRequest(symbol_or_symbols=symbol, feed=self._feed)
            fetch = self._stock_client.get_stock_latest_trade

        result = self._retry(fetch, request)
        if not result or symbol not in result:
            self._log.warning("no_trade_returned", symbol=symbol, kind=kind)
            return None

        return usable_price(result[symbol].price)
