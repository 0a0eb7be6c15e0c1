"""
Bithumb REST API Client

This module provides an async HTTP client for the Bithumb public REST API.
It handles:
- HTTP requests with bounded retry and linear backoff
- Application-level status validation ("0000" = OK)
- Error handling and logging
- Data normalization to our schemas

Retry Policy:
    - Up to max_retries attempts per request (default 3)
    - Before retry N+1 the client waits retry_delay * N milliseconds
      (default 5000ms: 5s, 10s, ...), no jitter
    - A non-"0000" application status consumes an attempt exactly like a
      transport error or timeout
    - When every attempt fails, TransientFetchError is raised carrying the
      last error as its cause

Usage:
    async with BithumbAPIClient() as client:
        observation = await client.get_ticker("BTC")
        tickers = await client.get_all_tickers()
"""

import asyncio
import math
import time
from typing import Any, Dict, Iterator, Optional, Tuple

import aiohttp

from core.config import settings
from core.exceptions import ApiError, TransientFetchError
from core.logging import get_logger, log_api_request, log_api_response
from core.schemas import PriceObservation


# Upstream field name -> PriceObservation field name
TICKER_FIELD_MAP = {
    "opening_price": "opening_price",
    "closing_price": "closing_price",
    "min_price": "min_price",
    "max_price": "max_price",
    "units_traded": "units_traded",
    "acc_trade_value": "acc_trade_value",
    "prev_closing_price": "prev_closing_price",
    "units_traded_24H": "units_traded_24h",
    "acc_trade_value_24H": "acc_trade_value_24h",
    "fluctate_24H": "fluctate_24h",
    "fluctate_rate_24H": "fluctate_rate_24h",
}


def parse_number(value: Any) -> Optional[float]:
    """
    Parse an upstream numeric field.

    Returns None for anything that is not a finite number ("", "-", "abc",
    "NaN", "Infinity", None, nested objects). Zero stays zero.

    Example:
        >>> parse_number("95000000")
        95000000.0
        >>> parse_number("n/a") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _describe(error: Exception) -> str:
    # asyncio.TimeoutError has an empty message
    return str(error) or type(error).__name__


class BithumbAPIClient:
    """
    Async HTTP client for the Bithumb public REST API

    All ticker methods return normalized PriceObservation objects; the less
    frequently used market-data endpoints return the raw "data" payload.

    Attributes:
        base_url: Bithumb API base URL
        timeout_ms: Per-attempt request timeout in milliseconds
        max_retries: Maximum attempts per request
        retry_delay_ms: Base backoff delay in milliseconds
        session: aiohttp ClientSession for HTTP requests

    Example:
        >>> async with BithumbAPIClient(max_retries=5) as client:
        ...     obs = await client.get_ticker("ETH")
        ...     print(f"ETH: ₩{obs.closing_price:,.0f}")

    Notes:
        - Use as an async context manager, or call initialize()/close()
        - No state is kept between calls (no caching)
    """

    EXCHANGE = "bithumb"
    SUCCESS_STATUS = "0000"
    QUOTE_CURRENCY = "KRW"
    HEALTH_PROBE_SYMBOL = "BTC"

    # Response-level keys of the ALL_KRW payload that are not tickers
    NON_SYMBOL_KEYS = frozenset({"date"})

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None
    ):
        """
        Initialize the Bithumb API client.

        Args:
            base_url: API base URL (default: settings.bithumb_api_url)
            timeout_ms: Per-attempt timeout (default: settings.api_request_timeout)
            max_retries: Attempts per request (default: settings.max_retries)
            retry_delay_ms: Base backoff delay (default: settings.retry_delay)
        """
        self.base_url = (base_url or settings.bithumb_api_url).rstrip("/")
        self.timeout_ms = timeout_ms if timeout_ms is not None else settings.api_request_timeout
        self.max_retries = max(1, max_retries if max_retries is not None else settings.max_retries)
        self.retry_delay_ms = retry_delay_ms if retry_delay_ms is not None else settings.retry_delay
        self.logger = get_logger(__name__)
        self.session: Optional[aiohttp.ClientSession] = None

    # ============================================
    # Session Management
    # ============================================

    async def initialize(self) -> None:
        """Create the HTTP session (idempotent)."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(headers=settings.get_bithumb_headers())
            self.logger.debug("BithumbAPIClient session created")

    async def close(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.debug("BithumbAPIClient session closed")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ============================================
    # HTTP Request Handling
    # ============================================

    def _unwrap(self, payload: Any, path: str) -> Any:
        """
        Validate the application-level status of a response envelope.

        Raises:
            ApiError: If the payload is not an envelope or status != "0000"
        """
        if not isinstance(payload, dict):
            raise ApiError(f"Unexpected response shape from {path}: {type(payload).__name__}")

        status = str(payload.get("status"))
        if status != self.SUCCESS_STATUS:
            message = payload.get("message") or "Unknown error"
            raise ApiError(f"API error: {message} (status {status})", status=status)

        return payload.get("data")

    async def _request_once(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Make a single GET request and return the validated "data" payload.

        Raises:
            RuntimeError: If the session has not been initialized
            ApiError: On non-200 HTTP status or non-"0000" application status
            aiohttp.ClientError / asyncio.TimeoutError: On transport failures
        """
        if not self.session:
            raise RuntimeError("Client session not initialized. Use 'async with' or initialize().")

        url = f"{self.base_url}{path}"
        log_api_request(self.EXCHANGE, path, params)
        started = time.monotonic()

        async with self.session.get(
            url,
            params=params,
            timeout=aiohttp.ClientTimeout(total=self.timeout_ms / 1000)
        ) as resp:
            log_api_response(self.EXCHANGE, path, resp.status, time.monotonic() - started)

            if resp.status != 200:
                text = await resp.text()
                raise ApiError(f"HTTP {resp.status} on {path}: {text[:200]}")

            payload = await resp.json(content_type=None)

        return self._unwrap(payload, path)

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET with bounded retry and linear backoff.

        Args:
            path: API endpoint path (e.g., "/public/ticker/BTC_KRW")
            params: Optional query parameters

        Returns:
            The "data" payload of the first successful attempt

        Raises:
            RuntimeError: If the session has not been initialized
            TransientFetchError: If every attempt failed
        """
        if not self.session:
            raise RuntimeError("Client session not initialized. Use 'async with' or initialize().")

        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                data = await self._request_once(path, params)
            except Exception as e:
                last_error = e
                self.logger.warning(
                    f"API request failed on {path} ({attempt}/{self.max_retries}): {_describe(e)}"
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay_ms * attempt / 1000)
                continue

            if attempt > 1:
                self.logger.info(f"API request succeeded on {path} ({attempt}/{self.max_retries})")
            return data

        raise TransientFetchError(
            f"Failed to fetch {path} after {self.max_retries} attempts: {_describe(last_error)}",
            attempts=self.max_retries,
            status=getattr(last_error, "status", None)
        ) from last_error

    def _market(self, symbol: str) -> str:
        return f"{symbol.strip().upper()}_{self.QUOTE_CURRENCY}"

    # ============================================
    # Normalization
    # ============================================

    @staticmethod
    def parse_price_data(ticker_data: Any, symbol: str) -> PriceObservation:
        """
        Normalize one ticker payload into a PriceObservation.

        Each numeric field is parsed on its own; a malformed field becomes None
        and does not affect the others.

        Args:
            ticker_data: Ticker "data" mapping from the upstream API
            symbol: Symbol the payload belongs to

        Returns:
            PriceObservation with collected_at unset (assigned on insert)

        Raises:
            ApiError: If the payload is empty or not a mapping
        """
        if not ticker_data or not isinstance(ticker_data, dict):
            raise ApiError(f"Empty ticker data for {symbol}")

        values = {
            field: parse_number(ticker_data.get(upstream))
            for upstream, field in TICKER_FIELD_MAP.items()
        }
        return PriceObservation(symbol=symbol, **values)

    @classmethod
    def iter_ticker_payloads(cls, data: Any) -> Iterator[Tuple[str, Any]]:
        """
        Yield (symbol, payload) pairs from an ALL_KRW response.

        Skips the response-level "date" key. Payloads are yielded as-is, so a
        malformed entry surfaces when it is normalized.
        """
        if not isinstance(data, dict):
            raise ApiError(f"Unexpected ALL_{cls.QUOTE_CURRENCY} payload: {type(data).__name__}")

        for symbol, payload in data.items():
            if symbol in cls.NON_SYMBOL_KEYS:
                continue
            yield symbol, payload

    # ============================================
    # Ticker Methods
    # ============================================

    async def fetch_ticker_data(self, symbol: str) -> Dict[str, Any]:
        """
        Fetch the raw ticker payload for one symbol.

        Bithumb Endpoint:
            GET /public/ticker/{SYMBOL}_KRW

        Response Format:
            {
              "status": "0000",
              "data": {
                "opening_price": "94000000",
                "closing_price": "95000000",
                "min_price": "93500000",
                "max_price": "95500000",
                "units_traded": "1234.5678",
                "acc_trade_value": "116543210987.12",
                "prev_closing_price": "94000000",
                "units_traded_24H": "2345.678",
                "acc_trade_value_24H": "221234567890.5",
                "fluctate_24H": "1000000",
                "fluctate_rate_24H": "1.06",
                "date": "1704110400000"
              }
            }
        """
        return await self._get(f"/public/ticker/{self._market(symbol)}")

    async def get_ticker(self, symbol: str) -> PriceObservation:
        """
        Fetch and normalize the ticker for one symbol.

        Args:
            symbol: Coin symbol (e.g., "BTC"); case-insensitive

        Returns:
            PriceObservation for the symbol

        Raises:
            TransientFetchError: If every attempt failed
            ApiError: If the payload was empty

        Example:
            >>> obs = await client.get_ticker("btc")
            >>> obs.symbol, obs.closing_price
            ('BTC', 95000000.0)
        """
        symbol = symbol.strip().upper()
        data = await self.fetch_ticker_data(symbol)
        return self.parse_price_data(data, symbol)

    async def fetch_all_ticker_data(self) -> Dict[str, Any]:
        """
        Fetch the raw ALL_KRW ticker payload.

        Bithumb Endpoint:
            GET /public/ticker/ALL_KRW

        Response Format:
            {
              "status": "0000",
              "data": {
                "BTC": {"opening_price": "...", ...},
                "ETH": {"opening_price": "...", ...},
                "date": "1704110400000"
              }
            }
        """
        return await self._get(f"/public/ticker/ALL_{self.QUOTE_CURRENCY}")

    async def get_all_tickers(self) -> Dict[str, PriceObservation]:
        """
        Fetch and normalize the tickers of every listed coin.

        Entries that cannot be normalized are logged and left out.

        Returns:
            Mapping of symbol -> PriceObservation
        """
        data = await self.fetch_all_ticker_data()
        tickers: Dict[str, PriceObservation] = {}

        for symbol, payload in self.iter_ticker_payloads(data):
            try:
                tickers[symbol] = self.parse_price_data(payload, symbol)
            except (ApiError, ValueError) as e:
                self.logger.warning(f"Skipping ticker {symbol}: {e}")

        self.logger.info(f"Fetched {len(tickers)} tickers")
        return tickers

    async def check_availability(self) -> bool:
        """
        Lightweight upstream probe (single attempt, no retry).

        Returns:
            True if the BTC ticker answers with status "0000", False on any error
        """
        try:
            await self._request_once(f"/public/ticker/{self._market(self.HEALTH_PROBE_SYMBOL)}")
            return True
        except Exception as e:
            self.logger.debug(f"Bithumb availability probe failed: {_describe(e)}")
            return False

    # ============================================
    # Other Market Data
    # ============================================

    async def get_orderbook(self, symbol: str, count: int = 5) -> Dict[str, Any]:
        """
        Fetch an order book snapshot.

        Bithumb Endpoint:
            GET /public/orderbook/{SYMBOL}_KRW?count=N

        Returns:
            Raw payload with "bids" and "asks" lists of {"price", "quantity"}
        """
        return await self._get(f"/public/orderbook/{self._market(symbol)}", {"count": count})

    async def get_transaction_history(self, symbol: str, count: int = 20) -> Any:
        """
        Fetch the most recent trades.

        Bithumb Endpoint:
            GET /public/transaction_history/{SYMBOL}_KRW?count=N
        """
        return await self._get(f"/public/transaction_history/{self._market(symbol)}", {"count": count})

    async def get_candlestick(self, symbol: str, chart_intervals: str = "24h") -> Any:
        """
        Fetch candlesticks.

        Bithumb Endpoint:
            GET /public/candlestick/{SYMBOL}_KRW/{interval}

        Returns:
            Raw list of [timestamp, open, close, high, low, volume] rows
        """
        return await self._get(f"/public/candlestick/{self._market(symbol)}/{chart_intervals}")
