"""
Unit Tests for Bithumb API Client

These tests verify that the BithumbAPIClient:
- Formats ticker requests for the KRW market
- Normalizes Bithumb responses to PriceObservation
- Retries with linear backoff and gives up after max_retries attempts
- Treats a non-"0000" status like any other failed attempt

HTTP is never touched: either _get/_request_once is monkeypatched or a fake
session hands back canned responses.

Run with:
    pytest tests/unit/test_bithumb_api_client.py -v
"""

import asyncio

import aiohttp
import pytest
import pytest_asyncio

from core.exceptions import ApiError, TransientFetchError
from core.schemas import PriceObservation
from exchanges.bithumb.api_client import BithumbAPIClient, parse_number


BTC_TICKER = {
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
    "date": "1704110400000",
}


class FakeResponse:
    """Minimal stand-in for aiohttp's response context manager"""

    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def json(self, content_type=None):
        return self.payload

    async def text(self):
        return str(self.payload)


class FakeSession:
    """Hands out the queued responses in order, repeating the last one"""

    closed = False

    def __init__(self, *responses):
        self.responses = list(responses)
        self.urls = []

    def get(self, url, params=None, timeout=None):
        self.urls.append(url)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    async def close(self):
        self.closed = True


# ============================================
# Fixtures
# ============================================

@pytest_asyncio.fixture
async def api_client():
    """Create a BithumbAPIClient with no retry delay"""
    async with BithumbAPIClient(max_retries=3, retry_delay_ms=0) as client:
        yield client


@pytest.fixture
def offline_client():
    """Client whose session is replaced per test (no aiohttp session)"""
    return BithumbAPIClient(base_url="https://api.test", max_retries=3, retry_delay_ms=0)


# ============================================
# Tests for Normalization
# ============================================

class TestParseNumber:
    """Tests for parse_number"""

    @pytest.mark.parametrize("raw, expected", [
        ("95000000", 95000000.0),
        ("1.06", 1.06),
        ("-0.5", -0.5),
        ("0", 0.0),
        (42, 42.0),
    ])
    def test_valid_numbers(self, raw, expected):
        assert parse_number(raw) == expected

    @pytest.mark.parametrize("raw", ["", "-", "abc", "NaN", "Infinity", None, {}, [], True])
    def test_invalid_numbers_become_none(self, raw):
        assert parse_number(raw) is None


class TestParsePriceData:
    """Tests for parse_price_data"""

    def test_full_payload_is_normalized(self):
        """Verify every field is parsed and 24H keys are renamed"""
        obs = BithumbAPIClient.parse_price_data(BTC_TICKER, "BTC")

        assert isinstance(obs, PriceObservation)
        assert obs.symbol == "BTC"
        assert obs.opening_price == 94000000.0
        assert obs.closing_price == 95000000.0
        assert obs.min_price == 93500000.0
        assert obs.max_price == 95500000.0
        assert obs.units_traded == 1234.5678
        assert obs.units_traded_24h == 2345.678
        assert obs.acc_trade_value_24h == 221234567890.5
        assert obs.fluctate_24h == 1000000.0
        assert obs.fluctate_rate_24h == 1.06
        assert obs.collected_at is None

    def test_malformed_field_does_not_affect_others(self):
        """Verify a bad field becomes None on its own"""
        payload = dict(BTC_TICKER, closing_price="abc", min_price="")
        obs = BithumbAPIClient.parse_price_data(payload, "BTC")

        assert obs.closing_price is None
        assert obs.min_price is None
        assert obs.opening_price == 94000000.0
        assert obs.max_price == 95500000.0

    def test_missing_fields_are_none(self):
        obs = BithumbAPIClient.parse_price_data({"closing_price": "100"}, "XRP")
        assert obs.closing_price == 100.0
        assert obs.units_traded_24h is None

    @pytest.mark.parametrize("payload", [None, {}, "BTC", []])
    def test_empty_payload_raises(self, payload):
        with pytest.raises(ApiError):
            BithumbAPIClient.parse_price_data(payload, "BTC")

    def test_iter_ticker_payloads_skips_date(self):
        data = {"BTC": BTC_TICKER, "ETH": BTC_TICKER, "date": "1704110400000"}
        assert [symbol for symbol, _ in BithumbAPIClient.iter_ticker_payloads(data)] == ["BTC", "ETH"]

    def test_iter_ticker_payloads_rejects_non_mapping(self):
        with pytest.raises(ApiError):
            list(BithumbAPIClient.iter_ticker_payloads(["BTC"]))


# ============================================
# Tests for Ticker Methods
# ============================================

class TestGetTicker:
    """Tests for get_ticker / get_all_tickers"""

    @pytest.mark.asyncio
    async def test_get_ticker_requests_krw_market(self, api_client, monkeypatch):
        """Verify the path and symbol normalization"""
        calls = []

        async def mock_get(path, params=None):
            calls.append(path)
            return BTC_TICKER

        monkeypatch.setattr(api_client, "_get", mock_get)

        obs = await api_client.get_ticker("btc")

        assert calls == ["/public/ticker/BTC_KRW"]
        assert obs.symbol == "BTC"
        assert obs.closing_price == 95000000.0

    @pytest.mark.asyncio
    async def test_get_all_tickers_skips_bad_entries(self, api_client, monkeypatch):
        """Verify the date key and malformed entries are left out"""
        async def mock_get(path, params=None):
            assert path == "/public/ticker/ALL_KRW"
            return {"BTC": BTC_TICKER, "ETH": dict(BTC_TICKER, closing_price="4000000"), "BAD": "x", "date": "1"}

        monkeypatch.setattr(api_client, "_get", mock_get)

        tickers = await api_client.get_all_tickers()

        assert set(tickers) == {"BTC", "ETH"}
        assert tickers["ETH"].closing_price == 4000000.0

    @pytest.mark.asyncio
    async def test_market_data_endpoints(self, api_client, monkeypatch):
        """Verify orderbook / trades / candlestick paths and params"""
        calls = []

        async def mock_get(path, params=None):
            calls.append((path, params))
            return {}

        monkeypatch.setattr(api_client, "_get", mock_get)

        await api_client.get_orderbook("eth", count=10)
        await api_client.get_transaction_history("BTC")
        await api_client.get_candlestick("xrp", "1h")

        assert calls == [
            ("/public/orderbook/ETH_KRW", {"count": 10}),
            ("/public/transaction_history/BTC_KRW", {"count": 20}),
            ("/public/candlestick/XRP_KRW/1h", None),
        ]


# ============================================
# Tests for Retry Policy
# ============================================

class TestRetry:
    """Tests for _get retry behavior"""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, api_client, monkeypatch):
        """Two failures then a success returns the data after three attempts"""
        attempts = []

        async def flaky(path, params=None):
            attempts.append(path)
            if len(attempts) < 3:
                raise aiohttp.ClientError("connection reset")
            return BTC_TICKER

        monkeypatch.setattr(api_client, "_request_once", flaky)

        data = await api_client._get("/public/ticker/BTC_KRW")

        assert data == BTC_TICKER
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_exhaustion_raises_transient_fetch_error(self, api_client, monkeypatch):
        """Every attempt failing raises after exactly max_retries attempts"""
        attempts = []

        async def always_fail(path, params=None):
            attempts.append(path)
            raise asyncio.TimeoutError()

        monkeypatch.setattr(api_client, "_request_once", always_fail)

        with pytest.raises(TransientFetchError) as exc_info:
            await api_client._get("/public/ticker/BTC_KRW")

        assert len(attempts) == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)
        assert "TimeoutError" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_linear_backoff_delays(self, monkeypatch):
        """Waits retry_delay * N before retry N+1 and not after the last attempt"""
        client = BithumbAPIClient(max_retries=3, retry_delay_ms=5000)
        client.session = FakeSession(FakeResponse({}, status=503))
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr("exchanges.bithumb.api_client.asyncio.sleep", fake_sleep)

        with pytest.raises(TransientFetchError):
            await client._get("/public/ticker/BTC_KRW")

        assert delays == [5.0, 10.0]

    @pytest.mark.asyncio
    async def test_error_status_consumes_attempts(self, offline_client):
        """A "5600" status on every attempt exhausts the retries"""
        session = FakeSession(FakeResponse({"status": "5600", "message": "ERROR"}))
        offline_client.session = session

        with pytest.raises(TransientFetchError) as exc_info:
            await offline_client.get_ticker("BTC")

        assert len(session.urls) == 3
        assert session.urls[0] == "https://api.test/public/ticker/BTC_KRW"
        assert exc_info.value.status == "5600"
        assert "ERROR" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ApiError)

    @pytest.mark.asyncio
    async def test_error_status_then_success(self, offline_client):
        session = FakeSession(
            FakeResponse({"status": "5600", "message": "ERROR"}),
            FakeResponse({"status": "0000", "data": BTC_TICKER}),
        )
        offline_client.session = session

        obs = await offline_client.get_ticker("BTC")

        assert obs.closing_price == 95000000.0
        assert len(session.urls) == 2

    @pytest.mark.asyncio
    async def test_missing_message_uses_default(self, offline_client):
        offline_client.session = FakeSession(FakeResponse({"status": "5500"}))

        with pytest.raises(TransientFetchError) as exc_info:
            await offline_client.fetch_ticker_data("BTC")

        assert "Unknown error" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_requires_session(self, offline_client):
        with pytest.raises(RuntimeError):
            await offline_client.get_ticker("BTC")


# ============================================
# Tests for Availability Probe
# ============================================

class TestCheckAvailability:
    """Tests for check_availability"""

    @pytest.mark.asyncio
    async def test_available(self, offline_client):
        session = FakeSession(FakeResponse({"status": "0000", "data": BTC_TICKER}))
        offline_client.session = session

        assert await offline_client.check_availability() is True
        assert session.urls == ["https://api.test/public/ticker/BTC_KRW"]

    @pytest.mark.asyncio
    async def test_unavailable_is_single_attempt(self, offline_client):
        """A failing probe returns False without retrying"""
        session = FakeSession(FakeResponse({"status": "5600", "message": "ERROR"}))
        offline_client.session = session

        assert await offline_client.check_availability() is False
        assert len(session.urls) == 1

    @pytest.mark.asyncio
    async def test_without_session_returns_false(self, offline_client):
        assert await offline_client.check_availability() is False
