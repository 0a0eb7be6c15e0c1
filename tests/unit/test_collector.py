"""
Unit Tests for the Data Collector

These tests verify that DataCollector:
- Writes exactly one log entry and one statistics increment per attempt
- Contains every failure inside the tick (fetch, storage, log write)
- Runs each symbol on its own fixed-cadence timer
- Stops one symbol without touching the others
- Drains in-flight ticks on graceful shutdown
- Processes each symbol of a one-shot batch independently

The API client and repositories are replaced with in-memory fakes, except
for the end-to-end test that writes to a temporary SQLite database.

Run with:
    pytest tests/unit/test_collector.py -v
"""

import asyncio

import pytest
import pytest_asyncio

from core.exceptions import ApiError, StorageError, TransientFetchError
from core.schemas import CollectionStatus, PriceObservation
from exchanges.bithumb import BithumbAPIClient
from services.collector import CollectionStatistics, DataCollector
from storage import CollectionLogRepository, Database, PriceDataRepository


TICKER = {"opening_price": "100", "closing_price": "110", "units_traded_24H": "5"}


class FakeClient:
    """In-memory stand-in for BithumbAPIClient"""

    parse_price_data = staticmethod(BithumbAPIClient.parse_price_data)
    iter_ticker_payloads = BithumbAPIClient.iter_ticker_payloads

    def __init__(self, fail_symbols=(), delay=0.0, all_data=None):
        self.fail_symbols = set(fail_symbols)
        self.delay = delay
        self.all_data = all_data or {}
        self.calls = []

    async def get_ticker(self, symbol):
        self.calls.append(symbol)
        if self.delay:
            await asyncio.sleep(self.delay)
        if symbol in self.fail_symbols:
            raise TransientFetchError(f"Failed to fetch {symbol} after 3 attempts", attempts=3)
        return PriceObservation(symbol=symbol, closing_price=110.0)

    async def fetch_all_ticker_data(self):
        if isinstance(self.all_data, Exception):
            raise self.all_data
        return self.all_data

    async def check_availability(self):
        return True


class FakePriceRepository:
    def __init__(self, fail_symbols=()):
        self.fail_symbols = set(fail_symbols)
        self.rows = []

    async def insert(self, observation):
        if observation.symbol in self.fail_symbols:
            raise StorageError("disk full")
        self.rows.append(observation)
        return observation.model_copy(update={"id": len(self.rows)})


class FakeLogRepository:
    def __init__(self, fail=False):
        self.fail = fail
        self.entries = []

    async def insert(self, entry):
        if self.fail:
            raise StorageError("log table locked")
        self.entries.append(entry)
        return entry


def make_collector(client=None, prices=None, logs=None, grace=1.0):
    return DataCollector(
        client=client or FakeClient(),
        price_repository=prices or FakePriceRepository(),
        log_repository=logs or FakeLogRepository(),
        shutdown_grace_period=grace,
    )


@pytest_asyncio.fixture
async def collector_factory():
    """Build collectors and make sure no timer or tick outlives the test"""
    created = []

    def factory(**kwargs):
        collector = make_collector(**kwargs)
        created.append(collector)
        return collector

    yield factory

    for collector in created:
        collector.stop()
        for task in list(collector._inflight):
            task.cancel()
        await asyncio.gather(*collector._inflight, return_exceptions=True)


# ============================================
# Tests for CollectionStatistics
# ============================================

class TestCollectionStatistics:
    """Tests for the statistics counters"""

    def test_success_rate_zero_without_attempts(self):
        assert CollectionStatistics().success_rate == 0.0

    def test_success_rate(self):
        stats = CollectionStatistics()
        for success in (True, True, True, False):
            stats.record(success)

        assert stats.total_collections == 4
        assert stats.successful_collections == 3
        assert stats.failed_collections == 1
        assert stats.success_rate == 75.0
        assert stats.last_collection_time is not None

    def test_success_rate_is_rounded(self):
        stats = CollectionStatistics()
        for success in (True, True, False):
            stats.record(success)
        assert stats.success_rate == 66.67

    def test_snapshot(self):
        stats = CollectionStatistics()
        stats.record(True)
        snapshot = stats.snapshot(["BTC"])

        assert snapshot.total_collections == 1
        assert snapshot.success_rate == 100.0
        assert snapshot.active_symbols == ["BTC"]
        assert snapshot.uptime_ms >= 0


# ============================================
# Tests for a Single Tick
# ============================================

class TestCollectTick:
    """Tests for one scheduled attempt"""

    @pytest.mark.asyncio
    async def test_success_is_logged_and_counted(self, collector_factory):
        logs = FakeLogRepository()
        prices = FakePriceRepository()
        collector = collector_factory(prices=prices, logs=logs)

        await collector._collect_tick("BTC")

        [entry] = logs.entries
        assert entry.status == CollectionStatus.SUCCESS
        assert entry.symbol == "BTC"
        assert "110" in entry.message
        assert entry.execution_time >= 0
        assert len(prices.rows) == 1

        stats = collector.get_stats()
        assert stats.total_collections == 1
        assert stats.successful_collections == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_is_logged_as_error(self, collector_factory):
        logs = FakeLogRepository()
        prices = FakePriceRepository()
        collector = collector_factory(client=FakeClient(fail_symbols={"BTC"}), prices=prices, logs=logs)

        await collector._collect_tick("BTC")

        [entry] = logs.entries
        assert entry.status == CollectionStatus.ERROR
        assert entry.error_details["type"] == "TransientFetchError"
        assert "after 3 attempts" in entry.error_details["message"]
        assert "Traceback" in entry.error_details["traceback"]
        assert prices.rows == []
        assert collector.get_stats().failed_collections == 1

    @pytest.mark.asyncio
    async def test_storage_failure_is_logged_as_error(self, collector_factory):
        logs = FakeLogRepository()
        collector = collector_factory(prices=FakePriceRepository(fail_symbols={"ETH"}), logs=logs)

        await collector._collect_tick("ETH")

        [entry] = logs.entries
        assert entry.status == CollectionStatus.ERROR
        assert entry.error_details["type"] == "StorageError"
        assert collector.get_stats().failed_collections == 1

    @pytest.mark.asyncio
    async def test_log_write_failure_is_contained(self, collector_factory):
        """A failing log insert neither raises nor skips the statistics"""
        collector = collector_factory(logs=FakeLogRepository(fail=True))

        await collector._collect_tick("BTC")

        assert collector.get_stats().successful_collections == 1


# ============================================
# Tests for Scheduling
# ============================================

class TestScheduling:
    """Tests for start / stop"""

    @pytest.mark.asyncio
    async def test_each_symbol_ticks_on_its_own_timer(self, collector_factory):
        """Interval 300ms observed for ~1s gives ticks at 0, 300, 600, 900ms per symbol"""
        client = FakeClient()
        collector = collector_factory(client=client)

        await collector.start(["BTC", "eth", "BTC"], interval_ms=300)
        await asyncio.sleep(1.05)
        collector.stop()
        await collector.graceful_shutdown()

        assert client.calls.count("BTC") == 4
        assert client.calls.count("ETH") == 4
        stats = collector.get_stats()
        assert stats.total_collections == 8
        assert stats.success_rate == 100.0

    @pytest.mark.asyncio
    async def test_slow_fetch_does_not_delay_schedule(self, collector_factory):
        """Ticks keep starting on time while earlier ones are still in flight"""
        client = FakeClient(delay=0.5)
        logs = FakeLogRepository()
        collector = collector_factory(client=client, logs=logs)

        await collector.start(["BTC"], interval_ms=200)
        await asyncio.sleep(0.5)

        assert client.calls == ["BTC", "BTC", "BTC"]
        assert collector.inflight_count >= 2

        await collector.graceful_shutdown()
        assert len(logs.entries) == 3

    @pytest.mark.asyncio
    async def test_stop_one_symbol_keeps_others(self, collector_factory):
        client = FakeClient()
        collector = collector_factory(client=client)

        await collector.start(["BTC", "ETH"], interval_ms=200)
        await asyncio.sleep(0.05)
        collector.stop("btc")
        await asyncio.sleep(0.5)

        assert client.calls.count("BTC") == 1
        assert client.calls.count("ETH") == 3
        assert collector.active_symbols == ["ETH"]
        assert collector.is_running is True

        collector.stop()
        assert collector.is_running is False
        assert collector.active_symbols == []

    @pytest.mark.asyncio
    async def test_failing_symbol_does_not_affect_others(self, collector_factory):
        client = FakeClient(fail_symbols={"BTC"})
        logs = FakeLogRepository()
        collector = collector_factory(client=client, logs=logs)

        await collector.start(["BTC", "ETH"], interval_ms=200)
        await asyncio.sleep(0.3)
        await collector.graceful_shutdown()

        statuses = {(e.symbol, e.status) for e in logs.entries}
        assert statuses == {("BTC", CollectionStatus.ERROR), ("ETH", CollectionStatus.SUCCESS)}
        stats = collector.get_stats()
        assert stats.total_collections == 4
        assert stats.success_rate == 50.0

    @pytest.mark.asyncio
    async def test_start_while_running_is_ignored(self, collector_factory):
        collector = collector_factory()

        await collector.start(["BTC"], interval_ms=10_000)
        await collector.start(["ETH"], interval_ms=10_000)

        assert collector.active_symbols == ["BTC"]

    @pytest.mark.asyncio
    async def test_start_rejects_non_positive_interval(self, collector_factory):
        collector = collector_factory()

        with pytest.raises(ValueError):
            await collector.start(["BTC"], interval_ms=0)
        assert collector.is_running is False

    @pytest.mark.asyncio
    async def test_stop_unknown_symbol_is_noop(self, collector_factory):
        collector = collector_factory()
        await collector.start(["BTC"], interval_ms=10_000)

        collector.stop("DOGE")

        assert collector.active_symbols == ["BTC"]
        assert collector.is_running is True


# ============================================
# Tests for Graceful Shutdown
# ============================================

class TestGracefulShutdown:
    """Tests for graceful_shutdown / wait_closed"""

    @pytest.mark.asyncio
    async def test_releases_wait_closed(self, collector_factory):
        collector = collector_factory()
        await collector.start(["BTC"], interval_ms=10_000)

        waiter = asyncio.create_task(collector.wait_closed())
        await asyncio.sleep(0)
        assert not waiter.done()

        await collector.graceful_shutdown()
        await asyncio.wait_for(waiter, timeout=1.0)

        assert collector.is_running is False

    @pytest.mark.asyncio
    async def test_grace_period_bounds_the_wait(self, collector_factory):
        """A hung tick does not hold shutdown past the grace period"""
        collector = collector_factory(client=FakeClient(delay=5.0), grace=0.1)
        await collector.start(["BTC"], interval_ms=10_000)
        await asyncio.sleep(0.01)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await collector.graceful_shutdown()

        assert loop.time() - started < 1.0
        assert collector.inflight_count == 1

    @pytest.mark.asyncio
    async def test_signal_triggers_single_shutdown(self, collector_factory):
        import signal

        collector = collector_factory()
        await collector.start(["BTC"], interval_ms=10_000)

        collector._on_signal(signal.SIGTERM)
        first = collector._shutdown_task
        collector._on_signal(signal.SIGINT)

        assert collector._shutdown_task is first
        await asyncio.wait_for(collector.wait_closed(), timeout=2.0)

    @pytest.mark.asyncio
    async def test_signal_handled_again_after_restart(self, collector_factory):
        """A restarted collector shuts down on the next signal too"""
        import signal

        collector = collector_factory()
        await collector.start(["BTC"], interval_ms=10_000)
        collector._on_signal(signal.SIGTERM)
        first = collector._shutdown_task
        await asyncio.wait_for(collector.wait_closed(), timeout=2.0)

        await collector.start(["BTC"], interval_ms=10_000)
        assert collector.is_running is True
        collector._on_signal(signal.SIGINT)

        assert collector._shutdown_task is not None
        assert collector._shutdown_task is not first
        await asyncio.wait_for(collector._shutdown_task, timeout=2.0)
        assert collector.is_running is False


# ============================================
# Tests for One-Shot Collection
# ============================================

class TestCollectAllOnce:
    """Tests for collect_all_once"""

    @pytest.mark.asyncio
    async def test_symbols_are_processed_independently(self, collector_factory):
        data = {"BTC": TICKER, "ETH": "malformed", "XRP": TICKER, "date": "1704110400000"}
        prices = FakePriceRepository(fail_symbols={"XRP"})
        collector = collector_factory(client=FakeClient(all_data=data), prices=prices)

        results = await collector.collect_all_once()

        by_symbol = {r.symbol: r for r in results}
        assert list(by_symbol) == ["BTC", "ETH", "XRP"]
        assert by_symbol["BTC"].status == CollectionStatus.SUCCESS
        assert by_symbol["BTC"].price == 110.0
        assert by_symbol["ETH"].status == CollectionStatus.ERROR
        assert by_symbol["XRP"].status == CollectionStatus.ERROR
        assert "disk full" in by_symbol["XRP"].error
        assert [row.symbol for row in prices.rows] == ["BTC"]

    @pytest.mark.asyncio
    async def test_batch_fetch_failure_propagates(self, collector_factory):
        collector = collector_factory(client=FakeClient(all_data=ApiError("API error: ERROR (status 5600)")))

        with pytest.raises(ApiError):
            await collector.collect_all_once()


# ============================================
# End-to-end with SQLite
# ============================================

class TestWithDatabase:
    """Collector writing to a real (temporary) database"""

    @pytest.mark.asyncio
    async def test_tick_persists_observation_and_log(self, tmp_path):
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'collector.db'}")
        await database.initialize()
        try:
            collector = DataCollector(client=FakeClient(fail_symbols={"ETH"}), database=database)

            await collector._collect_tick("BTC")
            await collector._collect_tick("ETH")

            [obs] = await PriceDataRepository(database).get_latest("BTC")
            assert obs.closing_price == 110.0

            logs = await CollectionLogRepository(database).get_recent_logs()
            assert [(e.symbol, e.status) for e in logs] == [
                ("ETH", CollectionStatus.ERROR),
                ("BTC", CollectionStatus.SUCCESS),
            ]
        finally:
            await database.close()
