"""
Health / Stats Reporter

Derives a point-in-time health summary from the collector, the Bithumb client
and the database. Probes run on demand only (no timer). health_check() never
raises: every probe failure is reported as an unreachable subsystem.
"""

from typing import Optional

from core.logging import get_logger
from core.schemas import HealthReport
from exchanges.bithumb import BithumbAPIClient
from services.collector import DataCollector
from storage.database import Database


class HealthReporter:
    """
    Health check over the collector and its collaborators.

    Attributes:
        collector: Scheduler whose running flag and stats are reported
        client: API client probed with check_availability()
        database: Database probed with test_connection()
    """

    def __init__(
        self,
        collector: DataCollector,
        client: Optional[BithumbAPIClient] = None,
        database: Optional[Database] = None
    ):
        self.collector = collector
        self.client = client or collector.client
        self.database = database or collector.database
        self._logger = get_logger(__name__)

    async def health_check(self) -> HealthReport:
        """
        Probe the upstream API and the database.

        Returns:
            HealthReport with stats when the database answered; when the
            database probe raises, both subsystems are reported unreachable
            together with the error message.
        """
        try:
            api_reachable = await self.client.check_availability()
        except Exception as e:
            self._logger.warning(f"API probe failed: {e}")
            api_reachable = False

        try:
            await self.database.test_connection()
        except Exception as e:
            self._logger.error(f"Health check failed: {e}")
            return HealthReport(
                api_reachable=False,
                database_reachable=False,
                scheduler_running=self.collector.is_running,
                error=str(e),
            )

        return HealthReport(
            api_reachable=api_reachable,
            database_reachable=True,
            scheduler_running=self.collector.is_running,
            stats=self.collector.get_stats(),
        )
