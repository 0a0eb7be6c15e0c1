"""
Repositories

Thin persistence gateways over the collector tables. Each method runs in its
own transaction (one pooled connection, released on every exit path), so a
failed observation insert never prevents the matching log insert and vice
versa.

    PriceDataRepository      - append/read PriceObservation rows
    CollectionLogRepository  - append/read CollectionLogEntry rows
    CoinsRepository          - coin reference data
    SystemConfigRepository   - key/value configuration pairs

Read methods return newest rows first and bound the result count with
sanitize_limit().
"""

from datetime import datetime
from typing import Any, List, Optional, Union

from sqlalchemy import func, select

from core.schemas import CollectionLogEntry, CollectionStatus, PriceObservation, PRICE_FIELDS
from core.utils.time import current_utc_datetime, ensure_utc
from storage.database import Database
from storage.tables import coins, collection_logs, price_data, system_config


def sanitize_limit(value: Any, default: int) -> int:
    """
    Coerce a caller-supplied row limit to a positive integer.

    Missing, non-numeric and non-positive values fall back to default.

    Example:
        >>> sanitize_limit("25", 10)
        25
        >>> sanitize_limit("abc", 10)
        10
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return default
    return limit if limit > 0 else default


class PriceDataRepository:
    """Append-only store for PriceObservation rows."""

    DEFAULT_LIMIT = 10

    def __init__(self, database: Database):
        self.database = database

    async def insert(self, observation: PriceObservation) -> PriceObservation:
        """
        Append one observation; collected_at is assigned here.

        Returns:
            The stored observation, with id and collected_at set

        Raises:
            StorageError: If the insert fails
        """
        collected_at = current_utc_datetime()
        values = {"symbol": observation.symbol, "collected_at": collected_at, **observation.price_values()}

        async with self.database.transaction() as conn:
            result = await conn.execute(price_data.insert().values(**values))
            row_id = result.inserted_primary_key[0] if result.inserted_primary_key else None

        return observation.model_copy(update={"id": row_id, "collected_at": collected_at})

    async def get_latest(self, symbol: str, limit: Any = DEFAULT_LIMIT) -> List[PriceObservation]:
        """Most recent observations for a symbol, newest first."""
        query = (
            select(price_data)
            .where(price_data.c.symbol == symbol.upper())
            .order_by(price_data.c.collected_at.desc(), price_data.c.id.desc())
            .limit(sanitize_limit(limit, self.DEFAULT_LIMIT))
        )
        async with self.database.transaction() as conn:
            rows = (await conn.execute(query)).mappings().all()
        return [self._to_observation(row) for row in rows]

    async def get_by_time_range(self, symbol: str, start: datetime, end: datetime) -> List[PriceObservation]:
        """Observations for a symbol collected between start and end (inclusive), newest first."""
        query = (
            select(price_data)
            .where(
                price_data.c.symbol == symbol.upper(),
                price_data.c.collected_at.between(ensure_utc(start), ensure_utc(end)),
            )
            .order_by(price_data.c.collected_at.desc(), price_data.c.id.desc())
        )
        async with self.database.transaction() as conn:
            rows = (await conn.execute(query)).mappings().all()
        return [self._to_observation(row) for row in rows]

    @staticmethod
    def _to_observation(row) -> PriceObservation:
        return PriceObservation(
            id=row["id"],
            symbol=row["symbol"],
            collected_at=row["collected_at"],
            **{name: row[name] for name in PRICE_FIELDS}
        )


class CollectionLogRepository:
    """Append-only store for CollectionLogEntry rows."""

    DEFAULT_LIMIT = 100
    DEFAULT_ERROR_LIMIT = 50

    def __init__(self, database: Database):
        self.database = database

    async def insert(self, entry: CollectionLogEntry) -> CollectionLogEntry:
        """
        Append one log entry; collected_at is assigned here.

        Raises:
            StorageError: If the insert fails
        """
        collected_at = current_utc_datetime()
        values = {
            "symbol": entry.symbol,
            "status": entry.status.value,
            "message": entry.message,
            "error_details": entry.error_details,
            "execution_time": entry.execution_time,
            "collected_at": collected_at,
        }

        async with self.database.transaction() as conn:
            result = await conn.execute(collection_logs.insert().values(**values))
            row_id = result.inserted_primary_key[0] if result.inserted_primary_key else None

        return entry.model_copy(update={"id": row_id, "collected_at": collected_at})

    async def get_recent_logs(
        self,
        limit: Any = DEFAULT_LIMIT,
        status: Optional[Union[CollectionStatus, str]] = None,
        symbol: Optional[str] = None
    ) -> List[CollectionLogEntry]:
        """
        Most recent log entries, newest first.

        Args:
            limit: Maximum rows (sanitized, default 100)
            status: Only entries with this status
            symbol: Only entries for this symbol
        """
        query = select(collection_logs)
        if status is not None:
            query = query.where(collection_logs.c.status == CollectionStatus(status).value)
        if symbol:
            query = query.where(collection_logs.c.symbol == symbol.upper())
        query = (
            query.order_by(collection_logs.c.collected_at.desc(), collection_logs.c.id.desc())
            .limit(sanitize_limit(limit, self.DEFAULT_LIMIT))
        )

        async with self.database.transaction() as conn:
            rows = (await conn.execute(query)).mappings().all()

        return [
            CollectionLogEntry(
                id=row["id"],
                symbol=row["symbol"],
                status=row["status"],
                message=row["message"] or "",
                error_details=row["error_details"],
                execution_time=row["execution_time"],
                collected_at=row["collected_at"],
            )
            for row in rows
        ]

    async def get_error_logs(self, symbol: Optional[str] = None, limit: Any = DEFAULT_ERROR_LIMIT) -> List[CollectionLogEntry]:
        """Most recent error entries, optionally for one symbol."""
        return await self.get_recent_logs(
            limit=sanitize_limit(limit, self.DEFAULT_ERROR_LIMIT),
            status=CollectionStatus.ERROR,
            symbol=symbol
        )


class CoinsRepository:
    """Coin reference data."""

    def __init__(self, database: Database):
        self.database = database

    async def get_all(self) -> List[dict]:
        async with self.database.transaction() as conn:
            rows = (await conn.execute(select(coins).order_by(coins.c.symbol))).mappings().all()
        return [dict(row) for row in rows]

    async def add_coin(self, symbol: str, name: str) -> bool:
        """Insert a coin unless the symbol exists. Returns True if inserted."""
        symbol = symbol.upper()
        async with self.database.transaction() as conn:
            exists = await conn.scalar(select(func.count()).select_from(coins).where(coins.c.symbol == symbol))
            if exists:
                return False
            await conn.execute(
                coins.insert().values(symbol=symbol, name=name, is_active=True, created_at=current_utc_datetime())
            )
        return True


class SystemConfigRepository:
    """Key/value configuration pairs (upserted)."""

    def __init__(self, database: Database):
        self.database = database

    async def get(self, key: str) -> Optional[str]:
        async with self.database.transaction() as conn:
            return await conn.scalar(
                select(system_config.c.config_value).where(system_config.c.config_key == key)
            )

    async def set(self, key: str, value: str, description: Optional[str] = None) -> None:
        """Insert or update a key; an omitted description keeps the stored one."""
        now = current_utc_datetime()
        async with self.database.transaction() as conn:
            row = (
                await conn.execute(select(system_config).where(system_config.c.config_key == key))
            ).mappings().first()

            if row is None:
                await conn.execute(
                    system_config.insert().values(
                        config_key=key, config_value=value, description=description, updated_at=now
                    )
                )
            else:
                await conn.execute(
                    system_config.update()
                    .where(system_config.c.config_key == key)
                    .values(
                        config_value=value,
                        description=description if description is not None else row["description"],
                        updated_at=now,
                    )
                )

    async def get_all(self) -> List[dict]:
        async with self.database.transaction() as conn:
            rows = (
                await conn.execute(select(system_config).order_by(system_config.c.config_key))
            ).mappings().all()
        return [dict(row) for row in rows]
