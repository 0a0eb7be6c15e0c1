"""
Storage Package

Handles data persistence for the collector.

Modules:
- database.py: Database (async engine / connection pool lifecycle, scoped transactions)
- tables.py: SQLAlchemy Core table definitions
- repositories.py: Price observation, collection log, coin and config repositories

Any SQLAlchemy async URL works (sqlite+aiosqlite by default,
postgresql+asyncpg with the "postgres" extra).
"""

from storage.database import Database
from storage.repositories import (
    CoinsRepository,
    CollectionLogRepository,
    PriceDataRepository,
    SystemConfigRepository,
    sanitize_limit,
)

__all__ = [
    "Database",
    "PriceDataRepository",
    "CollectionLogRepository",
    "CoinsRepository",
    "SystemConfigRepository",
    "sanitize_limit",
]
