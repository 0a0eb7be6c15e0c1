"""
Normalized Data Schemas

This module defines Pydantic models for everything the collector produces,
persists or reports.

Models:
    - PriceObservation: One normalized ticker snapshot for one symbol
    - CollectionLogEntry: Outcome record for one poll attempt
    - CollectionOutcome: Per-symbol result of a one-shot batch collection
    - CollectionStatsSnapshot: Point-in-time view of the scheduler statistics
    - HealthReport: Result of the API/database/scheduler health check

Key Principle:
    Upstream values arrive as strings. A field that cannot be parsed is stored
    as None ("unknown"), never as a fabricated zero, so every numeric field of
    PriceObservation is Optional.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from core.utils.time import ensure_utc


# ============================================
# Collection Status
# ============================================

class CollectionStatus(str, Enum):
    """Outcome of a single collection attempt."""

    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


# ============================================
# Price Observation Schema
# ============================================

# Numeric ticker fields, in the order the price_data table stores them
PRICE_FIELDS = (
    "opening_price",
    "closing_price",
    "min_price",
    "max_price",
    "units_traded",
    "acc_trade_value",
    "prev_closing_price",
    "units_traded_24h",
    "acc_trade_value_24h",
    "fluctate_24h",
    "fluctate_rate_24h",
)


class PriceObservation(BaseModel):
    """
    Price Observation Data Model

    One polled ticker snapshot for one symbol. Built by the exchange client's
    normalization step, persisted once by PriceDataRepository and never
    mutated afterwards (the model is frozen).

    Attributes:
        symbol: Exchange ticker (e.g., "BTC"), always present and uppercase
        opening_price: Opening price of the current day
        closing_price: Latest traded price
        min_price: Lowest price of the current day
        max_price: Highest price of the current day
        units_traded: Volume traded in the current day
        acc_trade_value: Cumulative traded value in the current day
        prev_closing_price: Previous day's closing price
        units_traded_24h: Rolling 24h volume
        acc_trade_value_24h: Rolling 24h traded value
        fluctate_24h: Rolling 24h price change
        fluctate_rate_24h: Rolling 24h price change rate (percent)
        collected_at: Assigned when the observation is inserted
        id: Database row id (set on rows read back from storage)

    Example:
        >>> obs = PriceObservation(symbol="btc", closing_price=95000000.0)
        >>> obs.symbol
        'BTC'
        >>> obs.opening_price is None
        True
    """

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(
        ...,
        min_length=1,
        description="Exchange ticker symbol in uppercase",
        examples=["BTC", "ETH", "XRP"]
    )

    opening_price: Optional[float] = Field(None, description="Opening price")
    closing_price: Optional[float] = Field(None, description="Latest/closing price")
    min_price: Optional[float] = Field(None, description="Lowest price")
    max_price: Optional[float] = Field(None, description="Highest price")
    units_traded: Optional[float] = Field(None, description="Units traded")
    acc_trade_value: Optional[float] = Field(None, description="Accumulated trade value")
    prev_closing_price: Optional[float] = Field(None, description="Previous closing price")
    units_traded_24h: Optional[float] = Field(None, description="Units traded (24h)")
    acc_trade_value_24h: Optional[float] = Field(None, description="Accumulated trade value (24h)")
    fluctate_24h: Optional[float] = Field(None, description="Price change (24h)")
    fluctate_rate_24h: Optional[float] = Field(None, description="Price change rate (24h, %)")

    collected_at: Optional[datetime] = Field(None, description="Collection timestamp in UTC")
    id: Optional[int] = Field(None, description="Database row id")

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Ensure symbol is trimmed, uppercase and non-empty"""
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be empty")
        return v

    @field_validator("collected_at")
    @classmethod
    def validate_collected_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Normalize timestamps to timezone-aware UTC"""
        return ensure_utc(v)

    def price_values(self) -> Dict[str, Optional[float]]:
        """Numeric fields only, keyed by column name."""
        return {name: getattr(self, name) for name in PRICE_FIELDS}


# ============================================
# Collection Log Schema
# ============================================

class CollectionLogEntry(BaseModel):
    """
    Collection Log Entry

    Outcome record for one poll attempt. Written by the scheduler exactly once
    per attempt, right after the attempt concludes. Append-only.

    Attributes:
        symbol: Symbol the attempt was for
        status: success / error / warning
        message: Human-readable summary
        error_details: Structured failure detail (message, type, traceback)
        execution_time: Attempt duration in milliseconds
        collected_at: Assigned when the entry is inserted
        id: Database row id (set on rows read back from storage)
    """

    symbol: str = Field(..., min_length=1)
    status: CollectionStatus
    message: str = ""
    error_details: Optional[Dict[str, Any]] = None
    execution_time: Optional[int] = Field(None, ge=0, description="Duration in milliseconds")
    collected_at: Optional[datetime] = None
    id: Optional[int] = None

    @field_validator("collected_at")
    @classmethod
    def validate_collected_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def is_success(self) -> bool:
        return self.status == CollectionStatus.SUCCESS


# ============================================
# Batch Collection Outcome
# ============================================

class CollectionOutcome(BaseModel):
    """Per-symbol result of DataCollector.collect_all_once()."""

    symbol: str
    status: CollectionStatus
    price: Optional[float] = Field(None, description="Closing price when the symbol was stored")
    error: Optional[str] = Field(None, description="Failure message when the symbol was not stored")


# ============================================
# Statistics & Health
# ============================================

class CollectionStatsSnapshot(BaseModel):
    """
    Point-in-time copy of the scheduler statistics.

    success_rate is a percentage rounded to two decimals, and 0 when no
    attempt has been made yet.
    """

    total_collections: int = 0
    successful_collections: int = 0
    failed_collections: int = 0
    success_rate: float = 0.0
    last_collection_time: Optional[datetime] = None
    start_time: datetime
    uptime_ms: int = 0
    active_symbols: List[str] = Field(default_factory=list)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total_collections": 8,
                "successful_collections": 7,
                "failed_collections": 1,
                "success_rate": 87.5,
                "last_collection_time": "2024-01-01T12:00:03Z",
                "start_time": "2024-01-01T12:00:00Z",
                "uptime_ms": 3500,
                "active_symbols": ["BTC", "ETH"]
            }
        }
    )


class HealthReport(BaseModel):
    """Result of HealthReporter.health_check()."""

    api_reachable: bool
    database_reachable: bool
    scheduler_running: bool
    stats: Optional[CollectionStatsSnapshot] = None
    error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.api_reachable and self.database_reachable
