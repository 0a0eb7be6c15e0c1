"""
Database Tables

SQLAlchemy Core metadata for the four collector tables:

    coins            - coin reference data (symbol, name, active flag)
    price_data       - one row per PriceObservation, indexed by (symbol, collected_at)
    collection_logs  - one row per poll attempt, indexed by (symbol, status) and collected_at
    system_config    - key/value configuration pairs

The collection core only appends to price_data and collection_logs and reads
them back. Prices are stored as NUMERIC and returned as float.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)

metadata = MetaData()


def _price_column(name: str) -> Column:
    return Column(name, Numeric(30, 10, asdecimal=False), nullable=True)


coins = Table(
    "coins",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("symbol", String(10), nullable=False, unique=True),
    Column("name", String(100), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=True),
)


price_data = Table(
    "price_data",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("symbol", String(10), nullable=False),
    _price_column("opening_price"),
    _price_column("closing_price"),
    _price_column("min_price"),
    _price_column("max_price"),
    _price_column("units_traded"),
    _price_column("acc_trade_value"),
    _price_column("prev_closing_price"),
    _price_column("units_traded_24h"),
    _price_column("acc_trade_value_24h"),
    _price_column("fluctate_24h"),
    _price_column("fluctate_rate_24h"),
    Column("collected_at", DateTime(timezone=True), nullable=False),
    Index("idx_price_data_symbol_time", "symbol", "collected_at"),
)


collection_logs = Table(
    "collection_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("symbol", String(10), nullable=False),
    Column("status", String(16), nullable=False),
    Column("message", Text, nullable=True),
    Column("error_details", JSON, nullable=True),
    Column("execution_time", Integer, nullable=True),
    Column("collected_at", DateTime(timezone=True), nullable=False),
    Index("idx_collection_logs_symbol_status", "symbol", "status"),
    Index("idx_collection_logs_time", "collected_at"),
)


system_config = Table(
    "system_config",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("config_key", String(100), nullable=False, unique=True),
    Column("config_value", Text, nullable=True),
    Column("description", String(255), nullable=True),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)


# Seed rows for the coins table (db-setup)
DEFAULT_COINS = (
    ("BTC", "Bitcoin"),
    ("ETH", "Ethereum"),
    ("XRP", "Ripple"),
    ("ADA", "Cardano"),
    ("DOT", "Polkadot"),
    ("SOL", "Solana"),
    ("DOGE", "Dogecoin"),
)
