"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- Validates all required settings
- Provides type-safe access to configuration values
- Converts the comma-separated symbol string to a list
- Handles optional settings with sensible defaults

Usage:
    from core.config import settings

    # Access configuration values
    print(settings.bithumb_api_url)
    print(settings.symbols_list)  # Returns a list of strings
"""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Application Settings

    This class defines all configuration parameters for the application.
    Values are automatically loaded from environment variables or .env file.

    Attributes:
        bithumb_api_url: Base URL for the Bithumb public REST API
        api_request_timeout: Timeout for a single HTTP attempt in milliseconds
        max_retries: Maximum attempts per upstream request
        retry_delay: Base delay for linear retry backoff in milliseconds
        database_url: SQLAlchemy async database URL
        db_pool_size: Maximum pooled connections for server databases
        db_pool_timeout: Seconds to wait for a pooled connection
        collect_symbols: Symbols polled by default (e.g., "BTC,ETH,XRP")
        collect_interval: Default polling interval in milliseconds
        shutdown_grace_period: Seconds in-flight ticks get to settle on shutdown
        app_host: Host address for the status API
        app_port: Port number for the status API
        environment: Current environment (development, production)
        debug: Enable debug mode with verbose logging
        log_level: Logging level for the coin_collector loggers
        log_file: Optional rotating log file next to stdout
    """

    # ============================================
    # Bithumb API Configuration
    # ============================================

    bithumb_api_url: str = Field(
        default="https://api.bithumb.com",
        description="Bithumb public API base URL"
    )

    api_request_timeout: int = Field(
        default=10_000,
        description="HTTP request timeout per attempt (milliseconds)"
    )

    max_retries: int = Field(
        default=3,
        description="Maximum attempts per upstream request"
    )

    retry_delay: int = Field(
        default=5_000,
        description="Base retry delay (milliseconds); the wait before retry N+1 is retry_delay * N"
    )

    # ============================================
    # Database Configuration
    # ============================================

    database_url: str = Field(
        default="sqlite+aiosqlite:///./bithumb_data.db",
        description="SQLAlchemy async database URL"
    )

    db_pool_size: int = Field(
        default=10,
        description="Maximum concurrent pooled connections (server databases only)"
    )

    db_pool_timeout: int = Field(
        default=60,
        description="Seconds to wait when acquiring a pooled connection"
    )

    db_echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )

    # ============================================
    # Collection Configuration
    # ============================================

    collect_symbols: str = Field(
        default="BTC,ETH,XRP",
        description="Comma-separated list of symbols to collect"
    )

    collect_interval: int = Field(
        default=60_000,
        description="Polling interval per symbol (milliseconds)"
    )

    shutdown_grace_period: float = Field(
        default=1.0,
        description="Seconds in-flight collections get to finish on shutdown"
    )

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="Status API host address"
    )

    app_port: int = Field(
        default=8000,
        description="Status API port"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    log_file: str = Field(
        default="",
        description="Also write logs to this file (e.g., logs/collector.log); empty = stdout only"
    )

    log_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Rotate log_file at this size (bytes)"
    )

    log_backup_count: int = Field(
        default=5,
        description="Rotated log files to keep"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        # Look for .env file in the project root
        env_file=".env",
        # Ignore extra fields in .env that aren't defined here
        extra="ignore",
        # Case-insensitive environment variable matching
        case_sensitive=False
    )

    # ============================================
    # Custom Properties
    # ============================================

    @property
    def symbols_list(self) -> List[str]:
        """
        Convert comma-separated symbols string to a list.

        Returns:
            List of symbol strings (e.g., ["BTC", "ETH", "XRP"])

        Example:
            >>> settings.symbols_list
            ['BTC', 'ETH', 'XRP']
        """
        return parse_symbols(self.collect_symbols)

    @property
    def is_sqlite(self) -> bool:
        """True when the configured database is SQLite (no connection pool sizing)."""
        return self.database_url.startswith("sqlite")

    def get_bithumb_headers(self) -> dict:
        """
        Get HTTP headers for Bithumb API requests.

        Returns:
            Dictionary of headers sent with every request
        """
        return {
            "Content-Type": "application/json",
            "User-Agent": "bithumb-coin-collector/1.0.0",
        }


def parse_symbols(raw: str) -> List[str]:
    """Split a comma-separated symbol string into trimmed, uppercase symbols."""
    return [s.strip().upper() for s in raw.split(",") if s.strip()]


# ============================================
# Global Settings Instance
# ============================================

# Create a single instance of settings to be imported throughout the application
settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings = None) -> None:
    """
    Validate critical configuration settings on application startup.

    Args:
        config: Settings to validate (defaults to the global instance)

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    # Import logger here to avoid circular import
    # (logging.py imports config.py, so we can't import at module level)
    from core.logging import logger

    config = config or settings

    if not config.bithumb_api_url.startswith("http"):
        raise ValueError(f"Invalid BITHUMB_API_URL: '{config.bithumb_api_url}'")

    if not config.symbols_list:
        raise ValueError("COLLECT_SYMBOLS must contain at least one symbol")

    for symbol in config.symbols_list:
        if not symbol.isalnum():
            raise ValueError(
                f"Symbol '{symbol}' must be alphanumeric. "
                f"Please update COLLECT_SYMBOLS in .env"
            )

    if config.collect_interval <= 0:
        raise ValueError(f"COLLECT_INTERVAL must be positive, got {config.collect_interval}")

    if config.max_retries < 1:
        raise ValueError(f"MAX_RETRIES must be at least 1, got {config.max_retries}")

    if config.retry_delay < 0:
        raise ValueError(f"RETRY_DELAY cannot be negative, got {config.retry_delay}")

    if config.api_request_timeout <= 0:
        raise ValueError(f"API_REQUEST_TIMEOUT must be positive, got {config.api_request_timeout}")

    if config.db_pool_size < 1:
        raise ValueError(f"DB_POOL_SIZE must be at least 1, got {config.db_pool_size}")

    if not (1 <= config.app_port <= 65535):
        raise ValueError(f"Invalid port number: {config.app_port}. Must be between 1 and 65535")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    # Log successful validation
    logger.info("Configuration validated successfully")
    logger.info(f"Tracking symbols: {', '.join(config.symbols_list)}")
    logger.info(f"Collection interval: {config.collect_interval}ms")
    logger.info(f"Bithumb API: {config.bithumb_api_url}")
    logger.info(f"Retries: {config.max_retries} (base delay {config.retry_delay}ms)")
    logger.info(f"Log level: {config.log_level.upper()}")
