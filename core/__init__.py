"""
Core Package

Contains the exchange-agnostic building blocks of the collector:
- Settings: pydantic-settings configuration loaded from the environment / .env
- Logging: the shared application logger and API trace helpers
- Schemas: Pydantic models for observations, collection log entries, statistics and health
- Exceptions: the ApiError / StorageError hierarchy used across layers
"""
