"""
Test Suite

Contains unit tests for the collector.

Structure:
- tests/unit/: Tests for individual components (config, API client,
  storage, collector, health, HTTP API, CLI)

HTTP calls are mocked; storage tests run against a temporary SQLite file.
Uses pytest with pytest-asyncio for testing async functionality.
"""
