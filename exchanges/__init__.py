"""
Exchange Connectors Package

Each exchange lives in its own subfolder with an api_client.py holding the
REST logic (HTTP requests, retry policy, payload normalization into
core.schemas models). Bithumb is the only exchange the collector polls.
"""
