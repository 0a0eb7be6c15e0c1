"""
Bithumb Exchange Connector

Bithumb is a Korean spot exchange whose public REST API quotes every coin
against KRW. The collector only needs its public market-data endpoints:

Endpoints Used:
    - GET /public/ticker/{SYMBOL}_KRW             - Ticker for one coin
    - GET /public/ticker/ALL_KRW                  - Tickers for every coin (+ "date" key)
    - GET /public/orderbook/{SYMBOL}_KRW          - Order book snapshot
    - GET /public/transaction_history/{SYMBOL}_KRW - Recent trades
    - GET /public/candlestick/{SYMBOL}_KRW/{interval} - Candlesticks

Every response is a JSON envelope {"status": "0000", "data": {...}}; any other
status is an application-level failure even when the HTTP status is 200.
"""

from .api_client import BithumbAPIClient

__all__ = ["BithumbAPIClient"]
