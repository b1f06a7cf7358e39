"""
Polymarket Up/Down Market Maker

Entry point: python -m src.main

Key Modules:
- src.market_maker: Order book analysis, quoting, inventory, exits and the per-market trading cycle
- src.execution: Order tracking, fill reconciliation, paper trading and token merging
- src.clients: CLOB, Gamma, WebSocket and Polygon clients
- src.utils: Logging, rate limiting and locking helpers
"""
