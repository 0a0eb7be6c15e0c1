"""
Application Package

Entry points of the collector:
- app.main: FastAPI status API that runs the collector in its lifespan
- app.cli: coin-collector command-line interface
"""
