"""
Services Package

Long-running and on-demand services built on top of the exchange client and
storage layers:
- collector.py: DataCollector, the per-symbol scheduled collection loop
- health.py: HealthReporter, API/database/scheduler health summary
"""
