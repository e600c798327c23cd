"""heartbeat-collector - register heartbeats, check liveness.

Modules:
    - store: durable heartbeat records (SQLite) plus an in-memory test store
    - service: recording and evaluating heartbeats under one freshness model
    - config: YAML + environment settings
    - web: read-only and write-capable FastAPI apps
    - runner: both listeners in one process with graceful shutdown
    - cli: typer command line
"""

__version__ = "0.1.0"
