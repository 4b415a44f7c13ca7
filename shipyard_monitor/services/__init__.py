"""Business-logic layer (MongoDB-backed apps, metrics, health checks, alerts and events).

Collection pipeline services live in:
- collector.py (orchestrator + background loop)
- metrics_sampler.py, health_prober.py, alerts_engine.py, events_service.py (per-app stages)
"""

# Import side-effects are intentionally avoided here; modules are imported by routers/services as needed.
