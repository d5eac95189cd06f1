"""
FastAPI status service for the profile monitor.

Provides:
- GET /health - Liveness, database probe and monitor status
- GET /status - Monitor status snapshot
- POST /circuits/{handle}/reset, POST /circuits/reset - Manual breaker overrides
"""

from src.api.app import create_app

__all__ = ["create_app"]
