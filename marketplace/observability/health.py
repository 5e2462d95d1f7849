from __future__ import annotations

import time
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from marketplace.database import engine


def check_database_health() -> Dict[str, Any]:
    """Attempt a lightweight DB query to ensure connectivity."""
    started = time.perf_counter()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return {"status": "DOWN", "detail": str(exc)}
    latency_ms = (time.perf_counter() - started) * 1000
    return {"status": "UP", "latency_ms": round(latency_ms, 2)}
