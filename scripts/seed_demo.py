"""Seed the local SQLite incident store with demo services and metrics.

Usage:
    STORE_DB_PATH=warroom.db python -m scripts.seed_demo
    # or via Makefile:
    make seed
"""

import asyncio
import logging
import random
import sys
from datetime import UTC, datetime, timedelta

from warroom.config import get_settings
from warroom.incidents.operations import get_or_create_service
from warroom.store.sqlite import SqliteIncidentStore

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

DEMO_SERVICES = {
    "payment-service": (120.0, 99.95),
    "auth-service": (45.0, 99.99),
    "postgres-primary": (8.0, 99.999),
    "frontend-cdn": (22.0, 99.98),
}


async def seed(db_path: str) -> None:
    store = SqliteIncidentStore(db_path)
    try:
        now = datetime.now(UTC)
        for name, (latency_ms, uptime) in DEMO_SERVICES.items():
            service = await get_or_create_service(store, name)
            await store.update(
                "services",
                {"id": service.id},
                {"status": "healthy", "latency_ms": latency_ms, "uptime_percent": uptime},
            )
            await store.insert_many(
                "metrics",
                [
                    {
                        "service_id": service.id,
                        "metric_type": "latency_ms",
                        "value": round(latency_ms * random.uniform(0.8, 1.2), 1),
                        "timestamp": (now - timedelta(minutes=10 - i)).isoformat(),
                    }
                    for i in range(10)
                ],
            )
            logger.info("Seeded %s", name)
    finally:
        await store.close()


def main() -> None:
    """Seed the store at STORE_DB_PATH."""
    db_path = get_settings().store_db_path
    if not db_path or db_path == ":memory:":
        logger.error("Set STORE_DB_PATH to a file path to seed")
        sys.exit(1)
    asyncio.run(seed(db_path))
    logger.info("Done! Demo services seeded into %s", db_path)


if __name__ == "__main__":
    main()
