"""
Lock Sweeper: periodic removal of expired entry locks.

Lock expiry is already enforced lazily on every read, so this job only keeps
the ``entry_locks`` table tidy. Run it from cron, or with ``--loop``.

Typical cron schedule: */5 * * * *
"""

import asyncio
import logging
import os
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.database import build_engine
from ..services.entry_locking import EntryLockManager

logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
) -> None:
    """Log a sweep failure and, if configured, post it to ALERT_WEBHOOK_URL.

    Alert delivery problems are logged and otherwise ignored.
    """
    log_message = f"[SWEEP ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    alert_webhook_url = os.getenv("ALERT_WEBHOOK_URL")
    if alert_webhook_url:
        try:
            await _send_webhook_alert(alert_webhook_url, title, message, severity, details)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook alert: {e}")


async def _send_webhook_alert(
    webhook_url: str,
    title: str,
    message: str,
    severity: str,
    details: dict | None,
) -> None:
    """Send alert to generic webhook endpoint."""
    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "advisory-tracker-lock-sweeper",
        "details": details or {},
    }

    async with httpx.AsyncClient() as client:
        await client.post(webhook_url, json=payload, timeout=10)


async def run_lock_sweep(database_url: str | None = None) -> dict[str, Any]:
    """Delete expired locks in one transaction and return a summary."""
    start_time = datetime.now(timezone.utc)
    config = Settings(database_url=database_url) if database_url else get_settings()

    engine = build_engine(config)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "released": 0,
    }

    try:
        async with session_factory() as session:
            async with session.begin():
                manager = EntryLockManager(session)
                results["released"] = await manager.release_expired_locks()

    except Exception as e:
        logger.error(f"Lock sweep failed: {e}")
        await send_alert(
            title="Lock Sweep Failed",
            message="The expired-lock sweep crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": results["started_at"],
            },
        )
        raise

    finally:
        await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Lock sweep completed in {results['duration_seconds']:.2f}s: "
        f"{results['released']} expired locks released"
    )
    return results


async def run_forever(database_url: str | None, interval: int) -> None:
    while True:
        try:
            await run_lock_sweep(database_url)
        except Exception:
            # Already logged and alerted; keep sweeping
            pass
        await asyncio.sleep(interval)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the lock sweeper."""
    import argparse

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Release expired entry locks")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="Database connection string (defaults to settings)",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running, sweeping every --interval seconds",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.lock_sweep_interval_seconds,
        help="Seconds between sweeps in --loop mode",
    )

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.loop:
            asyncio.run(run_forever(args.database_url, args.interval))
        else:
            results = asyncio.run(run_lock_sweep(args.database_url))
            print(f"Sweep completed: {results}")
    except KeyboardInterrupt:
        pass
    except Exception as e:
        print(f"Sweep failed: {e}")
        exit(1)


if __name__ == "__main__":
    main()
