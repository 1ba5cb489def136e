from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from app.coordinator import AccessCoordinator

logger = logging.getLogger("oneshot.sweeper")


def sweep_expired(coordinator: AccessCoordinator, now: Optional[float] = None) -> int:
    """Run one sweep and return how many links this sweep deleted."""
    deleted = 0
    for link_id in coordinator.registry.scan_expired(now):
        try:
            if coordinator.discard(link_id, reason="swept"):
                deleted += 1
        except Exception as exc:
            logger.error("event=sweep_failure link_id=%s error=%s", link_id, exc)
    return deleted


def start_sweeper(coordinator, metrics, logger, interval_seconds: float) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()

    def _job():
        try:
            deleted = sweep_expired(coordinator)
            if deleted:
                logger.info(
                    "event=sweep_deleted count=%s total_deleted=%s",
                    deleted,
                    metrics.snapshot()["deleted"],
                )
        except Exception as e:
            logger.error("Unexpected error in sweep job: %s", str(e))

    scheduler.add_job(
        _job,
        "interval",
        seconds=interval_seconds,
        id="expiry-sweep",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("event=sweeper_started interval_seconds=%s", interval_seconds)
    return scheduler
