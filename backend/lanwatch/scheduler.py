# lanwatch/scheduler.py
"""
Background network watch.
────────────────────────
Uses APScheduler to run a streaming scan every N minutes. After each scan:

    - devices whose MAC isn't in network_device_mapping are logged and
      appended to new_device_history
    - vendors resolved through the MAC vendor API are cached

The interval comes from a cron expression (LANWATCH_SCHEDULER_CRON, e.g.
"0 */10 * * * ?"); only the "*/N" minute form is honoured, anything else
falls back to 10 minutes. Scans can be paused at runtime without stopping
the scheduler.

Setup:
    from lanwatch.scheduler import init_scheduler
    init_scheduler(orchestrator, cron="0 */10 * * * ?")
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from lanwatch.extensions import Session
from lanwatch.inventory import (
    find_new_devices,
    known_mac_addresses,
    save_learned_vendors,
    save_new_devices,
)
from lanwatch.scanner import ScanError, ScanOrchestrator, ScanRequest, ScanSummary

logger = logging.getLogger(__name__)

DEFAULT_CRON = "0 */10 * * * ?"
DEFAULT_INTERVAL_MINUTES = 10
JOB_ID = "network_watch"

_scheduler: BackgroundScheduler | None = None
_enabled = threading.Event()


def interval_from_cron(cron: Optional[str]) -> int:
    """
    Minutes between scans from the minute field of a cron expression.

    Six/seven-field (seconds first) and five-field expressions are both
    accepted. "*/15" -> 15; anything else -> 10.
    """
    if not cron:
        return DEFAULT_INTERVAL_MINUTES
    fields = cron.split()
    if len(fields) >= 6:
        minute = fields[1]
    elif len(fields) == 5:
        minute = fields[0]
    else:
        return DEFAULT_INTERVAL_MINUTES

    if minute.startswith("*/"):
        try:
            value = int(minute[2:])
        except ValueError:
            return DEFAULT_INTERVAL_MINUTES
        if value > 0:
            return value
    return DEFAULT_INTERVAL_MINUTES


def set_scheduler_enabled(enabled: bool):
    if enabled:
        _enabled.set()
    else:
        _enabled.clear()
    logger.info(f"Scheduled network scans {'enabled' if enabled else 'paused'}")


def is_scheduler_enabled() -> bool:
    return _enabled.is_set()


def record_scan_results(summary: ScanSummary) -> int:
    """Persist new devices and learned vendors. Returns the number of new devices."""
    session = Session()
    try:
        known = known_mac_addresses(session)
        new_devices = find_new_devices(summary.devices, known)
        for device in new_devices:
            logger.warning(
                f"New device on network: {device.ip_address} mac={device.mac_address} "
                f"vendor={device.vendor} type={device.device_type} name={device.hostname}"
            )
        save_new_devices(session, new_devices)
        save_learned_vendors(session, summary.devices)
        return len(new_devices)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to record scan results")
        return 0
    finally:
        Session.remove()


def run_scheduled_scan(orchestrator: ScanOrchestrator, request: Optional[ScanRequest] = None):
    """One scheduled tick."""
    if not is_scheduler_enabled():
        logger.debug("Scheduled scan skipped: scheduler paused")
        return

    request = request or ScanRequest.streaming()
    try:
        summary = orchestrator.run_streaming_scan(request, on_device=lambda *_: None)
    except ScanError as e:
        logger.error(f"Scheduled scan failed: {e}")
        return

    new_count = record_scan_results(summary)
    logger.info(
        f"Scheduled scan {summary.scan_id}: {summary.devices_found} devices, "
        f"{new_count} new, {summary.state.value}"
    )


def init_scheduler(
    orchestrator: ScanOrchestrator,
    cron: str = DEFAULT_CRON,
    enabled: bool = True,
    request: Optional[ScanRequest] = None,
) -> BackgroundScheduler | None:
    """Initialize and start the background scheduler."""
    global _scheduler

    if _scheduler is not None:
        logger.info("Scheduler already running")
        return _scheduler

    set_scheduler_enabled(enabled)
    minutes = interval_from_cron(cron)

    _scheduler = BackgroundScheduler(daemon=True)
    _scheduler.add_job(
        func=run_scheduled_scan,
        args=[orchestrator, request],
        trigger=IntervalTrigger(minutes=minutes),
        id=JOB_ID,
        name="Scan the local network",
        replace_existing=True,
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
    )

    _scheduler.start()
    logger.info(f"Background scheduler started (scanning every {minutes} min)")
    return _scheduler


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler stopped")
