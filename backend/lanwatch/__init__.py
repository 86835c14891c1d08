# lanwatch/__init__.py
"""
Scanner factory.

Reads configuration from the environment, sets up logging and the database,
loads the device-name hints once, and returns a ready ScanOrchestrator.

Environment:
    LANWATCH_ENV                  development (DEBUG logs) / production (INFO)
    LANWATCH_DATABASE_URI         SQLAlchemy URI, default sqlite:///lanwatch.db
    LANWATCH_DEVICE_HINTS_FILE    ordinal;ip;name;mac file, optional
    LANWATCH_PROBE_METHOD         tcp (default) or icmp
    LANWATCH_MAC_VENDOR_API_URL   default https://api.macvendors.com, empty disables
    LANWATCH_SCHEDULER_ENABLED    true/false, default false
    LANWATCH_SCHEDULER_CRON       default "0 */10 * * * ?"
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from .device_names import DeviceNameStore, ensure_loaded
from .extensions import Session, init_db
from .scanner import ScanOrchestrator
from .scanner.engines import HostProber, IdentityResolver, VendorLookup

logger = logging.getLogger(__name__)


def _is_production(config: Dict[str, Any]) -> bool:
    return str(config.get("ENV", "")).lower() == "production"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def load_config() -> Dict[str, Any]:
    return {
        "ENV": os.getenv("LANWATCH_ENV", "development"),
        "DATABASE_URI": os.getenv("LANWATCH_DATABASE_URI", "sqlite:///lanwatch.db"),
        "DEVICE_HINTS_FILE": os.getenv("LANWATCH_DEVICE_HINTS_FILE") or None,
        "PROBE_METHOD": os.getenv("LANWATCH_PROBE_METHOD", "tcp"),
        "MAC_VENDOR_API_URL": os.getenv("LANWATCH_MAC_VENDOR_API_URL", "https://api.macvendors.com") or None,
        "SCHEDULER_ENABLED": _env_flag("LANWATCH_SCHEDULER_ENABLED"),
        "SCHEDULER_CRON": os.getenv("LANWATCH_SCHEDULER_CRON", "0 */10 * * * ?"),
    }


def configure_logging(production: bool = False):
    if production:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    # Quieten noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def create_scanner(
    config: Optional[Dict[str, Any]] = None,
    store: Optional[DeviceNameStore] = None,
) -> ScanOrchestrator:
    cfg = load_config()
    if config:
        cfg.update(config)

    configure_logging(_is_production(cfg))

    init_db(cfg["DATABASE_URI"])
    session = Session()
    try:
        store = ensure_loaded(store, cfg.get("DEVICE_HINTS_FILE"), session)
        vendors = VendorLookup.from_database(session, api_url=cfg.get("MAC_VENDOR_API_URL"))
    finally:
        Session.remove()

    orchestrator = ScanOrchestrator(
        store=store,
        prober=HostProber(method=cfg["PROBE_METHOD"]),
        identity=IdentityResolver(store=store, vendors=vendors),
    )
    orchestrator.config = cfg
    logger.info(f"Scanner ready: {len(store)} device name hints, probe={cfg['PROBE_METHOD']}")

    if cfg.get("SCHEDULER_ENABLED"):
        from .scheduler import init_scheduler
        init_scheduler(orchestrator, cron=cfg["SCHEDULER_CRON"])

    return orchestrator
