# lanwatch/device_names.py
"""
Device-name hint store.

Operator-supplied IP → name/MAC mapping that takes priority over every
automatic resolution method. Seeded once at startup from a semicolon
delimited file:

    ordinal;ip;name;mac
    21;192.168.1.21;HUB-BLUESOUND;90:56:82:AA:BB:CC

or, when no file is configured, from the network_device_mapping table.
Once loaded the store is read-only, so worker threads read it without
locking.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceNameHint:
    ip_address: str
    name: str
    mac_address: Optional[str] = None
    ordinal: Optional[int] = None


def parse_hint_line(line: str) -> Optional[DeviceNameHint]:
    """Parse one `ordinal;ip;name;mac` row. Returns None for headers and malformed rows."""
    parts = [p.strip() for p in line.strip().lstrip("\ufeff").split(";")]
    if len(parts) < 3:
        return None

    ordinal_raw, ip, name = parts[0], parts[1], parts[2]
    mac = parts[3] if len(parts) > 3 and parts[3] else None

    if not name:
        return None
    try:
        ipaddress.IPv4Address(ip)
    except ValueError:
        return None

    ordinal: Optional[int]
    try:
        ordinal = int(ordinal_raw) if ordinal_raw else None
    except ValueError:
        return None

    return DeviceNameHint(ip_address=ip, name=name, mac_address=mac, ordinal=ordinal)


class DeviceNameStore:
    """Immutable-after-load lookup of DeviceNameHint by IP address."""

    def __init__(self, hints: Iterable[DeviceNameHint] = ()):
        entries: Dict[str, DeviceNameHint] = {}
        for hint in hints:
            entries[hint.ip_address] = hint
        self._entries: Mapping[str, DeviceNameHint] = MappingProxyType(entries)

    def get(self, ip_address: str) -> Optional[DeviceNameHint]:
        return self._entries.get(ip_address)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ip_address: str) -> bool:
        return ip_address in self._entries

    def __iter__(self):
        return iter(self._entries.values())

    @property
    def is_loaded(self) -> bool:
        return bool(self._entries)

    # -----------------------------------------------------------------
    # Loading
    # -----------------------------------------------------------------

    @classmethod
    def from_file(cls, path: str | Path) -> "DeviceNameStore":
        hints = []
        skipped = 0
        with open(path, encoding="utf-8-sig") as fh:
            for line in fh:
                if not line.strip():
                    continue
                hint = parse_hint_line(line)
                if hint is None:
                    skipped += 1
                    continue
                hints.append(hint)

        logger.info(f"Loaded {len(hints)} device name hints from {path} ({skipped} rows skipped)")
        return cls(hints)

    @classmethod
    def from_database(cls, session) -> "DeviceNameStore":
        from lanwatch.models import NetworkDeviceMapping

        rows = session.query(NetworkDeviceMapping).all()
        hints = [
            DeviceNameHint(
                ip_address=r.ip_address,
                name=r.device_name,
                mac_address=r.mac_address,
                ordinal=r.device_number,
            )
            for r in rows
            if r.ip_address and r.device_name
        ]
        logger.info(f"Loaded {len(hints)} device name hints from database")
        return cls(hints)

    def save_to_database(self, session) -> int:
        """Upsert every hint into network_device_mapping. Returns rows written."""
        from lanwatch.models import NetworkDeviceMapping

        existing = {
            r.ip_address: r for r in session.query(NetworkDeviceMapping).all()
        }
        written = 0
        for hint in self:
            row = existing.get(hint.ip_address)
            if row is None:
                row = NetworkDeviceMapping(ip_address=hint.ip_address)
                session.add(row)
            row.device_name = hint.name
            row.mac_address = hint.mac_address
            row.device_number = hint.ordinal
            written += 1
        session.commit()
        return written


def ensure_loaded(
    store: Optional[DeviceNameStore],
    path: Optional[str] = None,
    session=None,
) -> DeviceNameStore:
    """
    Return a populated store, loading it at most once.

    An already populated store is returned as-is. Otherwise the hint file is
    read (and mirrored into the database when a session is given); without a
    file the database cache is used. A missing or unreadable file yields an
    empty store rather than an error.
    """
    if store is not None and store.is_loaded:
        return store

    if path:
        try:
            loaded = DeviceNameStore.from_file(path)
        except OSError as e:
            logger.warning(f"Device name hints file {path} unreadable: {e}")
            loaded = DeviceNameStore()
        if session is not None and loaded.is_loaded:
            loaded.save_to_database(session)
        if loaded.is_loaded:
            return loaded

    if session is not None:
        return DeviceNameStore.from_database(session)

    return store if store is not None else DeviceNameStore()
