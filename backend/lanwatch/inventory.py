# lanwatch/inventory.py
"""
What the database knows about the network, and what a scan adds to it.

    known_mac_addresses()   MACs already listed in network_device_mapping
    find_new_devices()      scan results whose MAC isn't known yet
    save_new_devices()      append those to new_device_history
    save_learned_vendors()  persist OUIs the vendor API resolved during a scan

Nothing here runs while a scan is in flight: the scan reads frozen copies
of these tables and the results are written back afterwards.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set

from lanwatch.models import MacVendorMapping, NetworkDeviceMapping, NewDeviceHistory
from lanwatch.scanner.base import DeviceRecord
from lanwatch.scanner.engines.vendor_lookup import normalize_mac, oui_of

logger = logging.getLogger(__name__)


def format_mac(mac: Optional[str]) -> Optional[str]:
    """Display form of a MAC, or the input unchanged if it can't be parsed."""
    return normalize_mac(mac) or mac


def known_mac_addresses(session) -> Set[str]:
    rows = session.query(NetworkDeviceMapping.mac_address).all()
    known = set()
    for (mac,) in rows:
        normalized = normalize_mac(mac)
        if normalized:
            known.add(normalized)
    return known


def find_new_devices(records: Iterable[DeviceRecord], known_macs: Set[str]) -> List[DeviceRecord]:
    """Records with a MAC that isn't in `known_macs`. Devices without a MAC are never new."""
    new_devices = []
    seen: Set[str] = set()
    for record in records:
        mac = normalize_mac(record.mac_address)
        if not mac or mac in known_macs or mac in seen:
            continue
        seen.add(mac)
        new_devices.append(record)
    return new_devices


def save_new_devices(session, records: Iterable[DeviceRecord]) -> int:
    count = 0
    for record in records:
        session.add(NewDeviceHistory(
            ip_address=record.ip_address,
            hostname=record.hostname,
            mac_address=normalize_mac(record.mac_address),
            vendor=record.vendor,
            device_type=record.device_type,
            os=record.os_guess,
            open_ports=",".join(str(p) for p in record.open_ports) or None,
            detection_date=record.discovered_at.replace(tzinfo=None),
        ))
        count += 1
    session.commit()
    if count:
        logger.info(f"Saved {count} new devices to history")
    return count


def save_learned_vendors(session, records: Iterable[DeviceRecord]) -> int:
    """Upsert vendors that came from the web API into mac_vendor_mapping."""
    learned = {}
    for record in records:
        if record.vendor_source != "api" or not record.vendor:
            continue
        oui = oui_of(record.mac_address)
        if oui:
            learned[oui] = record.vendor

    if not learned:
        return 0

    existing = {
        r.oui: r
        for r in session.query(MacVendorMapping).filter(MacVendorMapping.oui.in_(list(learned))).all()
    }
    for oui, vendor in learned.items():
        row = existing.get(oui)
        if row is None:
            session.add(MacVendorMapping(oui=oui, vendor=vendor))
        elif row.vendor != vendor:
            row.vendor = vendor
    session.commit()
    logger.debug(f"Cached {len(learned)} OUI vendors from the vendor API")
    return len(learned)
