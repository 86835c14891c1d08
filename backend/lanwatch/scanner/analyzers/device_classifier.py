# lanwatch/scanner/analyzers/device_classifier.py
"""
Device Classifier.

Guesses what kind of device a host is, and which OS family it runs, from
its open-port set alone. Hostname, MAC and vendor are deliberately not
consulted: the same ports always give the same answer.

Rules are first-match-wins and the order matters, e.g. {22, 80} is a
"Server" and never reaches the "Web Server" rule.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from lanwatch.scanner.base import BaseAnalyzer, HostContext

logger = logging.getLogger(__name__)

UNKNOWN_DEVICE = "Unknown Device"
NETWORK_DEVICE = "Network Device"


def classify_device_type(open_ports: Iterable[int]) -> str:
    ports = frozenset(open_ports)
    if not ports:
        return UNKNOWN_DEVICE

    web = 80 in ports or 443 in ports

    # Router/Gateway: admin web UI, no shell or desktop access
    if web and 22 not in ports and 3389 not in ports:
        if 80 in ports and 443 in ports:
            return "Router/Gateway"
        if 80 in ports and len(ports) <= 3:
            return "Router/Gateway"

    if 22 in ports and (3306 in ports or 5432 in ports):
        return "Server"
    if 22 in ports and 80 in ports:
        return "Server"

    if 445 in ports or 139 in ports:
        return "NAS/Storage" if web else "Windows PC"

    if 3389 in ports or (135 in ports and 445 in ports):
        return "Windows PC"

    if 80 in ports and len(ports) <= 2:
        return "IoT Device"

    if 9100 in ports or 515 in ports:
        return "Printer"

    if web or 8080 in ports:
        return "Web Server"

    if 22 in ports:
        return "Linux/Unix Server"

    return NETWORK_DEVICE


def identify_os(open_ports: Iterable[int]) -> Optional[str]:
    ports = frozenset(open_ports)
    if 3389 in ports:
        return "Windows (RDP detected)"
    if 22 in ports and 445 not in ports:
        return "Linux/Unix (SSH detected)"
    if 445 in ports or 139 in ports:
        return "Windows (SMB detected)"
    return None


def classify(open_ports: Iterable[int]) -> Tuple[str, Optional[str]]:
    """(device_type, os_guess) for an open-port set. Pure and order-independent."""
    ports = frozenset(open_ports)
    if not ports:
        return UNKNOWN_DEVICE, None
    return classify_device_type(ports), identify_os(ports)


def describe_capabilities(ip: str, open_ports: Iterable[int]) -> Dict[str, Any]:
    """Web UI URL, database engine, file sharing and remote access flags."""
    ports = frozenset(open_ports)

    web_url = None
    if 443 in ports:
        web_url = f"https://{ip}"
    elif 8080 in ports:
        web_url = f"http://{ip}:8080"
    elif 80 in ports:
        web_url = f"http://{ip}"

    database = None
    if 3306 in ports:
        database = "MySQL"
    elif 5432 in ports:
        database = "PostgreSQL"

    remote = None
    if 3389 in ports:
        remote = "RDP"
    elif 22 in ports:
        remote = "SSH"

    return {
        "web_url": web_url,
        "database_server": database,
        "file_sharing": 445 in ports or 139 in ports,
        "remote_access": remote,
    }


class DeviceClassifier(BaseAnalyzer):

    @property
    def name(self) -> str:
        return "device_classifier"

    def fallback(self) -> Dict[str, Any]:
        return {"device_type": NETWORK_DEVICE, "os_guess": None}

    def analyze(self, ctx: HostContext) -> Dict[str, Any]:
        device_type, os_guess = classify(ctx.open_ports)
        result: Dict[str, Any] = {"device_type": device_type, "os_guess": os_guess}
        result.update(describe_capabilities(ctx.ip_address, ctx.open_ports))
        return result
