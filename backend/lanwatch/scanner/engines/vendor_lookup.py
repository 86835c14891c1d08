# lanwatch/scanner/engines/vendor_lookup.py
"""
MAC address → vendor lookup.

Sources, first hit wins:
    1. Static OUI table below (common consumer/enterprise vendors)
    2. OUIs cached in mac_vendor_mapping, loaded before the scan starts
    3. macvendors.com style web API: GET {api_url}/{oui} -> plain-text name

Both tables are frozen for the duration of a scan. Vendors learned from the
API travel on the DeviceRecord (vendor_source="api") and are written to the
database after the scan by lanwatch.inventory.save_learned_vendors().
"""

from __future__ import annotations

import logging
import re
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

UNKNOWN_VENDOR = "Unknown"

DEFAULT_API_URL = "https://api.macvendors.com"
API_TIMEOUT = 3.0
USER_AGENT = "lanwatch/0.1"

# macOS arp drops leading zeros: 0:c:29:1:2:3
MAC_RE = re.compile(r"(?<![0-9A-Fa-f:-])([0-9A-Fa-f]{1,2}[:-]){5}[0-9A-Fa-f]{1,2}(?![0-9A-Fa-f:-])")

STATIC_OUI_VENDORS: Dict[str, str] = {
    # Apple
    "00:25:00": "Apple", "00:26:BB": "Apple", "00:23:DF": "Apple", "00:1E:C2": "Apple",
    "04:0C:CE": "Apple", "08:66:98": "Apple", "0C:74:C2": "Apple", "10:DD:B1": "Apple",
    "14:10:9F": "Apple", "18:65:90": "Apple", "20:78:F0": "Apple", "F0:18:98": "Apple",
    # Cisco
    "00:00:0C": "Cisco", "00:01:42": "Cisco", "00:01:43": "Cisco", "00:01:63": "Cisco",
    # Huawei
    "00:E0:FC": "Huawei", "00:1E:10": "Huawei", "00:46:4B": "Huawei", "00:46:4C": "Huawei",
    # Samsung
    "00:12:FB": "Samsung", "00:15:99": "Samsung", "00:16:6B": "Samsung", "00:1E:7D": "Samsung",
    # Intel
    "00:1B:21": "Intel", "00:1E:67": "Intel", "00:1E:C7": "Intel", "00:21:6A": "Intel",
    # Microsoft
    "00:15:5D": "Microsoft", "00:50:F2": "Microsoft", "00:03:FF": "Microsoft", "00:0D:3A": "Microsoft",
    # TP-Link
    "00:27:19": "TP-Link", "00:50:43": "TP-Link", "1C:FA:68": "TP-Link", "50:C7:BF": "TP-Link",
    # Virtual machines
    "00:0C:29": "VMware", "00:50:56": "VMware", "00:1C:14": "VMware", "00:05:69": "VMware",
    "08:00:27": "VirtualBox",
}


def normalize_mac(mac: Optional[str]) -> Optional[str]:
    """'aa-bb-cc-dd-ee-ff' -> 'AA:BB:CC:DD:EE:FF'. None if it isn't a MAC."""
    if not mac:
        return None
    m = MAC_RE.search(mac)
    if not m:
        return None
    octets = re.split(r"[:-]", m.group(0))
    return ":".join(o.zfill(2) for o in octets).upper()


def oui_of(mac: Optional[str]) -> Optional[str]:
    """First three octets formatted XX:XX:XX."""
    normalized = normalize_mac(mac)
    if not normalized:
        return None
    return normalized[:8]


class VendorLookup:

    def __init__(
        self,
        cached: Optional[Mapping[str, str]] = None,
        api_url: Optional[str] = DEFAULT_API_URL,
        api_timeout: float = API_TIMEOUT,
    ):
        self._static: Mapping[str, str] = MappingProxyType(dict(STATIC_OUI_VENDORS))
        self._cached: Mapping[str, str] = MappingProxyType(
            {k.upper(): v for k, v in (cached or {}).items()}
        )
        self.api_url = api_url.rstrip("/") if api_url else None
        self.api_timeout = api_timeout

    @classmethod
    def from_database(cls, session, **kwargs) -> "VendorLookup":
        from lanwatch.models import MacVendorMapping

        cached = {r.oui: r.vendor for r in session.query(MacVendorMapping).all() if r.oui and r.vendor}
        logger.debug(f"Loaded {len(cached)} cached OUI vendors")
        return cls(cached=cached, **kwargs)

    def lookup(self, mac: Optional[str], use_api: bool = False) -> Tuple[str, Optional[str]]:
        """
        Resolve a vendor name.

        Returns (vendor, source) where source is "local", "database", "api",
        or None when nothing matched and vendor is "Unknown".
        """
        oui = oui_of(mac)
        if not oui:
            return UNKNOWN_VENDOR, None

        vendor = self._static.get(oui)
        if vendor:
            return vendor, "local"

        vendor = self._cached.get(oui)
        if vendor:
            return vendor, "database"

        if use_api and self.api_url:
            vendor = self._query_api(oui)
            if vendor:
                return vendor, "api"

        return UNKNOWN_VENDOR, None

    def _query_api(self, oui: str) -> Optional[str]:
        url = f"{self.api_url}/{oui.replace(':', '')}"
        try:
            resp = httpx.get(url, headers={"User-Agent": USER_AGENT}, timeout=self.api_timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Vendor API request for {oui} failed: {e}")
            return None

        if resp.status_code != 200:
            # 404 is the API's "unknown OUI", 429 its rate limit
            return None
        vendor = resp.text.strip()
        if not vendor or vendor.lower() == "not found" or vendor.startswith("{"):
            return None
        return vendor[:255]
