# lanwatch/scanner/engines/identity_resolver.py
"""
Identity Resolver.

Best-effort hostname / MAC / vendor for a live host. Hostname sources in
priority order, first success wins:

    1. hint      operator-supplied device-name store (authoritative; when it
                 names the host, no DNS/NetBIOS/ARP query is made at all)
    2. dns       reverse (PTR) lookup via dnspython, socket fallback
    3. netbios   nmblookup -A / nbtstat -A, <00> unique name
    4. arp       name column of the local ARP cache

The MAC comes from the hint, otherwise from the ARP cache (same broadcast
domain only). Every step is optional: a miss just falls through.
"""

from __future__ import annotations

import logging
import platform
import re
import socket
import subprocess
from typing import Any, Callable, Dict, List, Optional, Tuple

from lanwatch.device_names import DeviceNameStore
from lanwatch.scanner.base import BaseEngine, EngineResult, HostContext
from lanwatch.scanner.engines.vendor_lookup import MAC_RE, VendorLookup, normalize_mac

logger = logging.getLogger(__name__)

DNS_TIMEOUT = 1.0
NETBIOS_TIMEOUT = 2.0
ARP_TIMEOUT = 1.0


def _is_windows() -> bool:
    return platform.system().lower() == "windows"


def _run(cmd: List[str], timeout: float) -> Optional[str]:
    try:
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            errors="ignore",
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.debug(f"{cmd[0]} failed: {e}")
        return None
    return proc.stdout or None


# ---------------------------------------------------------------------------
# Reverse DNS
# ---------------------------------------------------------------------------

def _query_ptr(ip: str, timeout: float) -> Optional[str]:
    """PTR lookup using dnspython."""
    import dns.exception
    import dns.resolver
    import dns.reversename

    try:
        rev_name = dns.reversename.from_address(ip)
        resolver = dns.resolver.Resolver()
        resolver.timeout = timeout
        resolver.lifetime = timeout
        answers = resolver.resolve(rev_name, "PTR")
    except dns.exception.DNSException:
        return None

    for rdata in answers:
        hostname = str(rdata).rstrip(".")
        if hostname:
            return hostname
    return None


def lookup_reverse_dns(ip: str, timeout: float = DNS_TIMEOUT) -> Optional[str]:
    hostname = _query_ptr(ip, timeout)
    if not hostname:
        # Fallback: system resolver (hosts file, mDNS, ...)
        try:
            hostname = socket.gethostbyaddr(ip)[0]
        except OSError:
            return None
    if not hostname or hostname == ip:
        return None
    return hostname


# ---------------------------------------------------------------------------
# NetBIOS
# ---------------------------------------------------------------------------

def parse_netbios_name(output: str) -> Optional[str]:
    """
    First <00> unique name in nbtstat/nmblookup output.

        nbtstat:    DESKTOP-01     <00>  UNIQUE      Registered
        nmblookup:  DESKTOP-01     <00> -         B <ACTIVE>
    Group names (workgroup/domain) are skipped.
    """
    for line in output.splitlines():
        if "<00>" not in line:
            continue
        if re.search(r"\bGROUP\b", line.upper()):
            continue
        name = line.strip().split()[0]
        if name and name != "<00>":
            return name
    return None


def lookup_netbios(ip: str, timeout: float = NETBIOS_TIMEOUT) -> Optional[str]:
    cmd = ["nbtstat", "-A", ip] if _is_windows() else ["nmblookup", "-A", ip]
    output = _run(cmd, timeout)
    if not output:
        return None
    return parse_netbios_name(output)


# ---------------------------------------------------------------------------
# ARP
# ---------------------------------------------------------------------------

def parse_arp_output(output: str, ip: str) -> Tuple[Optional[str], Optional[str]]:
    """
    (hostname, mac) from `arp -a <ip>` output.

        router.lan (192.168.1.1) at aa:bb:cc:dd:ee:ff [ether] on eth0   (Linux/macOS)
        ? (192.168.1.7) at 11:22:33:44:55:66 [ether] on eth0            (no name)
          192.168.1.1           aa-bb-cc-dd-ee-ff     dynamic           (Windows)
    """
    ip_token = re.compile(rf"(^|[\s(]){re.escape(ip)}($|[\s)])")
    for line in output.splitlines():
        if not ip_token.search(line):
            continue
        m = MAC_RE.search(line)
        mac = normalize_mac(m.group(0)) if m else None
        hostname = None
        first = line.split()[0] if line.split() else ""
        if first and first not in ("?", ip) and not MAC_RE.fullmatch(first) and (
            "." in first or first[0].isalpha()
        ):
            hostname = first
        if mac or hostname:
            return hostname, mac
    return None, None


def lookup_arp(ip: str, timeout: float = ARP_TIMEOUT) -> Tuple[Optional[str], Optional[str]]:
    output = _run(["arp", "-a", ip], timeout)
    if not output:
        return None, None
    return parse_arp_output(output, ip)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class IdentityResolver(BaseEngine):

    def __init__(
        self,
        store: Optional[DeviceNameStore] = None,
        vendors: Optional[VendorLookup] = None,
        reverse_dns: Optional[Callable[[str], Optional[str]]] = None,
        netbios: Optional[Callable[[str], Optional[str]]] = None,
        arp: Optional[Callable[[str], Tuple[Optional[str], Optional[str]]]] = None,
    ):
        self.store = store if store is not None else DeviceNameStore()
        self.vendors = vendors if vendors is not None else VendorLookup(api_url=None)
        self._reverse_dns = reverse_dns or lookup_reverse_dns
        self._netbios = netbios or lookup_netbios
        self._arp = arp or lookup_arp

    @property
    def name(self) -> str:
        return "identity_resolver"

    def resolve(self, ip: str, use_vendor_api: bool = False) -> Dict[str, Any]:
        identity: Dict[str, Any] = {
            "hostname": None,
            "hostname_source": None,
            "mac_address": None,
            "mac_source": None,
            "vendor": None,
            "vendor_source": None,
        }

        hint = self.store.get(ip)
        if hint is not None:
            identity["hostname"] = hint.name
            identity["hostname_source"] = "hint"
            mac = normalize_mac(hint.mac_address)
            if mac:
                identity["mac_address"] = mac
                identity["mac_source"] = "hint"
        else:
            hostname = self._safe(self._reverse_dns, ip)
            if hostname:
                identity.update(hostname=hostname, hostname_source="dns")
            else:
                hostname = self._safe(self._netbios, ip)
                if hostname:
                    identity.update(hostname=hostname, hostname_source="netbios")

            arp_result = self._safe(self._arp, ip) or (None, None)
            arp_name, arp_mac = arp_result
            if not identity["hostname"] and arp_name:
                identity.update(hostname=arp_name, hostname_source="arp")
            arp_mac = normalize_mac(arp_mac)
            if arp_mac:
                identity.update(mac_address=arp_mac, mac_source="arp")

        if identity["mac_address"]:
            vendor, source = self.vendors.lookup(identity["mac_address"], use_api=use_vendor_api)
            identity["vendor"] = vendor
            identity["vendor_source"] = source

        return identity

    @staticmethod
    def _safe(fn, ip):
        try:
            return fn(ip)
        except Exception as e:
            logger.debug(f"Identity lookup {getattr(fn, '__name__', fn)} for {ip} failed: {e}")
            return None

    def execute(self, ctx: HostContext) -> EngineResult:
        identity = self.resolve(ctx.ip_address, use_vendor_api=ctx.request.use_external_vendor_api)
        ctx.identity = identity
        return EngineResult(engine_name=self.name, data=identity)
