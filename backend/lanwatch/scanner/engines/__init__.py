# lanwatch/scanner/engines/__init__.py
"""
Data collection engines.
Each engine collects raw facts about one host.
Engines do NOT judge risk, they only gather facts.
"""
from lanwatch.scanner.engines.host_prober import HostProber
from lanwatch.scanner.engines.port_scanner import PortScanner
from lanwatch.scanner.engines.service_fingerprinter import ServiceFingerprinter
from lanwatch.scanner.engines.identity_resolver import IdentityResolver
from lanwatch.scanner.engines.vendor_lookup import VendorLookup

# Registry of all available engines, in pipeline order.
ALL_ENGINES = {
    "host_prober": HostProber,
    "port_scanner": PortScanner,
    "service_fingerprinter": ServiceFingerprinter,
    "identity_resolver": IdentityResolver,
}

__all__ = [
    "HostProber", "PortScanner", "ServiceFingerprinter", "IdentityResolver",
    "VendorLookup",
    "ALL_ENGINES",
]
