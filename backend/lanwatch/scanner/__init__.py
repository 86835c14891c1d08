# lanwatch/scanner/__init__.py
from lanwatch.scanner.base import (
    AnalysisDepth,
    DeviceRecord,
    HostSkip,
    LocalAddressError,
    PortScanMode,
    ScanError,
    ScanRequest,
    ScanState,
    ScanSummary,
    ServiceInfo,
    Severity,
    Vulnerability,
)
from lanwatch.scanner.orchestrator import ScanOrchestrator, resolve_local_ip

__all__ = [
    "AnalysisDepth", "DeviceRecord", "HostSkip", "LocalAddressError",
    "PortScanMode", "ScanError", "ScanRequest", "ScanState", "ScanSummary",
    "ServiceInfo", "Severity", "Vulnerability",
    "ScanOrchestrator", "resolve_local_ip",
]
