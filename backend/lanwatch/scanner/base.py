# lanwatch/scanner/base.py
"""
Base classes for the LANWatch discovery pipeline.

Architecture:
    HostContext flows through:  Engines → Analyzers → DeviceRecord

BaseEngine:   Collects raw facts about one host (reachability, open ports,
              service banners, hostname/MAC). Engines NEVER judge risk,
              they only gather facts.

BaseAnalyzer: Interprets the collected facts (device type, OS guess,
              vulnerability findings). Analyzers NEVER touch the network.

Each stage can fail independently without crashing the whole scan: the
run() wrappers below turn any exception into an empty result.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# Well-known ports probed on every live host
DEFAULT_PORTS: Tuple[int, ...] = (22, 80, 443, 445, 3389, 8080)

HOST_TIMEOUT = 0.15
PORT_TIMEOUT = 0.1
ADDRESS_COUNT = 254


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def prefix_of(ip: str) -> str:
    """First three octets of a dotted IPv4 address ("192.168.1.20" -> "192.168.1")."""
    return ip.rsplit(".", 1)[0]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ScanError(Exception):
    """Base class for scan-level failures surfaced to the caller."""


class LocalAddressError(ScanError):
    """The scanning machine's IPv4 address could not be determined."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class ScanState(str, Enum):
    IDLE = "idle"
    ENUMERATING = "enumerating"
    AWAITING_COMPLETION = "awaiting_completion"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class PortScanMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class AnalysisDepth(str, Enum):
    FAST = "fast"
    FULL = "full"


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScanRequest:
    """
    Immutable description of one scan invocation.

    Fields:
        network_prefix:  First three octets ("192.168.1"). None means "derive
                         from the scanning machine's own address".
        address_count:   Hosts .1 through .N are probed (max 254).
        deadline:        Global completion deadline in seconds.
        host_timeout:    Reachability probe timeout in seconds.
        port_timeout:    Per-port TCP connect timeout in seconds.
        ports:           Candidate ports tested on every live host.
        workers:         Host-level worker pool size.
        grace_period:    Seconds to wait for running tasks after the pool is
                         told to stop, before they are abandoned.
        port_scan_mode:  sequential (calling thread) or parallel (sub-pool).
        analysis_depth:  fast (port-keyed findings) or full (adds per-port
                         lookups and the credentials-risk check).
        grab_banners:    Connect to open services and read their greeting.
        use_external_vendor_api: Ask the MAC vendor web API for OUIs missing
                         from the local table.
    """
    network_prefix: Optional[str] = None
    address_count: int = ADDRESS_COUNT
    deadline: float = 60.0
    host_timeout: float = HOST_TIMEOUT
    port_timeout: float = PORT_TIMEOUT
    ports: Tuple[int, ...] = DEFAULT_PORTS
    workers: int = 200
    grace_period: float = 10.0
    port_scan_mode: PortScanMode = PortScanMode.SEQUENTIAL
    analysis_depth: AnalysisDepth = AnalysisDepth.FAST
    grab_banners: bool = False
    use_external_vendor_api: bool = False

    def __post_init__(self):
        if not 1 <= self.address_count <= ADDRESS_COUNT:
            raise ValueError(f"address_count must be between 1 and {ADDRESS_COUNT}")
        if not self.ports:
            raise ValueError("at least one candidate port is required")
        if self.workers < 1:
            raise ValueError("workers must be positive")
        if self.network_prefix is not None:
            _validate_prefix(self.network_prefix)

    @classmethod
    def streaming(cls, **overrides) -> "ScanRequest":
        """Live scan profile: wide pool, sequential ports, fast analysis."""
        return cls(**overrides)

    @classmethod
    def batch(cls, **overrides) -> "ScanRequest":
        """Deliberate full scan: smaller pool, parallel ports, banners, full analysis."""
        params: Dict[str, Any] = {
            "deadline": 120.0,
            "workers": 64,
            "port_scan_mode": PortScanMode.PARALLEL,
            "analysis_depth": AnalysisDepth.FULL,
            "grab_banners": True,
            "use_external_vendor_api": True,
        }
        params.update(overrides)
        return cls(**params)

    def with_prefix(self, prefix: str) -> "ScanRequest":
        return replace(self, network_prefix=prefix)

    def addresses(self) -> List[str]:
        if self.network_prefix is None:
            raise ValueError("network_prefix is not resolved")
        return [f"{self.network_prefix}.{i}" for i in range(1, self.address_count + 1)]


def _validate_prefix(prefix: str):
    octets = prefix.split(".")
    if len(octets) != 3 or not all(o.isdigit() and 0 <= int(o) <= 255 for o in octets):
        raise ValueError(f"Invalid network prefix: {prefix!r}")


@dataclass(frozen=True)
class ServiceInfo:
    port: int
    service: str
    banner: Optional[str] = None
    version: Optional[str] = None


@dataclass(frozen=True)
class Vulnerability:
    """
    A weakness inferred from a host's open-port set.

    Fields:
        type:            Finding title, e.g. "Telnet Service".
        severity:        Severity enum.
        description:     What was found.
        port:            Port the finding refers to. None for aggregate checks.
        service:         Service label for per-port findings (full mode).
        recommendations: Hardening steps, where we have them.
    """
    type: str
    severity: Severity
    description: str
    port: Optional[int] = None
    service: Optional[str] = None
    recommendations: Tuple[str, ...] = ()

    def sort_key(self):
        return (self.severity.rank, self.port if self.port is not None else -1, self.type)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.type,
            "severity": self.severity.value,
            "description": self.description,
            "port": self.port,
        }
        if self.service:
            d["service"] = self.service
        if self.recommendations:
            d["recommendations"] = list(self.recommendations)
        return d


@dataclass(frozen=True)
class DeviceRecord:
    """
    One discovered live host. Built once per host on its worker thread and
    never mutated after it has been published.
    """
    ip_address: str
    open_ports: Tuple[int, ...] = ()
    services: Dict[int, ServiceInfo] = field(default_factory=dict)
    hostname: Optional[str] = None
    hostname_source: Optional[str] = None    # hint, dns, netbios, arp
    mac_address: Optional[str] = None
    mac_source: Optional[str] = None         # hint, arp
    vendor: Optional[str] = None
    vendor_source: Optional[str] = None      # local, database, api
    device_type: str = "Unknown Device"
    os_guess: Optional[str] = None
    vulnerabilities: Tuple[Vulnerability, ...] = ()

    # Capabilities inferred from open ports
    web_url: Optional[str] = None
    database_server: Optional[str] = None
    file_sharing: bool = False
    remote_access: Optional[str] = None

    discovered_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ipAddress": self.ip_address,
            "hostname": self.hostname,
            "hostnameSource": self.hostname_source,
            "macAddress": self.mac_address,
            "macSource": self.mac_source,
            "vendor": self.vendor,
            "openPorts": list(self.open_ports),
            "services": {str(p): asdict(s) for p, s in sorted(self.services.items())},
            "deviceType": self.device_type,
            "os": self.os_guess,
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
            "webInterface": self.web_url is not None,
            "webUrl": self.web_url,
            "databaseServer": self.database_server,
            "fileSharing": self.file_sharing,
            "remoteAccess": self.remote_access,
            "discoveredAt": self.discovered_at.isoformat(),
        }


@dataclass(frozen=True)
class HostSkip:
    """A candidate address that produced no DeviceRecord."""
    ip_address: str
    reason: str                          # unreachable, cancelled, error
    error: Optional[str] = None


HostResult = Union[DeviceRecord, HostSkip]


@dataclass
class ScanSummary:
    scan_id: str
    state: ScanState
    network_prefix: Optional[str]
    total: int
    completed: int = 0
    devices_found: int = 0
    timed_out: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    devices: List[DeviceRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanId": self.scan_id,
            "state": self.state.value,
            "networkPrefix": self.network_prefix,
            "total": self.total,
            "completed": self.completed,
            "devicesFound": self.devices_found,
            "timedOut": self.timed_out,
            "durationSeconds": self.duration_seconds,
            "devices": [d.to_dict() for d in self.devices],
        }


@dataclass
class HostContext:
    """
    The data bag that flows through one host's pipeline.

    Created by the orchestrator for each live address. Engines write their
    results into engine_results and the fact fields; analyzers read the facts.
    Owned by a single worker thread.
    """
    ip_address: str
    request: ScanRequest
    engine_results: Dict[str, "EngineResult"] = field(default_factory=dict)
    open_ports: Tuple[int, ...] = ()
    services: Dict[int, ServiceInfo] = field(default_factory=dict)
    identity: Dict[str, Any] = field(default_factory=dict)
    stop_event: Optional[threading.Event] = None

    @property
    def cancelled(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def get_engine_data(self, engine_name: str) -> Dict[str, Any]:
        """Raw data from an engine, or {} if it didn't run or failed."""
        result = self.engine_results.get(engine_name)
        if result and result.success:
            return result.data
        return {}


@dataclass
class EngineResult:
    """
    Standardized output from any engine run.

    Fields:
        engine_name:      Which engine produced this (e.g., "host_prober")
        success:          Did the engine complete without fatal errors?
        data:             Raw collected data, structure varies per engine.
        errors:           Non-fatal error messages
        duration_seconds: Wall-clock time the engine took
    """
    engine_name: str
    success: bool = True
    data: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def add_error(self, msg: str):
        self.errors.append(msg)


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

class AtomicCounter:
    """
    Integer counter shared by worker threads.

    Increments are serialized by a lock; reads return the last stored int
    without locking (an int rebinding is atomic under the interpreter).
    """

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self) -> int:
        return self._value


# ---------------------------------------------------------------------------
# Abstract base classes
# ---------------------------------------------------------------------------

class BaseEngine(ABC):
    """
    Abstract base for per-host data collection engines.

    To create a new engine:
        1. Subclass BaseEngine
        2. Set the `name` property
        3. Implement `execute(ctx) -> EngineResult`

    The base class handles timing and error catching: an exception becomes
    an EngineResult with success=False, it never reaches the worker.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    def run(self, ctx: HostContext) -> EngineResult:
        """
        Execute the engine with automatic timing and error handling.

        DO NOT OVERRIDE THIS METHOD. Override `execute()` instead.
        """
        start = time.monotonic()
        try:
            result = self.execute(ctx)
            result.engine_name = self.name
        except Exception as e:
            logger.debug(f"Engine '{self.name}' failed for {ctx.ip_address}: {e}")
            result = EngineResult(
                engine_name=self.name,
                success=False,
                errors=[f"{type(e).__name__}: {str(e)}"],
            )
        result.duration_seconds = round(time.monotonic() - start, 3)
        ctx.engine_results[self.name] = result
        return result

    @abstractmethod
    def execute(self, ctx: HostContext) -> EngineResult:
        ...


class BaseAnalyzer(ABC):
    """
    Abstract base for analyzers.

    Analyzers are pure functions of the facts in HostContext. The base class
    catches exceptions and returns `fallback()` instead, so a broken rule
    never costs the host its DeviceRecord.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    def run(self, ctx: HostContext) -> Any:
        """DO NOT OVERRIDE THIS METHOD. Override `analyze()` instead."""
        try:
            return self.analyze(ctx)
        except Exception:
            logger.exception(f"Analyzer '{self.name}' failed for {ctx.ip_address}")
            return self.fallback()

    def fallback(self) -> Any:
        return []

    @abstractmethod
    def analyze(self, ctx: HostContext) -> Any:
        ...
