# lanwatch/scanner/orchestrator.py
"""
Scan Orchestrator.

Coordinates a sweep of one /24 range:

    1. Resolve the network prefix (from the request, else from our own IPv4)
    2. Submit one task per address .1 … .N to a flat worker pool
    3. Per host:  probe → port scan → fingerprint → identity → classify
                  → vulnerabilities → DeviceRecord (or HostSkip)
    4. Wait for every task or the global deadline, whichever comes first
    5. Stop: cancel queued tasks, give running ones a grace period, abandon
       the rest

Two ways to consume results:

    run_batch_scan(request)            → List[DeviceRecord], after the scan
    run_streaming_scan(request, cb)    → cb(record, completed, total) per
                                         device, as soon as it is found

Streaming callbacks are never invoked on worker threads. Workers drop
results into a bounded queue that a single publisher thread drains, so a
callback runs serially and a slow callback never stalls the scan.

Usage:
    from lanwatch.scanner import ScanOrchestrator, ScanRequest

    orchestrator = ScanOrchestrator(store=hints)
    devices = orchestrator.run_batch_scan(ScanRequest.batch())
"""

from __future__ import annotations

import logging
import queue
import socket
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Tuple

import psutil

from lanwatch.device_names import DeviceNameStore
from lanwatch.scanner.analyzers import DeviceClassifier, VulnerabilityAnalyzer
from lanwatch.scanner.base import (
    AtomicCounter,
    DeviceRecord,
    HostContext,
    HostResult,
    HostSkip,
    LocalAddressError,
    ScanError,
    ScanRequest,
    ScanState,
    ScanSummary,
    now_utc,
    prefix_of,
)
from lanwatch.scanner.engines import (
    HostProber,
    IdentityResolver,
    PortScanner,
    ServiceFingerprinter,
    VendorLookup,
)

logger = logging.getLogger(__name__)

PROBE_ADDRESS = ("8.8.8.8", 80)
PROGRESS_LOG_EVERY = 50
PUBLISH_TIMEOUT = 1.0

DeviceCallback = Callable[[DeviceRecord, int, int], None]
ProgressCallback = Callable[[int, int], None]

_STOP = object()
_ABORT = object()


# ---------------------------------------------------------------------------
# Local address
# ---------------------------------------------------------------------------

def _usable(ip: Optional[str]) -> bool:
    return bool(ip) and not ip.startswith("127.") and ip != "0.0.0.0"


def resolve_local_ip() -> str:
    """
    IPv4 address of the interface that routes to the internet.

    Connecting a UDP socket sends nothing, it only asks the kernel which
    source address it would use. Offline machines fall back to the first
    non-loopback IPv4 address on an interface that is up.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(PROBE_ADDRESS)
            ip = s.getsockname()[0]
        if _usable(ip):
            return ip
    except OSError as e:
        logger.debug(f"Outbound probe for local address failed: {e}")

    try:
        stats = psutil.net_if_stats()
        for name, addrs in psutil.net_if_addrs().items():
            if name in stats and not stats[name].isup:
                continue
            for addr in addrs:
                if addr.family == socket.AF_INET and _usable(addr.address):
                    return addr.address
    except (OSError, psutil.Error) as e:
        logger.debug(f"Interface enumeration failed: {e}")

    raise LocalAddressError("Could not determine the local IPv4 address")


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------

class _Publisher(threading.Thread):
    """
    Drains the result queue and invokes the caller's callbacks, one at a time.

    The "completed" value handed to callbacks never decreases, even when
    workers enqueue out of order.
    """

    def __init__(self, q: "queue.Queue", total: int,
                 on_device: DeviceCallback, on_progress: Optional[ProgressCallback]):
        super().__init__(name="lanwatch-publisher", daemon=True)
        self.q = q
        self.total = total
        self.on_device = on_device
        self.on_progress = on_progress
        self.last_completed = 0
        self.published: List[DeviceRecord] = []

    def run(self):
        while True:
            item = self.q.get()
            if item is _ABORT:
                # Scan never ran to completion, no final tick
                return
            if item is _STOP:
                break
            record, completed = item
            self.last_completed = max(self.last_completed, completed)
            if record is not None:
                self.published.append(record)
                self._call(self.on_device, record, self.last_completed, self.total)
            elif self.on_progress is not None:
                self._call(self.on_progress, self.last_completed, self.total)

        # Final tick: the counter always ends at the configured total
        self.last_completed = self.total
        if self.on_progress is not None:
            self._call(self.on_progress, self.total, self.total)

    @staticmethod
    def _call(fn, *args):
        try:
            fn(*args)
        except Exception:
            logger.exception("Scan callback raised")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class ScanOrchestrator:

    def __init__(
        self,
        store: Optional[DeviceNameStore] = None,
        vendors: Optional[VendorLookup] = None,
        prober: Optional[HostProber] = None,
        port_scanner: Optional[PortScanner] = None,
        fingerprinter: Optional[ServiceFingerprinter] = None,
        identity: Optional[IdentityResolver] = None,
        classifier: Optional[DeviceClassifier] = None,
        vulnerability_analyzer: Optional[VulnerabilityAnalyzer] = None,
        local_ip_resolver: Callable[[], str] = resolve_local_ip,
        publish_timeout: float = PUBLISH_TIMEOUT,
    ):
        self.store = store if store is not None else DeviceNameStore()
        self.prober = prober or HostProber()
        self.port_scanner = port_scanner or PortScanner()
        self.fingerprinter = fingerprinter or ServiceFingerprinter()
        self.identity = identity or IdentityResolver(store=self.store, vendors=vendors)
        self.classifier = classifier or DeviceClassifier()
        self.vulnerability_analyzer = vulnerability_analyzer or VulnerabilityAnalyzer()
        self.local_ip_resolver = local_ip_resolver
        self.publish_timeout = publish_timeout

        self.state = ScanState.IDLE
        self.addresses_completed = AtomicCounter()
        self.devices_found = AtomicCounter()
        self.total = 0
        self.last_summary: Optional[ScanSummary] = None
        self.config: Dict[str, Any] = {}
        self._busy = threading.Lock()

    # -----------------------------------------------------------------
    # Public entry points
    # -----------------------------------------------------------------

    def run_batch_scan(self, request: Optional[ScanRequest] = None) -> List[DeviceRecord]:
        """Scan the range and return every device found before the deadline."""
        request = request or ScanRequest.batch()
        summary = self._scan(request, publish=None)
        return summary.devices

    def run_streaming_scan(
        self,
        request: Optional[ScanRequest],
        on_device: DeviceCallback,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ScanSummary:
        """
        Scan the range, handing each device to `on_device(record, completed, total)`
        as soon as its pipeline finishes. `on_progress(completed, total)` is
        called for hosts that produced no device, and once more with
        (total, total) when the scan ends. A scan that fails to start gets
        no callbacks at all.
        """
        request = request or ScanRequest.streaming()
        total = request.address_count
        q: "queue.Queue" = queue.Queue(maxsize=total * 2 + 1)
        publisher = _Publisher(q, total, on_device, on_progress)
        publisher.start()

        def publish(result: HostResult, completed: int):
            if isinstance(result, DeviceRecord):
                try:
                    q.put((result, completed), timeout=self.publish_timeout)
                except queue.Full:
                    logger.warning(f"Result queue full, dropped {result.ip_address}")
            elif on_progress is not None:
                try:
                    q.put_nowait((None, completed))
                except queue.Full:
                    pass

        finished = False
        try:
            summary = self._scan(request, publish=publish)
            finished = True
        finally:
            q.put(_STOP if finished else _ABORT)
            publisher.join(timeout=request.grace_period + self.publish_timeout)

        summary.devices = list(publisher.published)
        return summary

    def progress(self) -> Dict[str, Any]:
        """Lock-free snapshot of the running (or last) scan."""
        return {
            "state": self.state.value,
            "completed": self.addresses_completed.value,
            "devicesFound": self.devices_found.value,
            "total": self.total,
        }

    # -----------------------------------------------------------------
    # Scan lifecycle
    # -----------------------------------------------------------------

    def _prepare(self, request: ScanRequest) -> ScanRequest:
        if request.network_prefix is not None:
            return request
        local_ip = self.local_ip_resolver()
        logger.info(f"Local address {local_ip}, scanning {prefix_of(local_ip)}.0/24")
        return request.with_prefix(prefix_of(local_ip))

    def _scan(
        self,
        request: ScanRequest,
        publish: Optional[Callable[[HostResult, int], None]],
    ) -> ScanSummary:
        if not self._busy.acquire(blocking=False):
            raise ScanError("A scan is already running on this orchestrator")

        try:
            scan_id = uuid.uuid4().hex[:12]
            started_at = now_utc()
            start = time.monotonic()

            self.state = ScanState.ENUMERATING
            try:
                request = self._prepare(request)
            except Exception:
                self.state = ScanState.FAILED
                raise

            addresses = request.addresses()
            self.total = len(addresses)
            self.addresses_completed = AtomicCounter()
            self.devices_found = AtomicCounter()
            stop = threading.Event()

            logger.info(
                f"Scan {scan_id}: {self.total} addresses in {request.network_prefix}.0/24 "
                f"({request.workers} workers, deadline {request.deadline}s, "
                f"{request.analysis_depth.value} analysis)"
            )

            futures, timed_out = self._run_pool(request, addresses, stop, publish)

            devices = []
            for f in futures:
                if f.done() and not f.cancelled():
                    result = f.result()
                    if isinstance(result, DeviceRecord):
                        devices.append(result)

            self.state = ScanState.TIMED_OUT if timed_out else ScanState.COMPLETED
            summary = ScanSummary(
                scan_id=scan_id,
                state=self.state,
                network_prefix=request.network_prefix,
                total=self.total,
                completed=self.addresses_completed.value,
                devices_found=self.devices_found.value,
                timed_out=timed_out,
                started_at=started_at,
                finished_at=now_utc(),
                duration_seconds=round(time.monotonic() - start, 2),
                devices=devices,
            )
            self.last_summary = summary

            if timed_out:
                logger.warning(
                    f"Scan {scan_id} hit its {request.deadline}s deadline: "
                    f"{summary.completed}/{summary.total} addresses, {summary.devices_found} devices"
                )
            else:
                logger.info(
                    f"Scan {scan_id} complete: {summary.devices_found} devices "
                    f"in {summary.duration_seconds}s"
                )
            return summary
        finally:
            self._busy.release()

    def _run_pool(
        self,
        request: ScanRequest,
        addresses: List[str],
        stop: threading.Event,
        publish: Optional[Callable[[HostResult, int], None]],
    ) -> Tuple[List[Future], bool]:
        pool = ThreadPoolExecutor(max_workers=request.workers, thread_name_prefix="lanwatch")
        futures: List[Future] = []
        try:
            for ip in addresses:
                futures.append(pool.submit(self._run_host, ip, request, stop, publish))

            self.state = ScanState.AWAITING_COMPLETION
            _, not_done = wait(futures, timeout=request.deadline)
            timed_out = bool(not_done)
        except BaseException:
            stop.set()
            pool.shutdown(wait=False, cancel_futures=True)
            raise

        stop.set()
        pool.shutdown(wait=False, cancel_futures=True)
        if timed_out:
            running = [f for f in futures if not f.done()]
            if running:
                _, stragglers = wait(running, timeout=request.grace_period)
                if stragglers:
                    logger.warning(f"Abandoning {len(stragglers)} host tasks still running after grace period")
        return futures, timed_out

    # -----------------------------------------------------------------
    # Per-host pipeline
    # -----------------------------------------------------------------

    def _run_host(
        self,
        ip: str,
        request: ScanRequest,
        stop: threading.Event,
        publish: Optional[Callable[[HostResult, int], None]],
    ) -> HostResult:
        try:
            result = self.scan_host(ip, request, stop)
        except Exception as e:
            logger.debug(f"Host task {ip} failed: {e}")
            result = HostSkip(ip_address=ip, reason="error", error=f"{type(e).__name__}: {e}")

        # Work finishing after the deadline is not reported
        if stop.is_set():
            return HostSkip(ip_address=ip, reason="cancelled")

        if isinstance(result, DeviceRecord):
            self.devices_found.increment()
            logger.debug(f"Found {ip}: {result.device_type} ports={list(result.open_ports)}")
        completed = self.addresses_completed.increment()
        if completed % PROGRESS_LOG_EVERY == 0:
            logger.info(f"Progress: {completed}/{self.total} addresses, {self.devices_found.value} devices")

        if publish is not None:
            publish(result, completed)
        return result

    def scan_host(self, ip: str, request: ScanRequest, stop: Optional[threading.Event] = None) -> HostResult:
        """Run the whole pipeline for one address."""
        ctx = HostContext(ip_address=ip, request=request, stop_event=stop)
        if ctx.cancelled:
            return HostSkip(ip_address=ip, reason="cancelled")

        probe = self.prober.run(ctx)
        if not probe.data.get("alive"):
            return HostSkip(ip_address=ip, reason="unreachable")

        self.port_scanner.run(ctx)
        if ctx.cancelled:
            return HostSkip(ip_address=ip, reason="cancelled")

        if ctx.open_ports:
            self.fingerprinter.run(ctx)
        self.identity.run(ctx)

        classification = self.classifier.run(ctx)
        vulnerabilities = self.vulnerability_analyzer.run(ctx)

        identity = ctx.identity
        return DeviceRecord(
            ip_address=ip,
            open_ports=ctx.open_ports,
            services=dict(ctx.services),
            hostname=identity.get("hostname"),
            hostname_source=identity.get("hostname_source"),
            mac_address=identity.get("mac_address"),
            mac_source=identity.get("mac_source"),
            vendor=identity.get("vendor"),
            vendor_source=identity.get("vendor_source"),
            device_type=classification.get("device_type", "Unknown Device"),
            os_guess=classification.get("os_guess"),
            vulnerabilities=tuple(vulnerabilities),
            web_url=classification.get("web_url"),
            database_server=classification.get("database_server"),
            file_sharing=bool(classification.get("file_sharing")),
            remote_access=classification.get("remote_access"),
        )
