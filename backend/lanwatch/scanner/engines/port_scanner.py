# lanwatch/scanner/engines/port_scanner.py
"""
Port Scanner.

TCP-connect scan of the candidate port list on one live host.

Modes:
    sequential  Ports tried one after another on the calling thread. Used
                by the streaming scan, which already runs ~200 hosts at once.
                Worst case: len(ports) × port_timeout.
    parallel    Ports tried concurrently on a sub-pool sized to the port
                list. Worst case: about one port_timeout.

Sub-pools are the only nested level of threading. A shared semaphore caps
how many hosts may hold one at the same time, so the thread ceiling is
    host workers + max_parallel_hosts × len(ports)
Hosts that can't get a slot fall back to the sequential path.

Refused, timed out and unroutable connects all count as closed. The result
is the complete sorted set of open ports, never a partial one.
"""

from __future__ import annotations

import logging
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional, Tuple

from lanwatch.scanner.base import (
    BaseEngine,
    EngineResult,
    HostContext,
    PortScanMode,
)

logger = logging.getLogger(__name__)

MAX_PARALLEL_HOSTS = 16


def is_port_open(ip: str, port: int, timeout: float) -> bool:
    try:
        with socket.create_connection((ip, port), timeout=timeout):
            return True
    except OSError:
        return False


class PortScanner(BaseEngine):

    def __init__(self, max_parallel_hosts: int = MAX_PARALLEL_HOSTS):
        self.max_parallel_hosts = max_parallel_hosts
        self._slots = threading.BoundedSemaphore(max_parallel_hosts)

    @property
    def name(self) -> str:
        return "port_scanner"

    def scan(
        self,
        ip: str,
        ports: Iterable[int],
        timeout: float,
        mode: PortScanMode = PortScanMode.SEQUENTIAL,
        stop_event: Optional[threading.Event] = None,
    ) -> Tuple[int, ...]:
        ports = tuple(dict.fromkeys(ports))
        if mode == PortScanMode.PARALLEL and len(ports) > 1:
            if self._slots.acquire(blocking=False):
                try:
                    return self._scan_parallel(ip, ports, timeout)
                finally:
                    self._slots.release()
            logger.debug(f"No parallel slot free for {ip}, scanning sequentially")
        return self._scan_sequential(ip, ports, timeout, stop_event)

    def _scan_sequential(self, ip, ports, timeout, stop_event=None) -> Tuple[int, ...]:
        open_ports = []
        for port in ports:
            if stop_event is not None and stop_event.is_set():
                return ()
            if is_port_open(ip, port, timeout):
                open_ports.append(port)
        return tuple(sorted(open_ports))

    def _scan_parallel(self, ip, ports, timeout) -> Tuple[int, ...]:
        with ThreadPoolExecutor(max_workers=len(ports), thread_name_prefix="portscan") as pool:
            states = list(pool.map(lambda p: is_port_open(ip, p, timeout), ports))
        return tuple(sorted(p for p, is_open in zip(ports, states) if is_open))

    def execute(self, ctx: HostContext) -> EngineResult:
        req = ctx.request
        open_ports = self.scan(
            ctx.ip_address, req.ports, req.port_timeout, req.port_scan_mode, ctx.stop_event,
        )
        ctx.open_ports = open_ports
        return EngineResult(
            engine_name=self.name,
            data={"open_ports": list(open_ports), "mode": req.port_scan_mode.value},
        )
