# lanwatch/scanner/engines/host_prober.py
"""
Host Prober.

Decides whether an address answers at all, bounded by a short timeout.

Methods:
    tcp   Connect to the echo port (7). A completed handshake or an active
          refusal (RST) both prove the host is up; only silence counts as
          down. Needs no privileges, so this is the default.
    icmp  Run the system `ping` once. Slower to start (a process per
          address) but catches hosts that drop every TCP port.

Any failure (timeout, no route, resolution error, missing binary) means
"not alive". Nothing propagates to the caller.
"""

from __future__ import annotations

import errno
import logging
import math
import platform
import socket
import subprocess
from typing import List

from lanwatch.scanner.base import BaseEngine, EngineResult, HostContext

logger = logging.getLogger(__name__)

ECHO_PORT = 7

# errno values meaning "something on that address answered"
_ANSWERED_ERRNOS = {errno.ECONNREFUSED, getattr(errno, "WSAECONNREFUSED", -1)}


def probe_tcp(ip: str, timeout: float) -> bool:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        code = sock.connect_ex((ip, ECHO_PORT))
        return code == 0 or code in _ANSWERED_ERRNOS
    except OSError:
        return False
    finally:
        sock.close()


def _ping_command(ip: str, timeout: float) -> List[str]:
    if platform.system().lower() == "windows":
        return ["ping", "-n", "1", "-w", str(max(1, int(timeout * 1000))), ip]
    # -W takes whole seconds on Linux iputils
    return ["ping", "-c", "1", "-W", str(max(1, math.ceil(timeout))), ip]


def probe_icmp(ip: str, timeout: float) -> bool:
    try:
        proc = subprocess.run(
            _ping_command(ip, timeout),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout + 0.5,
        )
        return proc.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


PROBE_METHODS = {
    "tcp": probe_tcp,
    "icmp": probe_icmp,
}


class HostProber(BaseEngine):

    def __init__(self, method: str = "tcp"):
        if method not in PROBE_METHODS:
            raise ValueError(f"Unknown probe method '{method}' (expected one of {sorted(PROBE_METHODS)})")
        self.method = method

    @property
    def name(self) -> str:
        return "host_prober"

    def is_alive(self, ip: str, timeout: float) -> bool:
        try:
            return PROBE_METHODS[self.method](ip, timeout)
        except Exception as e:
            logger.debug(f"Probe of {ip} failed: {e}")
            return False

    def execute(self, ctx: HostContext) -> EngineResult:
        alive = self.is_alive(ctx.ip_address, ctx.request.host_timeout)
        return EngineResult(engine_name=self.name, data={"alive": alive, "method": self.method})
