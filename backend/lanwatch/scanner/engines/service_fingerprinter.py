# lanwatch/scanner/engines/service_fingerprinter.py
"""
Service Fingerprinter.

Labels each open port from a static table and, when banners are enabled,
reads whatever the service volunteers:

    SSH, Telnet        first line sent by the server
    HTTP, HTTPS, ...   HEAD / and the `Server:` response header (httpx)

Banner grabs share the per-port timeout. Any failure just means no banner.
A version is the first dotted number found in the banner, e.g.
"SSH-2.0-OpenSSH_8.9p1" -> "2.0", "nginx/1.24.0" -> "1.24.0".
"""

from __future__ import annotations

import logging
import re
import socket
from typing import Dict, Iterable, Optional

import httpx

from lanwatch.scanner.base import BaseEngine, EngineResult, HostContext, ServiceInfo

logger = logging.getLogger(__name__)

SERVICE_NAMES: Dict[int, str] = {
    22: "SSH",
    23: "Telnet",
    80: "HTTP",
    135: "RPC",
    139: "NetBIOS",
    443: "HTTPS",
    445: "SMB",
    3306: "MySQL",
    3389: "RDP",
    5432: "PostgreSQL",
    8080: "HTTP-Proxy",
    8443: "HTTPS-Alt",
}

LINE_BANNER_SERVICES = {"SSH", "Telnet"}
HTTP_SERVICES = {"HTTP", "HTTPS", "HTTP-Proxy", "HTTPS-Alt"}
TLS_SERVICES = {"HTTPS", "HTTPS-Alt"}

VERSION_RE = re.compile(r"(\d+\.\d+(?:\.\d+)?)")

MAX_BANNER_BYTES = 1024


def service_name(port: int) -> str:
    return SERVICE_NAMES.get(port, "Unknown")


def extract_version(banner: Optional[str]) -> Optional[str]:
    if not banner:
        return None
    m = VERSION_RE.search(banner)
    return m.group(1) if m else None


def _read_first_line(ip: str, port: int, timeout: float) -> Optional[str]:
    try:
        with socket.create_connection((ip, port), timeout=timeout) as sock:
            sock.settimeout(timeout)
            data = sock.recv(MAX_BANNER_BYTES)
    except OSError:
        return None
    if not data:
        return None
    # Telnet servers open with IAC negotiation bytes before any text
    text = data.decode("utf-8", errors="ignore")
    for line in text.splitlines():
        line = line.strip()
        if line and line.isprintable():
            return line[:200]
    return None


def _http_server_header(ip: str, port: int, service: str, timeout: float) -> Optional[str]:
    scheme = "https" if service in TLS_SERVICES else "http"
    url = f"{scheme}://{ip}:{port}/"
    try:
        with httpx.Client(verify=False, timeout=timeout, follow_redirects=False) as client:
            resp = client.head(url)
        return resp.headers.get("server")
    except httpx.HTTPError:
        return None


def grab_banner(ip: str, port: int, timeout: float) -> Optional[str]:
    service = service_name(port)
    if service in LINE_BANNER_SERVICES:
        return _read_first_line(ip, port, timeout)
    if service in HTTP_SERVICES:
        return _http_server_header(ip, port, service, timeout)
    return None


class ServiceFingerprinter(BaseEngine):

    @property
    def name(self) -> str:
        return "service_fingerprinter"

    def fingerprint(
        self,
        ip: str,
        open_ports: Iterable[int],
        timeout: float,
        grab_banners: bool = False,
    ) -> Dict[int, ServiceInfo]:
        services: Dict[int, ServiceInfo] = {}
        for port in open_ports:
            banner = None
            if grab_banners:
                try:
                    banner = grab_banner(ip, port, timeout)
                except Exception as e:
                    logger.debug(f"Banner grab {ip}:{port} failed: {e}")
            services[port] = ServiceInfo(
                port=port,
                service=service_name(port),
                banner=banner,
                version=extract_version(banner),
            )
        return services

    def execute(self, ctx: HostContext) -> EngineResult:
        req = ctx.request
        services = self.fingerprint(ctx.ip_address, ctx.open_ports, req.port_timeout, req.grab_banners)
        ctx.services = services
        return EngineResult(
            engine_name=self.name,
            data={
                "services": {
                    str(p): {"service": s.service, "banner": s.banner, "version": s.version}
                    for p, s in services.items()
                }
            },
        )
