"""
Host prober, port scanner and service fingerprinter, with sockets faked out.
"""

import errno
import socket
import subprocess
import threading
import time

import httpx
import pytest

from lanwatch.scanner.base import HostContext, PortScanMode, ScanRequest
from lanwatch.scanner.engines import host_prober, port_scanner, service_fingerprinter
from lanwatch.scanner.engines.host_prober import HostProber
from lanwatch.scanner.engines.port_scanner import PortScanner, is_port_open
from lanwatch.scanner.engines.service_fingerprinter import (
    ServiceFingerprinter,
    extract_version,
    grab_banner,
    service_name,
)


# ============================================================================
# Host prober
# ============================================================================

class FakeSocket:
    def __init__(self, result=0, exc=None):
        self.result = result
        self.exc = exc
        self.closed = False

    def settimeout(self, timeout):
        pass

    def connect_ex(self, addr):
        if self.exc:
            raise self.exc
        return self.result

    def close(self):
        self.closed = True


@pytest.mark.parametrize("result, alive", [
    (0, True),
    (errno.ECONNREFUSED, True),
    (errno.EHOSTUNREACH, False),
    (errno.EAGAIN, False),
])
def test_tcp_probe_result_codes(monkeypatch, result, alive):
    monkeypatch.setattr(host_prober.socket, "socket", lambda *a: FakeSocket(result))
    assert HostProber("tcp").is_alive("10.0.0.1", 0.15) is alive


def test_tcp_probe_swallows_errors(monkeypatch):
    monkeypatch.setattr(host_prober.socket, "socket", lambda *a: FakeSocket(exc=socket.timeout()))
    assert HostProber("tcp").is_alive("10.0.0.1", 0.15) is False


def test_icmp_probe(monkeypatch):
    monkeypatch.setattr(host_prober.subprocess, "run", lambda *a, **kw: subprocess.CompletedProcess(a, 0))
    assert HostProber("icmp").is_alive("10.0.0.1", 0.15) is True

    def timeout(*a, **kw):
        raise subprocess.TimeoutExpired("ping", 1)
    monkeypatch.setattr(host_prober.subprocess, "run", timeout)
    assert HostProber("icmp").is_alive("10.0.0.1", 0.15) is False


def test_unknown_probe_method():
    with pytest.raises(ValueError):
        HostProber("arp")


def test_prober_engine_result():
    class AlwaysUp(HostProber):
        def is_alive(self, ip, timeout):
            return True

    ctx = HostContext(ip_address="10.0.0.1", request=ScanRequest(network_prefix="10.0.0"))
    result = AlwaysUp().run(ctx)
    assert result.success
    assert result.data["alive"] is True
    assert ctx.engine_results["host_prober"] is result


# ============================================================================
# Port scanner
# ============================================================================

OPEN = {("10.0.0.1", 22), ("10.0.0.1", 80)}


@pytest.fixture
def fake_connect(monkeypatch):
    def _is_open(ip, port, timeout):
        return (ip, port) in OPEN
    monkeypatch.setattr(port_scanner, "is_port_open", _is_open)


@pytest.mark.parametrize("mode", [PortScanMode.SEQUENTIAL, PortScanMode.PARALLEL])
def test_scan_returns_sorted_open_subset(fake_connect, mode):
    result = PortScanner().scan("10.0.0.1", [443, 80, 22, 3389], 0.1, mode)
    assert result == (22, 80)


def test_scan_nothing_open(fake_connect):
    assert PortScanner().scan("10.0.0.2", [22, 80], 0.1) == ()


def test_parallel_scan_runs_ports_concurrently(monkeypatch):
    def slow(ip, port, timeout):
        time.sleep(0.2)
        return port == 443
    monkeypatch.setattr(port_scanner, "is_port_open", slow)

    start = time.monotonic()
    result = PortScanner().scan("10.0.0.1", [22, 80, 443, 445, 3389, 8080], 0.2, PortScanMode.PARALLEL)
    assert result == (443,)
    assert time.monotonic() - start < 1.0


def test_parallel_falls_back_to_sequential_without_slot(fake_connect):
    scanner = PortScanner(max_parallel_hosts=1)
    scanner._slots.acquire()
    try:
        assert scanner.scan("10.0.0.1", [80, 22], 0.1, PortScanMode.PARALLEL) == (22, 80)
    finally:
        scanner._slots.release()


def test_sequential_scan_stops_when_cancelled(fake_connect):
    stop = threading.Event()
    stop.set()
    assert PortScanner().scan("10.0.0.1", [22, 80], 0.1, stop_event=stop) == ()


def test_is_port_open(monkeypatch):
    class Conn:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    monkeypatch.setattr(port_scanner.socket, "create_connection", lambda addr, timeout: Conn())
    assert is_port_open("10.0.0.1", 22, 0.1) is True

    def refused(addr, timeout):
        raise ConnectionRefusedError()
    monkeypatch.setattr(port_scanner.socket, "create_connection", refused)
    assert is_port_open("10.0.0.1", 22, 0.1) is False


def test_port_scanner_engine_sets_context(fake_connect):
    ctx = HostContext(ip_address="10.0.0.1", request=ScanRequest(network_prefix="10.0.0"))
    PortScanner().run(ctx)
    assert ctx.open_ports == (22, 80)


# ============================================================================
# Service fingerprinter
# ============================================================================

def test_service_names():
    assert service_name(22) == "SSH"
    assert service_name(8080) == "HTTP-Proxy"
    assert service_name(3389) == "RDP"
    assert service_name(12345) == "Unknown"


@pytest.mark.parametrize("banner, version", [
    ("SSH-2.0-OpenSSH_8.9p1 Ubuntu-3", "2.0"),
    ("nginx/1.24.0", "1.24.0"),
    ("Apache", None),
    (None, None),
])
def test_extract_version(banner, version):
    assert extract_version(banner) == version


def test_http_banner_uses_server_header(monkeypatch):
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["url"] = str(request.url)
        return httpx.Response(200, headers={"Server": "lighttpd/1.4.59"})

    real_client = httpx.Client

    def client_factory(**kwargs):
        kwargs.pop("verify", None)
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(service_fingerprinter.httpx, "Client", client_factory)
    assert grab_banner("10.0.0.1", 443, 0.1) == "lighttpd/1.4.59"
    assert seen["method"] == "HEAD"
    assert seen["url"].startswith("https://10.0.0.1")


def test_http_banner_failure_is_none(monkeypatch):
    def handler(request):
        raise httpx.ConnectTimeout("slow")

    real_client = httpx.Client

    def client_factory(**kwargs):
        kwargs.pop("verify", None)
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(service_fingerprinter.httpx, "Client", client_factory)
    assert grab_banner("10.0.0.1", 80, 0.1) is None


def test_ssh_banner_reads_first_line(monkeypatch):
    class Conn:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def settimeout(self, timeout):
            pass

        def recv(self, n):
            return b"SSH-2.0-dropbear_2022.83\r\n"

    monkeypatch.setattr(service_fingerprinter.socket, "create_connection", lambda addr, timeout: Conn())
    assert grab_banner("10.0.0.1", 22, 0.1) == "SSH-2.0-dropbear_2022.83"


def test_fingerprint_without_banners(monkeypatch):
    def must_not_connect(*a, **kw):
        raise AssertionError("banner grab attempted")
    monkeypatch.setattr(service_fingerprinter, "grab_banner", must_not_connect)

    services = ServiceFingerprinter().fingerprint("10.0.0.1", (22, 80), 0.1, grab_banners=False)
    assert services[22].service == "SSH"
    assert services[80].banner is None


def test_fingerprint_banner_errors_are_ignored(monkeypatch):
    def broken(*a, **kw):
        raise RuntimeError("unexpected")
    monkeypatch.setattr(service_fingerprinter, "grab_banner", broken)

    services = ServiceFingerprinter().fingerprint("10.0.0.1", (22,), 0.1, grab_banners=True)
    assert services[22].banner is None
    assert services[22].version is None
