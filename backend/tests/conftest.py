# Backend test configuration
# Shared fixtures: a throwaway SQLite database and network-free fake engines.

import threading
from typing import Dict, Iterable, Optional

import pytest

from lanwatch.device_names import DeviceNameHint, DeviceNameStore
from lanwatch.extensions import Session, init_db
from lanwatch.scanner.base import BaseEngine, EngineResult, HostContext, ScanRequest
from lanwatch.scanner.engines import IdentityResolver, VendorLookup
from lanwatch.scanner.orchestrator import ScanOrchestrator


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def db_session(tmp_path):
    """Fresh SQLite database per test."""
    init_db(f"sqlite:///{tmp_path / 'lanwatch-test.db'}")
    session = Session()
    yield session
    Session.remove()


# ============================================================================
# Fake engines
# ============================================================================

class FakeProber(BaseEngine):
    """Alive iff the address is in `alive`. Addresses in `slow` block until released."""

    def __init__(self, alive: Iterable[str], slow: Iterable[str] = ()):
        self.alive = set(alive)
        self.slow = set(slow)
        self.release = threading.Event()
        self.calls = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "host_prober"

    def execute(self, ctx: HostContext) -> EngineResult:
        with self._lock:
            self.calls.append(ctx.ip_address)
        if ctx.ip_address in self.slow:
            self.release.wait(timeout=10)
        return EngineResult(engine_name=self.name, data={"alive": ctx.ip_address in self.alive})


class FakePortScanner(BaseEngine):
    def __init__(self, ports_by_ip: Dict[str, Iterable[int]]):
        self.ports_by_ip = {ip: tuple(sorted(p)) for ip, p in ports_by_ip.items()}

    @property
    def name(self) -> str:
        return "port_scanner"

    def execute(self, ctx: HostContext) -> EngineResult:
        ctx.open_ports = self.ports_by_ip.get(ctx.ip_address, ())
        return EngineResult(engine_name=self.name, data={"open_ports": list(ctx.open_ports)})


class ExplodingProber(BaseEngine):
    """Raises for every address in `broken`, alive otherwise."""

    def __init__(self, broken: Iterable[str]):
        self.broken = set(broken)

    @property
    def name(self) -> str:
        return "host_prober"

    def execute(self, ctx: HostContext) -> EngineResult:
        if ctx.ip_address in self.broken:
            raise RuntimeError("probe exploded")
        return EngineResult(engine_name=self.name, data={"alive": True})


def no_lookup(ip):
    return None


def no_arp(ip):
    return None, None


@pytest.fixture
def hint_store():
    return DeviceNameStore([
        DeviceNameHint(ip_address="192.168.1.21", name="HUB-BLUESOUND", mac_address="90:56:82:aa:bb:cc", ordinal=21),
    ])


@pytest.fixture
def offline_identity():
    """Identity resolver that never leaves the process."""
    return IdentityResolver(
        store=DeviceNameStore(),
        vendors=VendorLookup(api_url=None),
        reverse_dns=no_lookup,
        netbios=no_lookup,
        arp=no_arp,
    )


@pytest.fixture
def make_orchestrator(offline_identity):
    def _make(alive, ports_by_ip=None, slow=(), prober=None, identity=None, local_ip="10.0.0.50"):
        return ScanOrchestrator(
            prober=prober or FakeProber(alive, slow=slow),
            port_scanner=FakePortScanner(ports_by_ip or {}),
            identity=identity or offline_identity,
            local_ip_resolver=lambda: local_ip,
        )
    return _make


@pytest.fixture
def small_request():
    def _make(**overrides):
        params = dict(
            network_prefix="10.0.0",
            address_count=20,
            workers=8,
            deadline=10.0,
            grace_period=0.5,
        )
        params.update(overrides)
        return ScanRequest(**params)
    return _make
