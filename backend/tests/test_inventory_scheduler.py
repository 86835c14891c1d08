"""
Post-scan bookkeeping and the background scan schedule.
"""

import pytest

from lanwatch import scheduler
from lanwatch.inventory import (
    find_new_devices,
    format_mac,
    known_mac_addresses,
    save_learned_vendors,
    save_new_devices,
)
from lanwatch.models import MacVendorMapping, NetworkDeviceMapping, NewDeviceHistory
from lanwatch.scanner.base import DeviceRecord, LocalAddressError, ScanState, ScanSummary
from lanwatch.scheduler import interval_from_cron, record_scan_results, run_scheduled_scan


def _record(ip, mac=None, vendor=None, vendor_source=None, ports=()):
    return DeviceRecord(
        ip_address=ip,
        open_ports=tuple(ports),
        mac_address=mac,
        vendor=vendor,
        vendor_source=vendor_source,
        device_type="Server" if ports else "Unknown Device",
    )


def _summary(devices):
    return ScanSummary(
        scan_id="abc123",
        state=ScanState.COMPLETED,
        network_prefix="192.168.1",
        total=254,
        completed=254,
        devices_found=len(devices),
        devices=list(devices),
    )


# ============================================================================
# Inventory
# ============================================================================

def test_format_mac():
    assert format_mac("aa-bb-cc-dd-ee-ff") == "AA:BB:CC:DD:EE:FF"
    assert format_mac("n/a") == "n/a"
    assert format_mac(None) is None


def test_known_macs_are_normalized(db_session):
    db_session.add_all([
        NetworkDeviceMapping(ip_address="192.168.1.1", device_name="ROUTER", mac_address="aa-bb-cc-dd-ee-ff"),
        NetworkDeviceMapping(ip_address="192.168.1.2", device_name="NO-MAC"),
    ])
    db_session.commit()
    assert known_mac_addresses(db_session) == {"AA:BB:CC:DD:EE:FF"}


def test_find_new_devices():
    records = [
        _record("192.168.1.1", "aa:bb:cc:dd:ee:ff"),
        _record("192.168.1.2", "11:22:33:44:55:66"),
        _record("192.168.1.3", "11-22-33-44-55-66"),
        _record("192.168.1.4"),
    ]
    new = find_new_devices(records, {"AA:BB:CC:DD:EE:FF"})
    assert [r.ip_address for r in new] == ["192.168.1.2"]


def test_save_new_devices(db_session):
    saved = save_new_devices(db_session, [_record("192.168.1.9", "11:22:33:44:55:66", "Acme", ports=(22, 80))])
    assert saved == 1
    row = db_session.query(NewDeviceHistory).one()
    assert row.mac_address == "11:22:33:44:55:66"
    assert row.open_ports == "22,80"
    assert row.device_type == "Server"
    assert row.detection_date.tzinfo is None


def test_save_learned_vendors_only_from_api(db_session):
    db_session.add(MacVendorMapping(oui="90:56:82", vendor="Old Name"))
    db_session.commit()

    records = [
        _record("192.168.1.21", "90:56:82:aa:bb:cc", "Bluesound International", "api"),
        _record("192.168.1.22", "00:0c:29:00:00:01", "VMware", "local"),
        _record("192.168.1.23", "ab:cd:ef:00:00:01", "Sonos", "api"),
    ]
    assert save_learned_vendors(db_session, records) == 2

    vendors = {r.oui: r.vendor for r in db_session.query(MacVendorMapping).all()}
    assert vendors == {"90:56:82": "Bluesound International", "AB:CD:EF": "Sonos"}


def test_save_learned_vendors_nothing_to_do(db_session):
    assert save_learned_vendors(db_session, [_record("192.168.1.5")]) == 0


def test_record_scan_results(db_session):
    db_session.add(NetworkDeviceMapping(ip_address="192.168.1.1", device_name="ROUTER", mac_address="AA:BB:CC:DD:EE:FF"))
    db_session.commit()

    summary = _summary([
        _record("192.168.1.1", "aa:bb:cc:dd:ee:ff"),
        _record("192.168.1.30", "11:22:33:44:55:66", "Acme", "api"),
    ])
    assert record_scan_results(summary) == 1

    history = db_session.query(NewDeviceHistory).all()
    assert [h.ip_address for h in history] == ["192.168.1.30"]
    assert db_session.query(MacVendorMapping).filter_by(oui="11:22:33").one().vendor == "Acme"


# ============================================================================
# Scheduler
# ============================================================================

@pytest.mark.parametrize("cron, minutes", [
    ("0 */10 * * * ?", 10),
    ("0 */15 * * * ?", 15),
    ("*/5 * * * *", 5),
    ("0 30 * * * ?", 10),
    ("0 */0 * * * ?", 10),
    ("0 */x * * * ?", 10),
    ("garbage", 10),
    ("", 10),
    (None, 10),
])
def test_interval_from_cron(cron, minutes):
    assert interval_from_cron(cron) == minutes


class RecordingOrchestrator:
    def __init__(self, summary=None, error=None):
        self.summary = summary
        self.error = error
        self.calls = 0

    def run_streaming_scan(self, request, on_device, on_progress=None):
        self.calls += 1
        if self.error:
            raise self.error
        return self.summary


@pytest.fixture
def scheduler_enabled():
    scheduler.set_scheduler_enabled(True)
    yield
    scheduler.set_scheduler_enabled(False)


def test_paused_scheduler_skips_scan():
    scheduler.set_scheduler_enabled(False)
    orch = RecordingOrchestrator(_summary([]))
    run_scheduled_scan(orch)
    assert orch.calls == 0
    assert not scheduler.is_scheduler_enabled()


def test_scheduled_scan_records_results(scheduler_enabled, monkeypatch):
    recorded = []
    monkeypatch.setattr(scheduler, "record_scan_results", lambda summary: recorded.append(summary) or 0)

    summary = _summary([_record("192.168.1.30", "11:22:33:44:55:66")])
    orch = RecordingOrchestrator(summary)
    run_scheduled_scan(orch)

    assert orch.calls == 1
    assert recorded == [summary]


def test_scheduled_scan_survives_scan_errors(scheduler_enabled, monkeypatch):
    recorded = []
    monkeypatch.setattr(scheduler, "record_scan_results", lambda summary: recorded.append(summary) or 0)

    orch = RecordingOrchestrator(error=LocalAddressError("offline"))
    run_scheduled_scan(orch)
    assert orch.calls == 1
    assert recorded == []


def test_init_and_shutdown_scheduler():
    orch = RecordingOrchestrator(_summary([]))
    try:
        sched = scheduler.init_scheduler(orch, cron="0 */15 * * * ?", enabled=False)
        assert scheduler.init_scheduler(orch) is sched
        job = sched.get_job(scheduler.JOB_ID)
        assert job.max_instances == 1
        assert job.trigger.interval.total_seconds() == 15 * 60
        assert not scheduler.is_scheduler_enabled()
    finally:
        scheduler.shutdown_scheduler()
    assert scheduler._scheduler is None
