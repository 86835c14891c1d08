"""
Device classification from open ports.
"""

import pytest

from lanwatch.scanner.analyzers.device_classifier import (
    DeviceClassifier,
    classify,
    classify_device_type,
    describe_capabilities,
    identify_os,
)
from lanwatch.scanner.base import HostContext, ScanRequest


def test_empty_port_set_is_unknown_device():
    assert classify(set()) == ("Unknown Device", None)
    assert classify([]) == ("Unknown Device", None)


def test_ssh_and_http_is_ssh_detected_server():
    assert classify({22, 80}) == ("Server", "Linux/Unix (SSH detected)")


def test_telnet_alone_falls_through_to_network_device():
    assert classify({23}) == ("Network Device", None)


def test_rdp_is_windows_pc():
    assert classify({3389}) == ("Windows PC", "Windows (RDP detected)")


def test_classification_is_order_independent():
    assert classify({80, 443}) == classify({443, 80})
    assert classify([443, 80]) == classify((80, 443))
    assert classify({80, 443})[0] == "Router/Gateway"


@pytest.mark.parametrize("ports, expected", [
    ({80}, "Router/Gateway"),
    ({80, 8080, 9100}, "Router/Gateway"),
    ({22, 3306}, "Server"),
    ({22, 5432}, "Server"),
    ({445}, "Windows PC"),
    ({139, 443}, "NAS/Storage"),
    ({135, 445}, "Windows PC"),
    ({9100}, "Printer"),
    ({515, 631}, "Printer"),
    ({8080}, "Web Server"),
    ({443, 22}, "Web Server"),
    ({22}, "Linux/Unix Server"),
    ({5000}, "Network Device"),
])
def test_first_match_rules(ports, expected):
    assert classify_device_type(ports) == expected


def test_http_with_many_ports_and_ssh_is_server_not_router():
    # 22 rules out the router branch, then 22+80 matches Server
    assert classify_device_type({22, 80, 443}) == "Server"


@pytest.mark.parametrize("ports, expected", [
    ({3389, 22}, "Windows (RDP detected)"),
    ({22}, "Linux/Unix (SSH detected)"),
    ({22, 443}, "Linux/Unix (SSH detected)"),
    ({22, 80}, "Linux/Unix (SSH detected)"),
    ({22, 80, 139}, "Linux/Unix (SSH detected)"),
    ({22, 80, 443}, "Linux/Unix (SSH detected)"),
    ({22, 80, 445}, "Windows (SMB detected)"),
    ({139}, "Windows (SMB detected)"),
    ({80, 443}, None),
])
def test_os_guess(ports, expected):
    assert identify_os(ports) == expected


def test_capabilities():
    caps = describe_capabilities("192.168.1.10", {443, 8080, 3306, 445, 22})
    assert caps == {
        "web_url": "https://192.168.1.10",
        "database_server": "MySQL",
        "file_sharing": True,
        "remote_access": "SSH",
    }

    caps = describe_capabilities("192.168.1.11", {8080, 5432, 3389})
    assert caps["web_url"] == "http://192.168.1.11:8080"
    assert caps["database_server"] == "PostgreSQL"
    assert caps["remote_access"] == "RDP"
    assert caps["file_sharing"] is False


def test_analyzer_ignores_identity_metadata():
    ctx = HostContext(ip_address="192.168.1.21", request=ScanRequest(network_prefix="192.168.1"))
    ctx.identity = {"hostname": "HUB-BLUESOUND", "vendor": "Apple"}
    result = DeviceClassifier().run(ctx)
    assert result["device_type"] == "Unknown Device"
    assert result["os_guess"] is None
    assert result["web_url"] is None
