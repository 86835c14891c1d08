# lanwatch/scanner/analyzers/vulnerability_analyzer.py
"""
Vulnerability Analyzer.

Flags common weaknesses from a host's open-port set. Nothing is probed:
findings are a pure function of the ports, so rescanning an unchanged host
yields the same list.

Depths:
    fast   The four port-keyed checks (Telnet, plain HTTP, exposed database,
           exposed SMB). Used by the streaming scan.
    full   Per-port lookups from PORT_VULNERABILITIES, the aggregate
           "Default Credentials Risk" check, then the port-keyed checks not
           already covered. Used by the batch scan.

Findings are returned sorted by severity, then port, then type.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Tuple

from lanwatch.scanner.base import (
    AnalysisDepth,
    BaseAnalyzer,
    HostContext,
    Severity,
    Vulnerability,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-port lookup table (full mode)
# ---------------------------------------------------------------------------

PORT_VULNERABILITIES: Dict[int, Dict[str, object]] = {
    23: {
        "type": "Telnet Service",
        "severity": Severity.CRITICAL,
        "service": "Telnet",
        "description": (
            "Telnet service detected. Telnet transmits data in plaintext "
            "and is highly insecure."
        ),
    },
    135: {
        "type": "RPC Endpoint Mapper",
        "severity": Severity.HIGH,
        "service": "RPC",
        "description": "RPC endpoint mapper detected. Can be used for enumeration attacks.",
    },
    3389: {
        "type": "Remote Desktop Protocol",
        "severity": Severity.HIGH,
        "service": "RDP",
        "description": (
            "RDP service detected. Ensure strong authentication and consider "
            "restricting access."
        ),
    },
}

CREDENTIAL_PORTS = frozenset({22, 23, 3389})

SMB_RECOMMENDATIONS_FAST: Tuple[str, ...] = (
    "Apply Windows security patches (MS17-010, KB4551762+), critical even on a local network",
    "Disable SMBv1 if not needed (protects against WannaCry/NotPetya propagation)",
    "Enable SMB Signing (prevents MITM attacks on the local network)",
    "Restrict SMB access via firewall to authorized subnets only",
)

SMB_RECOMMENDATIONS_FULL: Tuple[str, ...] = (
    "Apply all Windows security patches (MS17-010 for EternalBlue, KB4551762+ for SMBGhost)",
    "Disable SMBv1 if not needed (protects against WannaCry/NotPetya that spread via the local network)",
    "Enable SMB Signing to prevent man-in-the-middle attacks on the local network",
    "Restrict SMB access via firewall to authorized subnets only",
    "Use strong passwords and enable multi-factor authentication",
    "Limit SMB shares to authorized users only",
    "Disable anonymous SMB access (RestrictAnonymous)",
    "Use SMBv3 with encryption if available",
    "Monitor SMB access attempts in logs to detect malware propagation",
    "Segment the network (VLAN) to isolate critical devices",
)


def _sorted(vulns: List[Vulnerability]) -> List[Vulnerability]:
    return sorted(vulns, key=Vulnerability.sort_key)


# ---------------------------------------------------------------------------
# Fast mode
# ---------------------------------------------------------------------------

def analyze_fast(open_ports: Iterable[int]) -> List[Vulnerability]:
    ports = frozenset(open_ports)
    vulns: List[Vulnerability] = []

    if 23 in ports:
        vulns.append(Vulnerability(
            type="Telnet Service",
            severity=Severity.CRITICAL,
            description="Telnet transmits data in plaintext",
            port=23,
        ))

    if 80 in ports and 443 not in ports:
        vulns.append(Vulnerability(
            type="Unencrypted HTTP",
            severity=Severity.MEDIUM,
            description="HTTP without HTTPS",
            port=80,
        ))

    if 3306 in ports or 5432 in ports:
        vulns.append(Vulnerability(
            type="Database Service Exposed",
            severity=Severity.CRITICAL,
            description="Database service on network",
            port=3306 if 3306 in ports else 5432,
        ))

    if 445 in ports or 139 in ports:
        vulns.append(Vulnerability(
            type="SMB Service Exposed",
            severity=Severity.HIGH,
            description="SMB service detected. Requires security hardening.",
            port=445 if 445 in ports else 139,
            recommendations=SMB_RECOMMENDATIONS_FAST,
        ))

    return _sorted(vulns)


# ---------------------------------------------------------------------------
# Full mode
# ---------------------------------------------------------------------------

def analyze_full(open_ports: Iterable[int]) -> List[Vulnerability]:
    ports = frozenset(open_ports)
    vulns: List[Vulnerability] = []

    for port in sorted(ports):
        entry = PORT_VULNERABILITIES.get(port)
        if entry is None:
            continue
        vulns.append(Vulnerability(
            type=entry["type"],
            severity=entry["severity"],
            description=entry["description"],
            port=port,
            service=entry["service"],
        ))

    if ports & CREDENTIAL_PORTS:
        vulns.append(Vulnerability(
            type="Default Credentials Risk",
            severity=Severity.HIGH,
            description="Remote access service detected. Ensure strong passwords are configured.",
        ))

    if 80 in ports and 443 not in ports:
        vulns.append(Vulnerability(
            type="Unencrypted HTTP",
            severity=Severity.MEDIUM,
            description="HTTP service detected without HTTPS. Data transmission is unencrypted.",
            port=80,
            service="HTTP",
        ))

    if 3306 in ports or 5432 in ports:
        mysql = 3306 in ports
        vulns.append(Vulnerability(
            type="Database Service Exposed",
            severity=Severity.CRITICAL,
            description=(
                "Database service detected on network. Ensure proper firewall "
                "rules and authentication."
            ),
            port=3306 if mysql else 5432,
            service="MySQL" if mysql else "PostgreSQL",
        ))

    if 445 in ports or 139 in ports:
        vulns.append(Vulnerability(
            type="SMB Service Exposed",
            severity=Severity.HIGH,
            description=(
                "SMB service detected on local network. Vulnerable to EternalBlue, "
                "SMBGhost, and malware propagation (WannaCry, NotPetya) even on a "
                "local network. Requires security hardening."
            ),
            port=445 if 445 in ports else 139,
            service="SMB",
            recommendations=SMB_RECOMMENDATIONS_FULL,
        ))

    return _sorted(vulns)


def analyze(open_ports: Iterable[int], depth: AnalysisDepth = AnalysisDepth.FAST) -> List[Vulnerability]:
    if depth == AnalysisDepth.FULL:
        return analyze_full(open_ports)
    return analyze_fast(open_ports)


class VulnerabilityAnalyzer(BaseAnalyzer):

    @property
    def name(self) -> str:
        return "vulnerability_analyzer"

    def analyze(self, ctx: HostContext) -> List[Vulnerability]:
        return analyze(ctx.open_ports, ctx.request.analysis_depth)
