# lanwatch/scanner/analyzers/__init__.py
"""
Analyzers.
Each analyzer interprets the facts engines collected about a host.
Analyzers do NOT touch the network.
"""
from lanwatch.scanner.analyzers.device_classifier import DeviceClassifier
from lanwatch.scanner.analyzers.vulnerability_analyzer import VulnerabilityAnalyzer

ALL_ANALYZERS = {
    "device_classifier": DeviceClassifier,
    "vulnerability_analyzer": VulnerabilityAnalyzer,
}

__all__ = [
    "DeviceClassifier", "VulnerabilityAnalyzer",
    "ALL_ANALYZERS",
]
