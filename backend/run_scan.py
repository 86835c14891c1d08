#!/usr/bin/env python3
"""
run_scan.py

Scans the local /24 network from the command line.

Usage:
    # Streaming scan, devices printed as they are found:
    python run_scan.py

    # Full batch scan with banners and full vulnerability analysis:
    python run_scan.py --batch

    # Specific range, device-name hints, JSON output:
    python run_scan.py --prefix 192.168.1 --hints devices.csv --json

    # Keep running and scan on the configured schedule:
    python run_scan.py --schedule

Run from the backend directory (where lanwatch/ lives).
"""

import argparse
import json
import os
import sys
import time

# Ensure the package is importable
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from lanwatch import create_scanner
from lanwatch.scanner import LocalAddressError, ScanRequest
from lanwatch.scheduler import record_scan_results, shutdown_scheduler


def _print_device(device, completed, total):
    ports = ",".join(str(p) for p in device.open_ports) or "-"
    name = device.hostname or "?"
    print(f"[{completed:3d}/{total}] {device.ip_address:15s} {name:30s} {device.device_type:18s} ports={ports}")
    for v in device.vulnerabilities:
        print(f"{'':22s}! {v.severity.value:8s} {v.type}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Scan the local network")
    parser.add_argument("--batch", action="store_true", help="full scan, results at the end")
    parser.add_argument("--prefix", help="first three octets, e.g. 192.168.1")
    parser.add_argument("--hints", help="device-name hints file (ordinal;ip;name;mac)")
    parser.add_argument("--deadline", type=float, help="global deadline in seconds")
    parser.add_argument("--json", action="store_true", help="print results as JSON")
    parser.add_argument("--record", action="store_true", help="save new devices to history")
    parser.add_argument("--schedule", action="store_true", help="run scheduled scans until interrupted")
    args = parser.parse_args(argv)

    config = {}
    if args.hints:
        config["DEVICE_HINTS_FILE"] = args.hints
    if args.schedule:
        config["SCHEDULER_ENABLED"] = True
    orchestrator = create_scanner(config)

    if args.schedule:
        print("Scheduled scans running. Ctrl+C to stop.")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            shutdown_scheduler()
        return 0

    overrides = {}
    if args.prefix:
        overrides["network_prefix"] = args.prefix
    if args.deadline:
        overrides["deadline"] = args.deadline

    try:
        if args.batch:
            devices = orchestrator.run_batch_scan(ScanRequest.batch(**overrides))
            summary = orchestrator.last_summary
            if not args.json:
                for d in sorted(devices, key=lambda d: tuple(int(o) for o in d.ip_address.split("."))):
                    _print_device(d, summary.completed, summary.total)
        else:
            on_device = (lambda *_: None) if args.json else _print_device
            summary = orchestrator.run_streaming_scan(ScanRequest.streaming(**overrides), on_device)
    except LocalAddressError as e:
        print(f"Scan failed: {e}", file=sys.stderr)
        return 2

    if args.record:
        new_count = record_scan_results(summary)
        print(f"{new_count} new devices saved to history.")

    if args.json:
        print(json.dumps(summary.to_dict(), indent=2, default=str))
    else:
        print(f"\n{summary.devices_found} devices found, {summary.completed}/{summary.total} "
              f"addresses in {summary.duration_seconds}s ({summary.state.value})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
