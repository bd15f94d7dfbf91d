# posturescan/scanner/__init__.py
"""
Security posture scan pipeline.

    from posturescan.scanner import run_scan
    report = run_scan("https://example.com", {"mode": "website"})
    report.to_dict()
"""
from posturescan.scanner.cache import TTLCache
from posturescan.scanner.config import ScanConfig
from posturescan.scanner.errors import (
    ProbeError,
    ProbeNetworkError,
    ProbeParseError,
    ProbeTimeout,
    ScanDenied,
    ScanError,
    ValidationError,
)
from posturescan.scanner.openapi import parse_openapi
from posturescan.scanner.pipeline import QuotaDecision, ScanPipeline, ScanReport, run_scan, run_scans
from posturescan.scanner.target import Target, parse_target

__all__ = [
    "ScanPipeline", "ScanReport", "QuotaDecision", "run_scan", "run_scans", "parse_openapi",
    "ScanConfig", "Target", "parse_target", "TTLCache",
    "ScanError", "ValidationError", "ScanDenied", "ProbeError",
    "ProbeTimeout", "ProbeNetworkError", "ProbeParseError",
]
