# posturescan/scanner/errors.py
"""
Exception taxonomy for the scan pipeline.

Only ValidationError and ScanDenied ever reach the caller of the pipeline.
ProbeError subclasses are raised inside a stage (usually via
ProbeResult.unwrap()) and are turned into an error-status Finding at the
stage boundary by BaseStage.run().
"""

from __future__ import annotations

from typing import Optional


class ScanError(Exception):
    """Base class for every error raised by the scanner package."""


class ValidationError(ScanError):
    """Target or config could not be parsed. Raised before any network I/O."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ScanDenied(ScanError):
    """The caller's quota decision did not allow this scan."""

    def __init__(self, message: str = "Scan quota exhausted", remaining: int = 0):
        super().__init__(message)
        self.message = message
        self.remaining = remaining


class ProbeError(ScanError):
    """A single probe failed. Carries the probe name for the error Finding."""

    kind = "network"

    def __init__(self, message: str, probe: str = ""):
        super().__init__(message)
        self.message = message
        self.probe = probe


class ProbeTimeout(ProbeError):
    kind = "timeout"


class ProbeNetworkError(ProbeError):
    """DNS failure, connection refused, TLS handshake failure."""

    kind = "network"


class ProbeParseError(ProbeError):
    """Malformed response body, certificate or record."""

    kind = "parse"


PROBE_ERRORS = {
    ProbeTimeout.kind: ProbeTimeout,
    ProbeNetworkError.kind: ProbeNetworkError,
    ProbeParseError.kind: ProbeParseError,
}
