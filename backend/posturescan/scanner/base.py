# posturescan/scanner/base.py
"""
Base classes for the posture scan pipeline.

Architecture:
    ScanContext flows through:  Stages (probes → findings) → Risk Analyzer → Scorer/Recommender

Probe:      One network operation (HTTP fetch, DNS lookup, TLS handshake).
            Probes NEVER classify severity and never raise for network
            conditions. They return a ProbeResult instead.

BaseStage:  Issues probes, interprets the raw data and produces Findings
            with status/severity. A stage never aborts the pipeline: any
            exception or timeout inside it is converted to a single
            error-status Finding by run().

This separation means:
  - You can swap the DNS library without touching any classification rule
  - You can tune thresholds without changing how data is collected
  - Each stage can fail independently without crashing the whole scan
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from posturescan.scanner.errors import PROBE_ERRORS, ProbeError, ProbeNetworkError

if TYPE_CHECKING:
    from posturescan.scanner.cache import TTLCache
    from posturescan.scanner.config import ScanConfig
    from posturescan.scanner.target import Target

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

STATUSES = ("passed", "warning", "failed", "info", "error")
SEVERITIES = ("critical", "high", "medium", "low", "info")

# critical sorts first
SEVERITY_RANK = {sev: i for i, sev in enumerate(SEVERITIES)}

# Statuses that cannot carry a negative severity signal
NEUTRAL_STATUSES = ("passed", "info")


def now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Data structures that flow through the entire pipeline
# ---------------------------------------------------------------------------

@dataclass
class ProbeResult:
    """
    Standardized output from any probe.

    Fields:
        probe:        Which probe produced this (e.g., "http", "tls", "dns")
        success:      Did the network operation complete?
        raw_data:     Collected facts, structure varies per probe
        error_kind:   "timeout", "network" or "parse" when success is False
        error:        Human-readable failure message
        duration_ms:  Wall-clock time the probe took
    """
    probe: str
    success: bool = True
    raw_data: Dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0

    @classmethod
    def ok(cls, probe: str, raw_data: Dict[str, Any], duration_ms: int = 0) -> "ProbeResult":
        return cls(probe=probe, success=True, raw_data=raw_data, duration_ms=duration_ms)

    @classmethod
    def fail(cls, probe: str, error_kind: str, error: str, duration_ms: int = 0) -> "ProbeResult":
        return cls(
            probe=probe,
            success=False,
            error_kind=error_kind,
            error=error,
            duration_ms=duration_ms,
        )

    def unwrap(self) -> Dict[str, Any]:
        """Return raw_data, or raise the typed ProbeError for this failure."""
        if self.success:
            return self.raw_data
        exc_cls = PROBE_ERRORS.get(self.error_kind or "", ProbeNetworkError)
        raise exc_cls(self.error or f"{self.probe} probe failed", probe=self.probe)


@dataclass(frozen=True)
class Finding:
    """
    One normalized check result.

    Fields:
        id:             Stable slug, e.g. "ssl-expiry". Unique per stage-check.
        name:           Human-readable title.
        category:       Grouping: "SSL/TLS", "Headers", "DNS", "Vulnerabilities", ...
        status:         passed, warning, failed, info, error
        severity:       critical, high, medium, low, info
        message:        What was observed.
        details:        Evidence dict.
        recommendation: How to fix it, when there is something to fix.
    """
    id: str
    name: str
    category: str
    status: str
    severity: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    recommendation: Optional[str] = None

    def __post_init__(self):
        if self.status not in STATUSES:
            raise ValueError(f"Unknown finding status '{self.status}'")
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown finding severity '{self.severity}'")
        # A passing or informational check is never a negative signal
        if self.status in NEUTRAL_STATUSES and self.severity != "info":
            object.__setattr__(self, "severity", "info")

    @property
    def penalized(self) -> bool:
        return self.status in ("failed", "error")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "status": self.status,
            "severity": self.severity,
            "message": self.message,
        }
        if self.details:
            out["details"] = self.details
        if self.recommendation:
            out["recommendation"] = self.recommendation
        return out


@dataclass
class StageResult:
    """
    Everything one stage produced.

    findings feed the report; data is the structured output the Risk
    Analyzer reads after the concurrency barrier.
    """
    stage: str
    findings: List[Finding] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class ScanContext:
    """
    The data bag handed to every stage.

    Built once by the pipeline. Stages treat it as read-only; the only field
    written after creation is stage_results, filled in after all feeder
    stages have finished and before the Risk Analyzer runs.
    """
    target: "Target"
    config: "ScanConfig"
    cache: Optional["TTLCache"] = None
    stage_results: Dict[str, StageResult] = field(default_factory=dict)
    started_at: Optional[datetime] = None

    def get_stage_data(self, stage_name: str) -> Dict[str, Any]:
        """
        Structured output of a finished stage.
        Returns empty dict if the stage didn't run or failed.
        """
        result = self.stage_results.get(stage_name)
        if result and not result.failed:
            return result.data
        return {}

    def stage_failed(self, stage_name: str) -> bool:
        result = self.stage_results.get(stage_name)
        return result is not None and result.failed


# ---------------------------------------------------------------------------
# Abstract base class
# ---------------------------------------------------------------------------

class BaseStage(ABC):
    """
    Abstract base for scan stages.

    To create a new stage:
        1. Subclass BaseStage
        2. Set the `name` property (e.g., "ssl", "headers", "dns")
        3. Set label, category, error_id and error_severity
        4. Implement `async execute(ctx) -> StageResult`
        5. Optionally override `applies(ctx)` to restrict it to a mode
        6. Append an instance to stages.ALL_STAGES in declaration order

    The base class handles automatically:
        - Timing (duration_ms is set automatically)
        - The per-stage timeout ceiling
        - Error catching (exceptions become one error-status Finding)
    """

    label: str = ""
    category: str = ""
    error_id: str = ""
    error_severity: str = "medium"

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique stage identifier. Used as key in ScanContext.stage_results."""
        ...

    def applies(self, ctx: ScanContext) -> bool:
        """Whether this stage runs for the target and config. Override to restrict."""
        return True

    async def run(self, ctx: ScanContext) -> StageResult:
        """
        Execute the stage with automatic timing, timeout and error handling.

        DO NOT OVERRIDE THIS METHOD. Override `execute()` instead.

        Always returns a StageResult, even on failure.
        """
        timeout = ctx.config.stage_timeout
        start = time.monotonic()

        try:
            result = await asyncio.wait_for(self.execute(ctx), timeout=timeout)
            result.stage = self.name
        except asyncio.TimeoutError:
            logger.warning(f"Stage '{self.name}' timed out after {timeout:g}s for {ctx.target.hostname}")
            result = self.error_result(f"{self.label} check timed out after {timeout:g}s")
        except ProbeError as e:
            logger.warning(f"Stage '{self.name}' probe failed for {ctx.target.hostname}: {e}")
            result = self.error_result(str(e), kind=e.kind)
        except Exception as e:
            logger.exception(f"Stage '{self.name}' failed for {ctx.target.hostname}")
            result = self.error_result(f"{type(e).__name__}: {e}")
        finally:
            elapsed = int((time.monotonic() - start) * 1000)

        result.duration_ms = elapsed
        return result

    @abstractmethod
    async def execute(self, ctx: ScanContext) -> StageResult:
        """
        Perform probing and classification. Override this in subclasses.

        Raise ProbeError (usually via ProbeResult.unwrap()) when the stage
        cannot produce meaningful findings; run() turns it into the stage's
        error Finding.
        """
        ...

    # -------------------------------------------------------------------
    # Helpers for subclasses
    # -------------------------------------------------------------------

    def finding(
        self,
        id: str,
        name: str,
        status: str,
        severity: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recommendation: Optional[str] = None,
    ) -> Finding:
        return Finding(
            id=id,
            name=name,
            category=self.category,
            status=status,
            severity=severity,
            message=message,
            details=details or {},
            recommendation=recommendation,
        )

    def error_result(self, message: str, kind: Optional[str] = None) -> StageResult:
        details = {"errorKind": kind} if kind else {}
        return StageResult(
            stage=self.name,
            findings=[
                self.finding(
                    id=self.error_id,
                    name=f"{self.label} Scan Error",
                    status="error",
                    severity=self.error_severity,
                    message=f"Could not complete {self.label} scan: {message}",
                    details=details,
                )
            ],
            error=message,
        )
