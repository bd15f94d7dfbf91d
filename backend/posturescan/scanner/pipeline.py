# posturescan/scanner/pipeline.py
"""
Scan Pipeline.

The central coordinator. Takes a target + config, runs the selected
stages concurrently, then the Risk Analyzer, then scores and builds
recommendations.

Pipeline steps:
    1. Parse target and config (ValidationError → caller, before any I/O)
    2. Honour the caller's quota decision (ScanDenied → caller)
    3. Select stages: declaration order, filtered by stage.applies(ctx)
    4. Run selected stages concurrently, each under its own timeout
    5. Barrier, then the Risk Analyzer over the finished stage results
    6. Findings in declaration order, Risk Analyzer last
    7. Score + grade (utils.scoring), summary counts, recommendations
    8. Return an immutable ScanReport

The pipeline never raises because of a stage: a failing stage shows up as
one error-status finding in an otherwise complete report.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from posturescan.scanner.base import BaseStage, Finding, ScanContext, StageResult, now_utc
from posturescan.scanner.cache import TTLCache
from posturescan.scanner.config import ScanConfig
from posturescan.scanner.errors import ScanDenied, ValidationError
from posturescan.scanner.recommender import Recommendation, build_recommendations
from posturescan.scanner.risk_analyzer import RiskAnalyzer
from posturescan.scanner.stages import ALL_STAGES
from posturescan.scanner.target import Target, parse_target
from posturescan.utils.scoring import calculate_score, summarize

logger = logging.getLogger(__name__)

# progress(stage_name, percent, message)
ProgressCallback = Callable[[str, int, str], None]


@dataclass(frozen=True)
class QuotaDecision:
    """Allow/deny decision made by the caller's quota service."""
    allowed: bool
    remaining: int = 0


@dataclass(frozen=True)
class ScanReport:
    """
    The terminal artifact of one scan. Immutable once assembled.
    Renderers and persistence consume to_dict() read-only.
    """
    target: str
    mode: str
    timestamp: datetime
    duration_ms: int
    score: int
    grade: str
    findings: Tuple[Finding, ...]
    summary: Dict[str, int]
    recommendations: Tuple[Recommendation, ...]
    stage_durations: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "mode": self.mode,
            "timestampUTC": self.timestamp.isoformat(),
            "durationMs": self.duration_ms,
            "score": self.score,
            "grade": self.grade,
            "findings": [f.to_dict() for f in self.findings],
            "summary": {
                "passed": self.summary["passed"],
                "warning": self.summary["warning"],
                "failed": self.summary["failed"],
                "total": self.summary["total"],
                "criticalCount": self.summary["critical"],
                "highCount": self.summary["high"],
                "mediumCount": self.summary["medium"],
                "lowCount": self.summary["low"],
            },
            "recommendations": [r.to_dict() for r in self.recommendations],
            "stageDurations": dict(self.stage_durations),
        }


class ScanPipeline:
    """
    Coordinates one scan.

    Typical usage:
        pipeline = ScanPipeline()
        report = await pipeline.run("https://example.com", {"mode": "website"})

    The pipeline is stateless. Reuse one instance across scans; all
    per-scan state lives in the ScanContext.
    """

    def __init__(
        self,
        stages: Optional[Sequence[BaseStage]] = None,
        risk_analyzer: Optional[BaseStage] = None,
    ):
        self.stages: List[BaseStage] = (
            list(stages) if stages is not None else [cls() for cls in ALL_STAGES.values()]
        )
        self.risk_analyzer: BaseStage = risk_analyzer or RiskAnalyzer()

    async def run(
        self,
        target: Union[str, Target],
        config: Union[ScanConfig, Mapping[str, Any], None] = None,
        progress: Optional[ProgressCallback] = None,
        cache: Optional[TTLCache] = None,
        quota: Optional[QuotaDecision] = None,
        *,
        method: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        auth: Any = None,
        body: Optional[str] = None,
    ) -> ScanReport:
        """
        Run a full scan.

        Raises:
            ValidationError: bad target or config. No probe was sent.
            ScanDenied:      the quota decision did not allow the scan.
        """
        # --- 1. Validate ---
        scan_config = config if isinstance(config, ScanConfig) else ScanConfig.from_dict(config)
        if isinstance(target, Target):
            scan_target = target
        else:
            scan_target = parse_target(target, method=method, headers=headers, auth=auth, body=body)

        if scan_config.mode == "attack_surface" and scan_target.is_ip:
            raise ValidationError("Attack-surface scans need a domain, not an IP address", field="target")

        # --- 2. Quota ---
        if quota is not None and not quota.allowed:
            logger.info(f"Scan of {scan_target} denied by quota (remaining={quota.remaining})")
            raise ScanDenied(remaining=quota.remaining)

        # --- 3. Select stages ---
        ctx = ScanContext(
            target=scan_target,
            config=scan_config,
            cache=cache,
            started_at=now_utc(),
        )
        selected = [s for s in self.stages if s.applies(ctx)]

        logger.info(
            f"Scan started: {scan_target} mode={scan_config.mode} "
            f"stages={[s.name for s in selected]}"
        )
        total_start = time.monotonic()

        # --- 4. Fan out; gather keeps declaration order ---
        results: List[StageResult] = list(await asyncio.gather(
            *(self._run_stage(stage, ctx, progress) for stage in selected)
        ))

        # --- 5. Barrier, then cross-stage analysis ---
        ctx.stage_results = {r.stage: r for r in results}
        if self.risk_analyzer.applies(ctx):
            results.append(await self._run_stage(self.risk_analyzer, ctx, progress))

        # --- 6. Findings in declaration order ---
        findings: List[Finding] = []
        for r in results:
            findings.extend(r.findings)

        # --- 7. Aggregate ---
        ssl_grade = ctx.get_stage_data("ssl").get("grade")
        headers_grade = ctx.get_stage_data("headers").get("grade")
        score, grade = calculate_score(findings, ssl_grade=ssl_grade, headers_grade=headers_grade)
        summary = summarize(findings)
        recommendations = build_recommendations(findings)

        duration_ms = int((time.monotonic() - total_start) * 1000)
        errored = [r.stage for r in results if r.failed]

        logger.info(
            f"Scan complete: {scan_target} score={score} grade={grade} "
            f"findings={len(findings)} errors={errored or 'none'} ({duration_ms}ms)"
        )

        # --- 8. Report ---
        return ScanReport(
            target=scan_target.url,
            mode=scan_config.mode,
            timestamp=ctx.started_at,
            duration_ms=duration_ms,
            score=score,
            grade=grade,
            findings=tuple(findings),
            summary=summary,
            recommendations=tuple(recommendations),
            stage_durations={r.stage: r.duration_ms for r in results},
        )

    async def run_many(
        self,
        targets: Sequence[Target],
        config: Union[ScanConfig, Mapping[str, Any], None] = None,
        progress: Optional[ProgressCallback] = None,
        cache: Optional[TTLCache] = None,
        quota: Optional[QuotaDecision] = None,
    ) -> List[ScanReport]:
        """
        Scan several already-parsed targets in order, one report each.

        Endpoints of one API are scanned sequentially so the API under test
        sees one scan's traffic at a time. The quota decision covers the
        whole batch.
        """
        if quota is not None and not quota.allowed:
            logger.info(f"Batch of {len(targets)} target(s) denied by quota (remaining={quota.remaining})")
            raise ScanDenied(remaining=quota.remaining)

        reports: List[ScanReport] = []
        for target in targets:
            reports.append(await self.run(target, config, progress=progress, cache=cache))
        return reports

    async def _run_stage(
        self,
        stage: BaseStage,
        ctx: ScanContext,
        progress: Optional[ProgressCallback],
    ) -> StageResult:
        _notify(progress, stage.name, 0, f"Starting {stage.label} scan")
        result = await stage.run(ctx)
        if result.failed:
            _notify(progress, stage.name, 100, f"{stage.label} scan failed: {result.error}")
        else:
            _notify(progress, stage.name, 100, f"{stage.label} scan complete")
        return result


def _notify(progress: Optional[ProgressCallback], stage: str, percent: int, message: str) -> None:
    """Progress is advisory: a failing callback never affects the scan."""
    if progress is None:
        return
    try:
        progress(stage, percent, message)
    except Exception:
        logger.exception(f"Progress callback failed for stage '{stage}'")


def _run_on_private_loop(coro):
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        return loop.run_until_complete(coro)
    finally:
        asyncio.set_event_loop(None)
        loop.close()


def run_scan(
    target: Union[str, Target],
    config: Union[ScanConfig, Mapping[str, Any], None] = None,
    *,
    method: Optional[str] = None,
    headers: Optional[Mapping[str, str]] = None,
    auth: Any = None,
    body: Optional[str] = None,
    progress: Optional[ProgressCallback] = None,
    cache: Optional[TTLCache] = None,
    quota: Optional[QuotaDecision] = None,
    pipeline: Optional[ScanPipeline] = None,
) -> ScanReport:
    """
    Synchronous entry point for Flask views and scripts.
    Runs the pipeline on a private event loop.
    """
    pipeline = pipeline or ScanPipeline()
    return _run_on_private_loop(
        pipeline.run(
            target,
            config,
            progress=progress,
            cache=cache,
            quota=quota,
            method=method,
            headers=headers,
            auth=auth,
            body=body,
        )
    )


def run_scans(
    targets: Sequence[Target],
    config: Union[ScanConfig, Mapping[str, Any], None] = None,
    *,
    progress: Optional[ProgressCallback] = None,
    cache: Optional[TTLCache] = None,
    quota: Optional[QuotaDecision] = None,
    pipeline: Optional[ScanPipeline] = None,
) -> List[ScanReport]:
    """
    Synchronous multi-endpoint scan: one report per target, same order.
    Targets are scanned one after another on a single private event loop.
    """
    pipeline = pipeline or ScanPipeline()
    return _run_on_private_loop(
        pipeline.run_many(targets, config, progress=progress, cache=cache, quota=quota)
    )
