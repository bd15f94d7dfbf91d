# posturescan/scanner/stages/api_stage.py
"""
API Endpoint Stage (api mode only).

Checks performed:
    HIGH (warning):
        - Sensitive-looking path reached without auth      (api-bola-heuristic)
    MEDIUM (warning):
        - Write method without visible input validation    (api-mass-assignment)
        - No rate-limit headers                            (api-rate-limit)
    INFO:
        - Endpoint reachable                               (api-reachable)
        - Endpoint requires authentication (401/403)       (api-auth-required)

Heuristics only: nothing here proves a vulnerability, every warning asks
for manual verification.
"""

from __future__ import annotations

import logging
import re
from typing import List

from posturescan.scanner.base import BaseStage, Finding, ScanContext, StageResult
from posturescan.scanner.probes import http_probe

logger = logging.getLogger(__name__)

SENSITIVE_PATH_RE = re.compile(r"/(user|users|account|accounts|profile|profiles|admin)/", re.I)

WRITE_METHODS = ("POST", "PUT", "PATCH")


class APIStage(BaseStage):
    """Access-control, input and abuse heuristics for one API endpoint."""

    label = "API"
    category = "API Security"
    error_id = "api-error"
    error_severity = "medium"

    @property
    def name(self) -> str:
        return "api"

    def applies(self, ctx: ScanContext) -> bool:
        return ctx.config.mode == "api"

    async def execute(self, ctx: ScanContext) -> StageResult:
        target = ctx.target
        res = await http_probe.fetch(
            target.url,
            method=target.method,
            headers=target.request_headers(),
            content=target.body,
            timeout=ctx.config.http_timeout,
        )
        data = res.unwrap()
        status_code = data["status_code"]
        headers = data["headers"]

        findings: List[Finding] = [self.finding(
            id="api-reachable",
            name="Endpoint Reachable",
            status="passed",
            severity="info",
            message=f"Endpoint responded with HTTP {status_code}",
            details={"statusCode": status_code, "method": target.method},
        )]

        if status_code in (401, 403):
            findings.append(self.finding(
                id="api-auth-required",
                name="Auth Required",
                status="info",
                severity="info",
                message="Endpoint requires authentication",
                details={"statusCode": status_code},
            ))

        if target.auth is None and SENSITIVE_PATH_RE.search(target.url):
            findings.append(self.finding(
                id="api-bola-heuristic",
                name="BOLA/BFLA Heuristic",
                status="warning",
                severity="high",
                message="Sensitive-looking path accessed without auth; verify object and function level access controls",
                details={"path": target.path},
                recommendation="Enforce object/function level authorization and test with authenticated contexts",
            ))

        if target.method in WRITE_METHODS:
            findings.append(self.finding(
                id="api-mass-assignment",
                name="Mass Assignment Heuristic",
                status="warning",
                severity="medium",
                message="Write operation without detected schema validation; risk of mass assignment",
                details={"method": target.method},
                recommendation="Whitelist allowed fields and validate request bodies server-side",
            ))

        findings.append(self._rate_limit_finding(headers))

        logger.info(f"API {target.method} {target.url}: HTTP {status_code}, {len(findings)} check(s)")

        return StageResult(
            stage=self.name,
            findings=findings,
            data={"status_code": status_code, "headers": headers},
        )

    def _rate_limit_finding(self, headers) -> Finding:
        limit = headers.get("x-ratelimit-limit")
        if limit:
            return self.finding(
                id="api-rate-limit",
                name="Rate Limiting",
                status="passed",
                severity="info",
                message=f"Rate limit header present ({limit})",
                details={"limit": limit},
            )
        return self.finding(
            id="api-rate-limit",
            name="Rate Limiting",
            status="warning",
            severity="medium",
            message="No rate-limit headers detected",
            recommendation="Apply per-client rate limits and advertise them with X-RateLimit-* headers",
        )
