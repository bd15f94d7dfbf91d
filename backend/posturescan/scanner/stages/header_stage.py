# posturescan/scanner/stages/header_stage.py
"""
HTTP Security Headers Stage.

One request to the target URL (target method, headers, auth and body),
then a fixed checklist over the response headers.

Checks performed:
    HIGH:
        - Missing Content-Security-Policy                  (header-csp, failed)
        - Missing Strict-Transport-Security                (header-hsts, failed)
        - CORS wildcard origin with credentials            (cors-wildcard, failed)

    CRITICAL:
        - Access-Control-Allow-Credentials with wildcard   (cors-credentials-wildcard)

    MEDIUM (warning):
        - Missing X-Frame-Options                          (header-xfo)
        - Missing X-Content-Type-Options                   (header-xcto)
        - CORS wildcard origin                             (cors-wildcard)

    LOW (warning):
        - Missing Referrer-Policy, X-XSS-Protection,
          X-Permitted-Cross-Domain-Policies, Cache-Control,
          Permissions-Policy
        - Any header present with an unexpected value
        - Server / X-Powered-By version disclosure         (header-server-disclosure)

    GRADE:
        - Weighted header score over 110 points → A+..F    (headers-grade)
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from posturescan.scanner.base import BaseStage, Finding, ScanContext, StageResult
from posturescan.scanner.probes import http_probe
from posturescan.scanner.stages.ssl_stage import grade_status
from posturescan.utils.scoring import score_grade

logger = logging.getLogger(__name__)

GOOD_REFERRER_POLICIES = {
    "no-referrer",
    "no-referrer-when-downgrade",
    "strict-origin",
    "strict-origin-when-cross-origin",
}

# Maximum weighted points; the header score is normalized against this
MAX_HEADER_POINTS = 110

VERSION_RE = re.compile(r"\d+\.\d+")


# ---------------------------------------------------------------------------
# Value evaluators: value → (acceptable, points, note)
# ---------------------------------------------------------------------------

def _eval_csp(value: str) -> Tuple[bool, int, Optional[str]]:
    points, ok, notes = 25, True, []
    if "'unsafe-inline'" in value:
        points -= 10
        ok = False
        notes.append("Uses 'unsafe-inline' which weakens CSP")
    if "'unsafe-eval'" in value:
        points -= 10
        ok = False
        notes.append("Uses 'unsafe-eval' which allows code execution")
    if "default-src" in value:
        points += 5
    if "upgrade-insecure-requests" in value:
        points += 2
    if "frame-ancestors" in value:
        points += 3
    return ok, max(0, min(25, points)), "; ".join(notes) or None


def _eval_hsts(value: str) -> Tuple[bool, int, Optional[str]]:
    points, ok, note = 15, True, None
    m = re.search(r"max-age=(\d+)", value, re.IGNORECASE)
    if m:
        max_age = int(m.group(1))
        if max_age >= 31536000:
            points += 5
        elif max_age >= 15768000:
            points += 3
        elif max_age < 86400:
            points -= 5
            ok = False
            note = "max-age is too short (less than 1 day)"
    lower = value.lower()
    if "includesubdomains" in lower:
        points += 3
    if "preload" in lower:
        points += 2
    return ok, max(0, min(20, points)), note


def _eval_xfo(value: str) -> Tuple[bool, int, Optional[str]]:
    upper = value.strip().upper()
    if upper in ("DENY", "SAMEORIGIN"):
        return True, 15, None
    if upper.startswith("ALLOW-FROM"):
        return False, 10, "ALLOW-FROM is obsolete; use DENY or SAMEORIGIN"
    return False, 5, "Value should be DENY or SAMEORIGIN"


def _eval_xcto(value: str) -> Tuple[bool, int, Optional[str]]:
    if value.strip().lower() == "nosniff":
        return True, 10, None
    return False, 5, "Value should be nosniff"


def _eval_referrer(value: str) -> Tuple[bool, int, Optional[str]]:
    # Multiple comma-separated policies: the last one the browser knows wins
    policy = value.split(",")[-1].strip().lower()
    if policy in GOOD_REFERRER_POLICIES:
        return True, 10, None
    return False, 5, f"Policy '{policy}' may leak full URLs to other origins"


def _eval_xxss(value: str) -> Tuple[bool, int, Optional[str]]:
    v = value.strip()
    if v.startswith("0"):
        return False, 3, "Filter explicitly disabled"
    return True, 5 if "mode=block" in v else 3, None


def _eval_xpcdp(value: str) -> Tuple[bool, int, Optional[str]]:
    if value.strip().lower() in ("none", "master-only"):
        return True, 0, None
    return False, 0, "Value should be none or master-only"


def _eval_cache_control(value: str) -> Tuple[bool, int, Optional[str]]:
    lower = value.lower()
    if any(d in lower for d in ("no-store", "private", "no-cache")):
        return True, 0, None
    return False, 0, "Responses may be stored by shared caches"


def _eval_present(points: int) -> Callable[[str], Tuple[bool, int, Optional[str]]]:
    return lambda value: (True, points, None)


# Checklist in finding order
# (finding id, header, display name, missing status, missing severity, evaluator, recommendation)
HEADER_CHECKS: List[Tuple[str, str, str, str, str, Callable, str]] = [
    ("header-csp", "content-security-policy", "Content-Security-Policy",
     "failed", "high", _eval_csp,
     "Add Content-Security-Policy header to prevent XSS attacks"),
    ("header-hsts", "strict-transport-security", "Strict-Transport-Security (HSTS)",
     "failed", "high", _eval_hsts,
     "Add Strict-Transport-Security: max-age=31536000; includeSubDomains"),
    ("header-xfo", "x-frame-options", "X-Frame-Options",
     "warning", "medium", _eval_xfo,
     "Add X-Frame-Options: DENY or SAMEORIGIN to prevent clickjacking"),
    ("header-xcto", "x-content-type-options", "X-Content-Type-Options",
     "warning", "medium", _eval_xcto,
     "Add X-Content-Type-Options: nosniff to prevent MIME sniffing"),
    ("header-referrer", "referrer-policy", "Referrer-Policy",
     "warning", "low", _eval_referrer,
     "Add Referrer-Policy: strict-origin-when-cross-origin"),
    ("header-xxss", "x-xss-protection", "X-XSS-Protection",
     "warning", "low", _eval_xxss,
     "Add X-XSS-Protection: 1; mode=block for legacy browsers"),
    ("header-xpcdp", "x-permitted-cross-domain-policies", "X-Permitted-Cross-Domain-Policies",
     "warning", "low", _eval_xpcdp,
     "Add X-Permitted-Cross-Domain-Policies: none"),
    ("header-cache-control", "cache-control", "Cache-Control",
     "warning", "low", _eval_cache_control,
     "Add Cache-Control: no-store for pages with sensitive content"),
    ("header-permissions", "permissions-policy", "Permissions-Policy",
     "warning", "low", _eval_present(10),
     "Add Permissions-Policy: camera=(), microphone=(), geolocation=()"),
]

# Scored only (no finding of their own)
ISOLATION_HEADERS = {
    "cross-origin-opener-policy": 5,
    "cross-origin-resource-policy": 5,
    "cross-origin-embedder-policy": 5,
}


class HeaderStage(BaseStage):
    """Security header checklist, CORS checks and the headers sub-grade."""

    label = "Headers"
    category = "Headers"
    error_id = "headers-error"
    error_severity = "medium"

    @property
    def name(self) -> str:
        return "headers"

    def applies(self, ctx: ScanContext) -> bool:
        return ctx.config.mode in ("website", "api")

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
        headers: Dict[str, str] = data["headers"]

        findings, points = self._checklist(headers)
        findings.extend(self._cors_findings(headers))
        disclosure = self._disclosure_finding(headers)
        if disclosure:
            findings.append(disclosure)

        for header, weight in ISOLATION_HEADERS.items():
            if headers.get(header):
                points += weight

        score = min(100, round(points / MAX_HEADER_POINTS * 100))
        grade = score_grade(score)
        status, severity = grade_status(grade)
        findings.append(self.finding(
            id="headers-grade",
            name="Security Headers Grade",
            status=status,
            severity=severity,
            message=f"Security headers grade: {grade} (Score: {score}/100)",
            details={"grade": grade, "score": score},
        ))

        logger.info(f"Headers {target.url}: grade {grade} ({score}/100)")

        return StageResult(
            stage=self.name,
            findings=findings,
            data={
                "grade": grade,
                "score": score,
                "headers": headers,
                "status_code": data["status_code"],
                "final_url": data["final_url"],
            },
        )

    # -------------------------------------------------------------------
    # Checklist
    # -------------------------------------------------------------------

    def _checklist(self, headers: Dict[str, str]) -> Tuple[List[Finding], int]:
        findings: List[Finding] = []
        points = 0

        for fid, header, display, miss_status, miss_sev, evaluate, rec in HEADER_CHECKS:
            value = headers.get(header)
            if not value:
                findings.append(self.finding(
                    id=fid,
                    name=display,
                    status=miss_status,
                    severity=miss_sev,
                    message=f"{display} header is missing",
                    recommendation=rec,
                ))
                continue

            ok, earned, note = evaluate(value)
            points += earned
            if ok:
                findings.append(self.finding(
                    id=fid,
                    name=display,
                    status="passed",
                    severity="info",
                    message=f"{display} header is set",
                    details={"value": value},
                ))
            else:
                findings.append(self.finding(
                    id=fid,
                    name=display,
                    status="warning",
                    severity="low",
                    message=f"{display} header has a weak value: {note}",
                    details={"value": value},
                    recommendation=rec,
                ))

        return findings, points

    # -------------------------------------------------------------------
    # CORS
    # -------------------------------------------------------------------

    def _cors_findings(self, headers: Dict[str, str]) -> List[Finding]:
        origin = (headers.get("access-control-allow-origin") or "").strip()
        if origin != "*":
            return []

        credentials = (headers.get("access-control-allow-credentials") or "").strip().lower() == "true"
        if not credentials:
            return [self.finding(
                id="cors-wildcard",
                name="CORS Wildcard Origin",
                status="warning",
                severity="medium",
                message="Access-Control-Allow-Origin is set to *",
                details={"allowOrigin": origin},
                recommendation="Restrict Access-Control-Allow-Origin to trusted origins",
            )]

        return [
            self.finding(
                id="cors-wildcard",
                name="CORS Wildcard Origin",
                status="failed",
                severity="high",
                message="Access-Control-Allow-Origin is set to * on a credentialed endpoint",
                details={"allowOrigin": origin, "allowCredentials": True},
                recommendation="Restrict Access-Control-Allow-Origin to trusted origins",
            ),
            self.finding(
                id="cors-credentials-wildcard",
                name="CORS Credentials With Wildcard Origin",
                status="failed",
                severity="critical",
                message="Access-Control-Allow-Credentials: true is sent together with a wildcard origin",
                details={"allowOrigin": origin, "allowCredentials": True},
                recommendation=(
                    "Never combine credentials with a wildcard origin; echo an explicit, "
                    "allow-listed origin instead"
                ),
            ),
        ]

    # -------------------------------------------------------------------
    # Information disclosure
    # -------------------------------------------------------------------

    def _disclosure_finding(self, headers: Dict[str, str]) -> Optional[Finding]:
        leaked: Dict[str, Any] = {}
        server = headers.get("server")
        if server and VERSION_RE.search(server):
            leaked["server"] = server
        powered_by = headers.get("x-powered-by")
        if powered_by:
            leaked["x-powered-by"] = powered_by
        if not leaked:
            return None
        return self.finding(
            id="header-server-disclosure",
            name="Server Information Disclosure",
            status="warning",
            severity="low",
            message="Response headers reveal server software: " + ", ".join(leaked.values()),
            details=leaked,
            recommendation="Remove version details from Server and drop X-Powered-By",
        )
