# posturescan/scanner/stages/vuln_stage.py
"""
Passive Vulnerability Heuristics Stage.

Sends exactly ONE extra request: the target URL with a fixed XSS-style
payload in the `fuzz` query parameter, then pattern-matches the body.
This is deliberately not a fuzzer.

Checks performed:
    HIGH:
        - SQL error text in the response                   (vuln-sql-error)
    MEDIUM:
        - Payload reflected verbatim                       (vuln-reflected-input)
    INFO:
        - Request failed (timeout / network)               (vuln-fuzz-failed)

A failed fuzz request never fails the stage.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from posturescan.scanner.base import BaseStage, Finding, ScanContext, StageResult
from posturescan.scanner.probes import http_probe

logger = logging.getLogger(__name__)

FUZZ_PARAM = "fuzz"
FUZZ_PAYLOAD = "<script>alert(1)</script>"

# Database error signatures (case-insensitive)
SQL_ERROR_PATTERNS = [
    ("MySQL", re.compile(r"SQL syntax", re.I)),
    ("MySQL", re.compile(r"mysql_fetch", re.I)),
    ("Oracle", re.compile(r"ORA-\d{5}", re.I)),
    ("PostgreSQL", re.compile(r"PostgreSQL.*ERROR", re.I)),
    ("Generic", re.compile(r"SQLSTATE", re.I)),
    ("PostgreSQL", re.compile(r"syntax error at or near", re.I)),
    ("MSSQL", re.compile(r"unclosed quotation mark", re.I)),
    ("SQLite", re.compile(r"SQLite3::", re.I)),
    ("MSSQL", re.compile(r"Microsoft OLE DB Provider for SQL Server", re.I)),
]

NON_PRINTABLE_RE = re.compile(r"[^\x09\x0A\x0D\x20-\x7E]")


def sanitize_body(text: str) -> str:
    """Strip everything except printable ASCII, tab and newlines."""
    return NON_PRINTABLE_RE.sub("", text or "")


def match_sql_error(body: str) -> Optional[str]:
    """Database name of the first matching SQL error signature."""
    for database, pattern in SQL_ERROR_PATTERNS:
        if pattern.search(body):
            return database
    return None


class VulnStage(BaseStage):
    """One reflected-input / SQL-error probe per target."""

    label = "Vulnerability"
    category = "Vulnerabilities"
    error_id = "vuln-error"
    error_severity = "medium"

    @property
    def name(self) -> str:
        return "vulnerabilities"

    def applies(self, ctx: ScanContext) -> bool:
        return ctx.config.mode in ("website", "api")

    async def execute(self, ctx: ScanContext) -> StageResult:
        target = ctx.target
        res = await http_probe.fetch(
            target.url,
            method=target.method,
            headers=target.request_headers(),
            params={FUZZ_PARAM: FUZZ_PAYLOAD},
            content=target.body,
            timeout=ctx.config.http_timeout,
        )

        if not res.success:
            logger.info(f"Fuzz request to {target.url} failed: {res.error}")
            return StageResult(
                stage=self.name,
                findings=[self.finding(
                    id="vuln-fuzz-failed",
                    name="Fuzzing Failed",
                    status="info",
                    severity="info",
                    message=f"Fuzz request error: {res.error}",
                    details={"errorKind": res.error_kind},
                )],
                data={"fuzzed": False},
            )

        body = sanitize_body(res.raw_data.get("body", ""))
        findings: List[Finding] = []

        database = match_sql_error(body)
        if database:
            findings.append(self.finding(
                id="vuln-sql-error",
                name="Possible SQL Error Disclosure",
                status="failed",
                severity="high",
                message="Response contained SQL error text after the fuzz payload",
                details={"database": database, "parameter": FUZZ_PARAM},
                recommendation="Use parameterized queries and return generic error pages",
            ))

        reflected = FUZZ_PAYLOAD in body
        if reflected:
            findings.append(self.finding(
                id="vuln-reflected-input",
                name="Reflected Input",
                status="failed",
                severity="medium",
                message="Fuzz payload was reflected in the response without encoding",
                details={"parameter": FUZZ_PARAM, "payload": FUZZ_PAYLOAD},
                recommendation="HTML-encode user input before rendering it and add a Content-Security-Policy",
            ))

        if not findings:
            findings.append(self.finding(
                id="vuln-none",
                name="Injection Heuristics",
                status="passed",
                severity="info",
                message="No reflected input or SQL error text detected",
            ))

        return StageResult(
            stage=self.name,
            findings=findings,
            data={
                "fuzzed": True,
                "status_code": res.raw_data.get("status_code"),
                "reflected": reflected,
                "sql_error": database,
            },
        )
