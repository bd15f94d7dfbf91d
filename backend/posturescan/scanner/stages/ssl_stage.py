# posturescan/scanner/stages/ssl_stage.py
"""
SSL/TLS Stage.

Inspects the certificate and protocol support of the target's HTTPS
endpoint. A plain-http target gets exactly one finding (no-https) and no
probes are made: plaintext HTTP cannot have TLS findings.

Checks performed:
    CRITICAL:
        - Website is not using HTTPS                       (no-https)
        - Certificate invalid / untrusted                  (ssl-valid)
        - Certificate expired                              (ssl-expiry)
        - Neither TLS 1.2 nor TLS 1.3 supported            (tls-outdated)
        - SSL configuration grade F                        (ssl-grade)
    HIGH:
        - Self-signed certificate                          (ssl-self-signed)
        - Certificate expires within 7 days                (ssl-expiry)
        - SSL configuration grade D                        (ssl-grade)
    MEDIUM:
        - Certificate expires within 30 days (warning)     (ssl-expiry)
        - TLS 1.0 still enabled (warning)                  (tls-10)
    INFO:
        - TLS 1.3 supported                                (tls-13)

The sub-grade (A+..F) feeds the report score as a bonus and is exposed in
the stage data for the Risk Analyzer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

from posturescan.scanner.base import BaseStage, Finding, ScanContext, StageResult
from posturescan.scanner.probes import tls_probe
from posturescan.utils.scoring import clamp_score, score_grade

logger = logging.getLogger(__name__)

# Cipher fragments considered weak (NULL and EXPORT are critical)
WEAK_CIPHERS = (
    "RC4", "DES", "3DES", "MD5", "NULL", "EXPORT", "ANON",
    "RC2", "IDEA", "SEED", "CAMELLIA128",
)
CRITICAL_CIPHERS = {"NULL", "EXPORT"}

# Forward-secret key exchanges
PFS_MARKERS = ("ECDHE", "DHE")

# Sub-grade deductions per weakness severity
WEAKNESS_PENALTIES = {"critical": 25, "high": 15, "medium": 10, "low": 5}


class SSLStage(BaseStage):
    """Certificate trust, expiry and protocol checks for HTTPS targets."""

    label = "SSL"
    category = "SSL/TLS"
    error_id = "ssl-error"
    error_severity = "high"

    @property
    def name(self) -> str:
        return "ssl"

    async def execute(self, ctx: ScanContext) -> StageResult:
        target = ctx.target

        if not target.is_https:
            return StageResult(
                stage=self.name,
                findings=[
                    self.finding(
                        id="no-https",
                        name="HTTPS Enabled",
                        status="failed",
                        severity="critical",
                        message="Website is not using HTTPS",
                        recommendation="Enable HTTPS with a valid SSL certificate",
                    )
                ],
                data={"https": False},
            )

        timeout = ctx.config.http_timeout
        cert_res, proto_res = await asyncio.gather(
            tls_probe.inspect_certificate(target.hostname, target.effective_port, timeout=timeout),
            tls_probe.probe_protocols(target.hostname, target.effective_port, timeout=timeout),
        )
        cert = cert_res.unwrap()
        protocols = proto_res.unwrap()

        weaknesses = find_weaknesses(protocols, cert.get("cipher"), cert.get("protocol"))
        score = calculate_ssl_score(cert, protocols, weaknesses)
        grade = score_grade(score)

        findings = self._certificate_findings(cert)
        findings.extend(self._protocol_findings(protocols))
        findings.append(self._grade_finding(grade, score))

        logger.info(f"SSL {target.hostname}: grade {grade} ({score}), valid={cert.get('valid')}")

        return StageResult(
            stage=self.name,
            findings=findings,
            data={
                "https": True,
                "valid": bool(cert.get("valid")),
                "grade": grade,
                "score": score,
                "certificate": cert,
                "protocols": protocols,
                "weaknesses": weaknesses,
            },
        )

    # -------------------------------------------------------------------
    # Certificate findings
    # -------------------------------------------------------------------

    def _certificate_findings(self, cert: Dict[str, Any]) -> List[Finding]:
        findings: List[Finding] = []
        details = {
            "subject": cert.get("subject"),
            "issuer": cert.get("issuer"),
            "notAfter": cert.get("not_after"),
        }

        if cert.get("valid"):
            findings.append(self.finding(
                id="ssl-valid",
                name="SSL Certificate Valid",
                status="passed",
                severity="info",
                message="Certificate is valid and trusted",
                details=details,
            ))
        else:
            findings.append(self.finding(
                id="ssl-valid",
                name="SSL Certificate Valid",
                status="failed",
                severity="critical",
                message="Certificate validation failed",
                details={**details, "verifyError": cert.get("verify_error")},
                recommendation="Install a valid SSL certificate from a trusted CA",
            ))

        if cert.get("self_signed"):
            findings.append(self.finding(
                id="ssl-self-signed",
                name="Self-Signed Certificate",
                status="failed",
                severity="high",
                message="Certificate is self-signed",
                details=details,
                recommendation="Use a certificate from a trusted Certificate Authority",
            ))

        days = cert.get("days_until_expiry", 0)
        if days < 0:
            status, severity = "failed", "critical"
        elif days < 7:
            status, severity = "failed", "high"
        elif days < 30:
            status, severity = "warning", "medium"
        else:
            status, severity = "passed", "info"

        findings.append(self.finding(
            id="ssl-expiry",
            name="Certificate Expiration",
            status=status,
            severity=severity,
            message="Certificate has expired!" if days < 0 else f"Certificate expires in {days} days",
            details={"daysUntilExpiry": days, "notAfter": cert.get("not_after")},
            recommendation="Renew SSL certificate soon" if days < 30 else None,
        ))
        return findings

    # -------------------------------------------------------------------
    # Protocol findings
    # -------------------------------------------------------------------

    def _protocol_findings(self, protocols: Dict[str, bool]) -> List[Finding]:
        findings: List[Finding] = []
        tls13 = protocols.get("TLSv1.3", False)
        tls12 = protocols.get("TLSv1.2", False)

        if tls13:
            findings.append(self.finding(
                id="tls-13",
                name="TLS 1.3 Support",
                status="passed",
                severity="info",
                message="TLS 1.3 is supported",
            ))

        if not tls12 and not tls13:
            findings.append(self.finding(
                id="tls-outdated",
                name="Modern TLS Support",
                status="failed",
                severity="critical",
                message="Neither TLS 1.2 nor TLS 1.3 is supported",
                details={"protocols": protocols},
                recommendation="Enable TLS 1.2 or TLS 1.3",
            ))

        if protocols.get("TLSv1.0"):
            findings.append(self.finding(
                id="tls-10",
                name="TLS 1.0 Enabled",
                status="warning",
                severity="medium",
                message="TLS 1.0 is still enabled (deprecated)",
                recommendation="Disable TLS 1.0",
            ))
        return findings

    def _grade_finding(self, grade: str, score: int) -> Finding:
        status, severity = grade_status(grade)
        return self.finding(
            id="ssl-grade",
            name="SSL Configuration Grade",
            status=status,
            severity=severity,
            message=f"SSL configuration grade: {grade}",
            details={"grade": grade, "score": score},
        )


# ---------------------------------------------------------------------------
# Pure helpers (shared with the header stage for grade findings)
# ---------------------------------------------------------------------------

def grade_status(grade: str):
    """(status, severity) for a sub-grade finding."""
    if grade in ("A+", "A"):
        return "passed", "info"
    if grade == "B":
        return "warning", "info"
    if grade == "F":
        return "failed", "critical"
    if grade == "D":
        return "failed", "high"
    return "failed", "info"


def find_weaknesses(protocols: Dict[str, bool], cipher: Any, negotiated: Any) -> List[Dict[str, str]]:
    """Protocol and cipher weaknesses, each with a severity."""
    weaknesses: List[Dict[str, str]] = []

    if protocols.get("TLSv1.0"):
        weaknesses.append({"name": "TLS 1.0 Enabled", "severity": "high"})
    if protocols.get("TLSv1.1"):
        weaknesses.append({"name": "TLS 1.1 Enabled", "severity": "medium"})

    cipher_upper = (cipher or "").upper()
    for weak in WEAK_CIPHERS:
        if weak in cipher_upper:
            weaknesses.append({
                "name": f"Weak Cipher: {weak}",
                "severity": "critical" if weak in CRITICAL_CIPHERS else "high",
            })
            break

    # TLS 1.3 suites are always forward secret even though the name doesn't say so
    if cipher_upper and negotiated != "TLSv1.3":
        if not any(marker in cipher_upper for marker in PFS_MARKERS):
            weaknesses.append({"name": "No Perfect Forward Secrecy", "severity": "medium"})

    return weaknesses


def calculate_ssl_score(
    cert: Dict[str, Any],
    protocols: Dict[str, bool],
    weaknesses: List[Dict[str, str]],
) -> int:
    """0–100 SSL configuration score (mapped to a grade with score_grade)."""
    score = 100

    if not cert.get("valid"):
        score -= 40
    if cert.get("self_signed"):
        score -= 30

    days = cert.get("days_until_expiry", 0)
    if days < 0:
        score -= 50
    elif days < 7:
        score -= 30
    elif days < 30:
        score -= 15
    elif days < 60:
        score -= 5

    tls12 = protocols.get("TLSv1.2", False)
    tls13 = protocols.get("TLSv1.3", False)
    if not tls12 and not tls13:
        score -= 30
    if protocols.get("TLSv1.0"):
        score -= 15

    for w in weaknesses:
        score -= WEAKNESS_PENALTIES.get(w["severity"], 0)

    if tls13:
        score += 5

    return clamp_score(score)
