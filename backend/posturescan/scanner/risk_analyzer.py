# posturescan/scanner/risk_analyzer.py
"""
Attack Surface Risk Analyzer.

Runs AFTER every feeder stage has finished (the pipeline's barrier) and
cross-references their structured output into composite risk findings.
It is the only stage allowed a data dependency, and it only reads.

Reads:
    subdomains   → data["subdomains"]
    ports        → data["open_ports"]
    ssl          → data["https"], data["valid"]; a failed stage means HTTPS is unverified
    dns          → data["spf"], data["dmarc"]; a failed stage skips email rules
    technology   → data["technologies"], data["banners"]

Produces (status=failed, category "Attack Surface"):
    CRITICAL:  Exposed Database/Admin Ports, RDP Exposed, Invalid SSL Certificate
    HIGH:      Exposed Sensitive Subdomains, SSH Exposed, No HTTPS
    MEDIUM:    Missing SPF Record, Missing DMARC Record, Outdated Technology
    LOW:       Large Attack Surface

A fact the feeding stage already reported as failed (no-https, ssl-valid,
dns-spf, dns-dmarc) is not repeated here, so it is scored and recommended
once. An SSL stage that errored yields an unscored warning: the stage's
own error finding already carries the penalty.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from posturescan.scanner.base import BaseStage, Finding, ScanContext, StageResult

logger = logging.getLogger(__name__)

SENSITIVE_PREFIXES = ("admin.", "dev.", "test.", "staging.", "internal.", "vpn.")

# SSH, Telnet, databases, RDP
CRITICAL_PORTS = {22, 23, 3306, 5432, 6379, 27017, 3389, 1433}

OUTDATED_MARKERS = ("php/5", "apache/2.2", "nginx/1.1")

LARGE_SURFACE_THRESHOLD = 20


def _reported(ctx: ScanContext, stage: str, finding_id: str) -> bool:
    """Whether a feeding stage already emitted this finding as failed."""
    result = ctx.stage_results.get(stage)
    if result is None:
        return False
    return any(f.id == finding_id and f.status == "failed" for f in result.findings)


class RiskAnalyzer(BaseStage):
    """Composite attack-surface risks from finished discovery stages."""

    label = "Risk Analysis"
    category = "Attack Surface"
    error_id = "risk-error"
    error_severity = "medium"

    @property
    def name(self) -> str:
        return "risk"

    def applies(self, ctx: ScanContext) -> bool:
        return ctx.config.mode == "attack_surface"

    async def execute(self, ctx: ScanContext) -> StageResult:
        domain = ctx.target.domain
        subdomains: List[str] = ctx.get_stage_data("subdomains").get("subdomains", [])
        open_ports: List[Dict[str, Any]] = ctx.get_stage_data("ports").get("open_ports", [])
        tech = ctx.get_stage_data("technology")

        findings: List[Finding] = []
        findings.extend(self._subdomain_risks(subdomains))
        findings.extend(self._port_risks(open_ports))
        findings.extend(self._ssl_risks(ctx, domain))
        findings.extend(self._email_risks(ctx, domain))
        findings.extend(self._tech_risks(tech, domain))

        if len(subdomains) > LARGE_SURFACE_THRESHOLD:
            findings.append(self._risk(
                "risk-large-attack-surface", "Large Attack Surface", "low",
                f"{len(subdomains)} subdomains found; consider consolidating to reduce attack surface",
                asset=f"{len(subdomains)} subdomains",
            ))

        logger.info(f"Risk analysis {domain}: {len(findings)} composite risk(s)")

        return StageResult(
            stage=self.name,
            findings=findings,
            data={"risks": [f.id for f in findings]},
        )

    # -------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------

    def _subdomain_risks(self, subdomains: List[str]) -> List[Finding]:
        sensitive = [s for s in subdomains if s.startswith(SENSITIVE_PREFIXES)]
        if not sensitive:
            return []
        return [self._risk(
            "risk-sensitive-subdomains", "Exposed Sensitive Subdomains", "high",
            f"Found {len(sensitive)} potentially sensitive subdomain(s) that could expose internal systems",
            asset=", ".join(sensitive),
            recommendation="Restrict admin, dev and staging hosts to a VPN or IP allowlist",
        )]

    def _port_risks(self, open_ports: List[Dict[str, Any]]) -> List[Finding]:
        findings: List[Finding] = []

        dangerous = [p for p in open_ports if p["port"] in CRITICAL_PORTS]
        if dangerous:
            services = ", ".join(dict.fromkeys(p["service"] for p in dangerous))
            findings.append(self._risk(
                "risk-critical-ports", "Exposed Database/Admin Ports", "critical",
                f"Critical services ({services}) are exposed to the internet",
                asset=", ".join(f"{p['ip']}:{p['port']}" for p in dangerous),
                recommendation="Firewall database and admin ports from the public internet",
            ))

        rdp = [p["ip"] for p in open_ports if p["port"] == 3389]
        if rdp:
            findings.append(self._risk(
                "risk-rdp-exposed", "RDP Exposed", "critical",
                "Remote Desktop Protocol (RDP) is exposed to the internet; high risk of brute force attacks",
                asset=", ".join(rdp),
                recommendation="Put RDP behind a VPN or gateway and enforce network level authentication",
            ))

        ssh = [p["ip"] for p in open_ports if p["port"] == 22]
        if ssh:
            findings.append(self._risk(
                "risk-ssh-exposed", "SSH Exposed", "high",
                "SSH service is exposed to the internet; ensure strong authentication is configured",
                asset=", ".join(ssh),
                recommendation="Disable password authentication and restrict SSH to known addresses",
            ))
        return findings

    def _ssl_risks(self, ctx: ScanContext, domain: str) -> List[Finding]:
        if ctx.stage_failed("ssl"):
            return [self.finding(
                id="risk-no-https",
                name="HTTPS Unverified",
                status="warning",
                severity="high",
                message="HTTPS could not be verified: the SSL/TLS check did not complete",
                details={"asset": domain},
                recommendation="Confirm the domain serves HTTPS with a valid certificate",
            )]
        ssl_data = ctx.get_stage_data("ssl")
        if not ssl_data.get("https"):
            if _reported(ctx, "ssl", "no-https"):
                return []
            return [self._risk(
                "risk-no-https", "No HTTPS", "high",
                "Domain does not support HTTPS",
                asset=domain,
                recommendation="Serve the domain over HTTPS with a valid certificate",
            )]
        if not ssl_data.get("valid") and not _reported(ctx, "ssl", "ssl-valid"):
            return [self._risk(
                "risk-invalid-ssl", "Invalid SSL Certificate", "critical",
                "SSL certificate is invalid or expired",
                asset=domain,
                recommendation="Install a valid certificate from a trusted CA",
            )]
        return []

    def _email_risks(self, ctx: ScanContext, domain: str) -> List[Finding]:
        if ctx.stage_failed("dns") or "dns" not in ctx.stage_results:
            return []
        dns_data = ctx.get_stage_data("dns")
        findings: List[Finding] = []
        if not dns_data.get("spf") and not _reported(ctx, "dns", "dns-spf"):
            findings.append(self._risk(
                "risk-missing-spf", "Missing SPF Record", "medium",
                "No SPF record found; domain may be vulnerable to email spoofing",
                asset=domain,
                recommendation="Publish an SPF record ending in -all or ~all",
            ))
        if not dns_data.get("dmarc") and not _reported(ctx, "dns", "dns-dmarc"):
            findings.append(self._risk(
                "risk-missing-dmarc", "Missing DMARC Record", "medium",
                "No DMARC record found; email authentication policies are not enforced",
                asset=domain,
                recommendation="Publish a DMARC record at _dmarc." + domain,
            ))
        return findings

    def _tech_risks(self, tech: Dict[str, Any], domain: str) -> List[Finding]:
        candidates = list(tech.get("technologies", [])) + list(tech.get("banners", {}).values())
        outdated = list(dict.fromkeys(
            t for t in candidates if any(m in t.lower() for m in OUTDATED_MARKERS)
        ))
        if not outdated:
            return []
        return [self._risk(
            "risk-outdated-tech", "Outdated Technology", "medium",
            f"Potentially outdated technology detected: {', '.join(outdated)}",
            asset=domain,
            recommendation="Upgrade to a supported release and hide version banners",
        )]

    def _risk(self, id: str, name: str, severity: str, message: str, asset: str,
              recommendation: Optional[str] = None) -> Finding:
        return self.finding(
            id=id,
            name=name,
            status="failed",
            severity=severity,
            message=message,
            details={"asset": asset},
            recommendation=recommendation,
        )
