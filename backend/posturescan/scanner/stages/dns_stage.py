# posturescan/scanner/stages/dns_stage.py
"""
DNS / Email Security Stage.

Resolves A/AAAA/MX/NS/TXT/CNAME/CAA for the target domain plus the
_dmarc TXT record, all concurrently.

Checks performed:
    CRITICAL:
        - Domain does not resolve                          (dns-resolved)

    MEDIUM (never higher):
        - No SPF record                                    (dns-spf, failed)
        - Weak SPF: +all, ?all, no all, multiple records   (dns-spf, warning)
        - No DMARC record                                  (dns-dmarc, failed)
        - DMARC p=none or malformed                        (dns-dmarc, warning)

    LOW:
        - No CAA record                                    (dns-caa, warning)

    INFO:
        - CDN detected from CNAME / NS                     (dns-cdn)

A failed A lookup (timeout, no nameservers) fails the whole stage.
Other record types that fail count as empty.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

from posturescan.scanner.base import BaseStage, Finding, ScanContext, StageResult
from posturescan.scanner.probes import dns_probe

logger = logging.getLogger(__name__)

RECORD_TYPES = ("A", "AAAA", "MX", "NS", "TXT", "CNAME", "CAA")

# Provider → patterns matched against CNAME and NS targets
CDN_PATTERNS = {
    "Cloudflare": [re.compile(r"cloudflare", re.I)],
    "AWS CloudFront": [re.compile(r"cloudfront\.net", re.I)],
    "Akamai": [re.compile(r"akamai", re.I), re.compile(r"edgekey\.net", re.I), re.compile(r"edgesuite\.net", re.I)],
    "Fastly": [re.compile(r"fastly", re.I)],
    "Microsoft Azure CDN": [re.compile(r"azureedge\.net", re.I), re.compile(r"azurefd\.net", re.I)],
    "Google Cloud CDN": [re.compile(r"googleusercontent\.com", re.I), re.compile(r"googlehosted\.com", re.I)],
    "Incapsula": [re.compile(r"incapdns\.net", re.I), re.compile(r"impervadns\.net", re.I)],
    "Sucuri": [re.compile(r"sucuri", re.I)],
    "StackPath": [re.compile(r"stackpath", re.I), re.compile(r"highwinds", re.I)],
    "Vercel": [re.compile(r"vercel", re.I)],
    "Netlify": [re.compile(r"netlify", re.I)],
}


class DNSStage(BaseStage):
    """Resolution, SPF/DMARC, CAA and CDN checks for domain targets."""

    label = "DNS"
    category = "DNS"
    error_id = "dns-error"
    error_severity = "medium"

    @property
    def name(self) -> str:
        return "dns"

    def applies(self, ctx: ScanContext) -> bool:
        return not ctx.target.is_ip and ctx.config.mode in ("website", "attack_surface")

    async def execute(self, ctx: ScanContext) -> StageResult:
        domain = ctx.target.domain
        timeout = ctx.config.dns_timeout

        results, dmarc_res = await asyncio.gather(
            dns_probe.resolve_all(domain, RECORD_TYPES, timeout=timeout, cache=ctx.cache),
            dns_probe.resolve(f"_dmarc.{domain}", "TXT", timeout=timeout, cache=ctx.cache),
        )

        # A lookup failure means DNS itself is broken for this name
        results["A"].unwrap()

        records: Dict[str, List[str]] = {}
        for rdtype, res in results.items():
            records[rdtype] = res.raw_data.get("records", []) if res.success else []
        dmarc_txt = dmarc_res.raw_data.get("records", []) if dmarc_res.success else []

        ips = records["A"] + records["AAAA"]
        spf = parse_spf(records["TXT"])
        dmarc = parse_dmarc(dmarc_txt)
        cdn = detect_cdn(records["CNAME"] + records["NS"])

        findings = [self._resolved_finding(domain, ips)]
        findings.append(self._spf_finding(spf))
        findings.append(self._dmarc_finding(dmarc))
        if cdn:
            findings.append(self.finding(
                id="dns-cdn",
                name="CDN Detected",
                status="info",
                severity="info",
                message=f"Domain is served through {cdn}",
                details={"provider": cdn},
            ))
        findings.append(self._caa_finding(records["CAA"]))

        logger.info(
            f"DNS {domain}: {len(ips)} IP(s), spf={'yes' if spf else 'no'}, "
            f"dmarc={'yes' if dmarc else 'no'}, cdn={cdn or '-'}"
        )

        return StageResult(
            stage=self.name,
            findings=findings,
            data={
                "records": records,
                "ips": ips,
                "spf": spf,
                "dmarc": dmarc,
                "cdn": cdn,
            },
        )

    # -------------------------------------------------------------------
    # Findings
    # -------------------------------------------------------------------

    def _resolved_finding(self, domain: str, ips: List[str]) -> Finding:
        if ips:
            return self.finding(
                id="dns-resolved",
                name="DNS Resolution",
                status="passed",
                severity="info",
                message=f"Domain resolved to {len(ips)} IP(s)",
                details={"ips": ips},
            )
        return self.finding(
            id="dns-resolved",
            name="DNS Resolution",
            status="failed",
            severity="critical",
            message=f"{domain} has no A or AAAA records",
            recommendation="Check the domain's DNS configuration",
        )

    def _spf_finding(self, spf: Optional[Dict[str, Any]]) -> Finding:
        if spf is None:
            return self.finding(
                id="dns-spf",
                name="SPF Record",
                status="failed",
                severity="medium",
                message="No SPF record found",
                recommendation="Add an SPF record to prevent email spoofing",
            )

        issues = spf_issues(spf)
        if issues:
            return self.finding(
                id="dns-spf",
                name="SPF Record",
                status="warning",
                severity="medium",
                message="SPF record is weak: " + "; ".join(issues),
                details={"record": spf["raw"], "issues": issues},
                recommendation="End the SPF record with -all or ~all and publish exactly one record",
            )

        return self.finding(
            id="dns-spf",
            name="SPF Record",
            status="passed",
            severity="info",
            message="SPF record configured",
            details={"record": spf["raw"]},
        )

    def _dmarc_finding(self, dmarc: Optional[Dict[str, Any]]) -> Finding:
        if dmarc is None:
            return self.finding(
                id="dns-dmarc",
                name="DMARC Record",
                status="failed",
                severity="medium",
                message="No DMARC record found",
                recommendation="Add a DMARC record to protect against email spoofing",
            )

        policy = dmarc.get("policy")
        if policy in ("quarantine", "reject"):
            return self.finding(
                id="dns-dmarc",
                name="DMARC Record",
                status="passed",
                severity="info",
                message=f"DMARC policy: {policy}",
                details={"record": dmarc["raw"], "policy": policy},
            )

        if policy == "none":
            message = "DMARC policy is 'none' (monitoring only, no enforcement)"
        else:
            message = "DMARC record is malformed (missing or unknown p= tag)"
        return self.finding(
            id="dns-dmarc",
            name="DMARC Record",
            status="warning",
            severity="medium",
            message=message,
            details={"record": dmarc["raw"], "policy": policy},
            recommendation="Move the DMARC policy to p=quarantine or p=reject",
        )

    def _caa_finding(self, caa: List[str]) -> Finding:
        if caa:
            return self.finding(
                id="dns-caa",
                name="CAA Record",
                status="passed",
                severity="info",
                message=f"{len(caa)} CAA record(s) restrict certificate issuance",
                details={"records": caa},
            )
        return self.finding(
            id="dns-caa",
            name="CAA Record",
            status="warning",
            severity="low",
            message="No CAA record: any certificate authority may issue for this domain",
            recommendation='Add a CAA record, e.g. 0 issue "letsencrypt.org"',
        )


# ---------------------------------------------------------------------------
# Record parsing
# ---------------------------------------------------------------------------

def parse_spf(txt_records: List[str]) -> Optional[Dict[str, Any]]:
    """First SPF record in TXT, parsed. None when there is no SPF record."""
    spf_records = [t for t in txt_records if t.lower().startswith("v=spf1")]
    if not spf_records:
        return None

    raw = spf_records[0]
    result: Dict[str, Any] = {
        "raw": raw,
        "mechanisms": [],
        "all_qualifier": None,
        "record_count": len(spf_records),
    }
    for part in raw.split()[1:]:  # Skip "v=spf1"
        part_lower = part.lower()
        if part_lower in ("all", "+all", "-all", "~all", "?all"):
            result["all_qualifier"] = part_lower[0] if part_lower != "all" else "+"
        result["mechanisms"].append(part)
    return result


def spf_issues(spf: Dict[str, Any]) -> List[str]:
    issues: List[str] = []
    if spf.get("record_count", 1) > 1:
        issues.append("multiple SPF records (permerror)")
    qualifier = spf.get("all_qualifier")
    if qualifier is None:
        issues.append("no 'all' mechanism")
    elif qualifier == "+":
        issues.append("'+all' allows any server to send mail")
    elif qualifier == "?":
        issues.append("'?all' is neutral and provides no protection")
    return issues


def parse_dmarc(txt_records: List[str]) -> Optional[Dict[str, Any]]:
    """DMARC record from _dmarc TXT answers, parsed into tags."""
    raw = next((t for t in txt_records if t.lower().startswith("v=dmarc1")), None)
    if raw is None:
        return None

    result: Dict[str, Any] = {"raw": raw, "policy": None}
    for part in raw.split(";"):
        part = part.strip()
        if "=" not in part:
            continue
        tag, value = part.split("=", 1)
        tag = tag.strip().lower()
        value = value.strip()

        if tag == "p":
            policy = value.lower()
            result["policy"] = policy if policy in ("none", "quarantine", "reject") else None
        elif tag == "sp":
            result["subdomain_policy"] = value.lower()
        elif tag == "rua":
            result["rua"] = value
        elif tag == "pct":
            try:
                result["pct"] = int(value)
            except ValueError:
                result["pct"] = value
    return result


def detect_cdn(targets: List[str]) -> Optional[str]:
    """First CDN provider whose pattern matches any CNAME/NS target."""
    joined = " ".join(targets)
    if not joined:
        return None
    for provider, patterns in CDN_PATTERNS.items():
        if any(p.search(joined) for p in patterns):
            return provider
    return None
