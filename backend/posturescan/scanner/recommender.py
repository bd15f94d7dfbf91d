# posturescan/scanner/recommender.py
"""
Remediation recommendations.

Pure function of the findings list:
    1. Keep failed and warning findings
    2. Sort by severity (critical first), then category
    3. Deduplicate by finding id, first occurrence wins
    4. Well-known ids get a curated entry with effort/impact/steps,
       everything else a generic one built from the finding itself
    5. Re-sort (stable) by severity, then category
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Tuple

from posturescan.scanner.base import SEVERITY_RANK, Finding

ACTIONABLE_STATUSES = ("failed", "warning")


@dataclass(frozen=True)
class Recommendation:
    id: str
    title: str
    description: str
    severity: str
    category: str
    effort: str
    impact: str
    steps: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity,
            "category": self.category,
            "effort": self.effort,
            "impact": self.impact,
        }
        if self.steps:
            out["steps"] = list(self.steps)
        return out


# ---------------------------------------------------------------------------
# Curated entries
# ---------------------------------------------------------------------------

def _ssl_cert(f: Finding) -> Recommendation:
    return Recommendation(
        id="rec-ssl-cert",
        title="Install a Valid SSL Certificate",
        description="Your SSL certificate is invalid or not trusted. Browsers will show security warnings.",
        severity="critical",
        category=f.category,
        effort="low",
        impact="high",
        steps=(
            "Obtain a free certificate from Let's Encrypt or purchase one from a trusted CA",
            "Install the certificate and its full intermediate chain on your web server",
            "Configure automatic renewal",
        ),
    )


def _ssl_renew(f: Finding) -> Recommendation:
    days = f.details.get("daysUntilExpiry", 0)
    return Recommendation(
        id="rec-ssl-renew",
        title="Renew SSL Certificate",
        description=f.message,
        severity="critical" if days < 7 else "high",
        category=f.category,
        effort="low",
        impact="high",
    )


def _csp(f: Finding) -> Recommendation:
    return Recommendation(
        id="rec-csp",
        title="Implement Content Security Policy",
        description="CSP helps prevent XSS attacks by controlling which resources can be loaded.",
        severity="high",
        category=f.category,
        effort="medium",
        impact="high",
        steps=(
            "Start with Content-Security-Policy-Report-Only to collect violations",
            "Set default-src 'self' and allow-list the origins your pages need",
            "Remove 'unsafe-inline' and 'unsafe-eval' by moving inline scripts to files or nonces",
            "Switch to the enforcing Content-Security-Policy header",
        ),
    )


def _hsts(f: Finding) -> Recommendation:
    return Recommendation(
        id="rec-hsts",
        title="Enable HTTP Strict Transport Security",
        description="HSTS ensures browsers always use HTTPS to connect to your site.",
        severity="high",
        category=f.category,
        effort="low",
        impact="high",
        steps=(
            "Add Strict-Transport-Security: max-age=31536000; includeSubDomains",
            "Verify every subdomain serves HTTPS before enabling includeSubDomains",
            "Consider submitting the domain to the HSTS preload list",
        ),
    )


def _spf(f: Finding) -> Recommendation:
    return Recommendation(
        id="rec-spf",
        title="Configure SPF Record",
        description="SPF prevents email spoofing by specifying which servers can send email for your domain.",
        severity="medium",
        category=f.category,
        effort="low",
        impact="medium",
    )


def _dmarc(f: Finding) -> Recommendation:
    return Recommendation(
        id="rec-dmarc",
        title="Configure DMARC Record",
        description="DMARC tells receivers what to do with mail that fails SPF or DKIM checks.",
        severity="medium",
        category=f.category,
        effort="medium",
        impact="medium",
    )


def _https(f: Finding) -> Recommendation:
    return Recommendation(
        id="rec-https",
        title="Enable HTTPS",
        description="The site is served over plain HTTP, so traffic can be read and modified in transit.",
        severity="critical",
        category=f.category,
        effort="medium",
        impact="high",
    )


def _cors(f: Finding) -> Recommendation:
    return Recommendation(
        id="rec-cors",
        title="Fix CORS Credentials Policy",
        description="Credentialed requests are allowed from any origin. Echo an allow-listed origin instead of *.",
        severity="critical",
        category=f.category,
        effort="low",
        impact="high",
    )


CURATED: Dict[str, Callable[[Finding], Recommendation]] = {
    "ssl-valid": _ssl_cert,
    "ssl-expiry": _ssl_renew,
    "header-csp": _csp,
    "header-hsts": _hsts,
    "dns-spf": _spf,
    "dns-dmarc": _dmarc,
    "no-https": _https,
    "cors-credentials-wildcard": _cors,
}


def _impact_for(severity: str) -> str:
    if severity in ("critical", "high"):
        return "high"
    if severity == "medium":
        return "medium"
    return "low"


def _generic(f: Finding) -> Recommendation:
    return Recommendation(
        id=f"rec-{f.id}",
        title=f.name,
        description=f.recommendation or f.message,
        severity=f.severity,
        category=f.category,
        effort="medium",
        impact=_impact_for(f.severity),
    )


def _sort_key(item) -> Tuple[int, str]:
    return SEVERITY_RANK.get(item.severity, len(SEVERITY_RANK)), item.category


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_recommendations(findings: Iterable[Finding]) -> List[Recommendation]:
    """Ordered, deduplicated recommendations for the actionable findings."""
    actionable = sorted(
        (f for f in findings if f.status in ACTIONABLE_STATUSES),
        key=_sort_key,
    )

    seen = set()
    recommendations: List[Recommendation] = []
    for f in actionable:
        if f.id in seen:
            continue
        seen.add(f.id)
        builder = CURATED.get(f.id, _generic)
        recommendations.append(builder(f))

    # Curated severity can differ from the finding's
    recommendations.sort(key=_sort_key)
    return recommendations
