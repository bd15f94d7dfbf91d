# posturescan/scanner/stages/tech_stage.py
"""
Technology Fingerprinting Stage.

GETs the root of the domain over HTTPS (falling back to an HTTP HEAD) and
matches response headers and HTML substrings against fixed signature
tables.

Both requests share one time budget, http_timeout capped below the stage
ceiling: the HTTPS GET may use HTTPS_BUDGET_SHARE of it, the HEAD fallback
gets whatever is left. A fallback with less than MIN_FALLBACK_TIMEOUT left
is skipped.

Detection sources, in output order:
    - Server / X-Powered-By banners (raw value, then product names)
    - CDN headers (cf-ray, x-amz-cf-id, x-cache, x-served-by)
    - Security header markers (HSTS, CSP)
    - HTML body substrings (frameworks, CMS, analytics, jQuery)

Output is deduplicated in first-seen order and capped at MAX_TECHNOLOGIES.
Raw banners are kept so the Risk Analyzer can spot outdated versions.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Tuple

from posturescan.scanner.base import BaseStage, ScanContext, StageResult
from posturescan.scanner.probes import http_probe

logger = logging.getLogger(__name__)

MAX_TECHNOLOGIES = 20

HTTPS_BUDGET_SHARE = 0.6
MIN_FALLBACK_TIMEOUT = 0.25
# Headroom left under the stage ceiling
STAGE_CEILING_SHARE = 0.9

_clock = time.monotonic


# ---------------------------------------------------------------------------
# Technology signatures
# ---------------------------------------------------------------------------

# Banner headers: { header: [(substring_lower, tech_name)] }
BANNER_SIGNATURES: Dict[str, List[Tuple[str, str]]] = {
    "server": [
        ("nginx", "Nginx"),
        ("apache", "Apache"),
        ("cloudflare", "Cloudflare"),
        ("microsoft", "Microsoft IIS"),
    ],
    "x-powered-by": [
        ("php", "PHP"),
        ("asp.net", "ASP.NET"),
        ("express", "Express.js"),
    ],
}

# Presence of a header (optionally containing a substring) → tech name
CDN_HEADERS: List[Tuple[str, str, str]] = [
    ("x-cache", "", "CDN"),
    ("cf-ray", "", "Cloudflare CDN"),
    ("x-amz-cf-id", "", "AWS CloudFront"),
    ("x-served-by", "cache", "Varnish/Fastly"),
]

SECURITY_MARKERS: List[Tuple[str, str]] = [
    ("strict-transport-security", "HSTS Enabled"),
    ("content-security-policy", "CSP Enabled"),
]

# HTML substrings (matched lower-cased) → tech name
CONTENT_SIGNATURES: List[Tuple[Tuple[str, ...], str]] = [
    (("_next", "__next_data__"), "Next.js"),
    (("react",), "React"),
    (("vue",), "Vue.js"),
    (("angular",), "Angular"),
    (("wp-content", "wordpress"), "WordPress"),
    (("shopify",), "Shopify"),
    (("wix",), "Wix"),
    (("squarespace",), "Squarespace"),
    (("google-analytics", "gtag"), "Google Analytics"),
    (("googletagmanager",), "Google Tag Manager"),
    (("facebook.net",), "Facebook Pixel"),
    (("hotjar",), "Hotjar"),
    (("jquery",), "jQuery"),
]


def fingerprint(headers: Dict[str, str], body: str = "") -> List[str]:
    """Technologies from response headers and body, deduplicated and capped."""
    found: List[str] = []

    for header, signatures in BANNER_SIGNATURES.items():
        banner = headers.get(header)
        if not banner:
            continue
        found.append(banner)
        lower = banner.lower()
        for needle, tech in signatures:
            if needle in lower:
                found.append(tech)

    for header, needle, tech in CDN_HEADERS:
        value = headers.get(header)
        if value and needle in value.lower():
            found.append(tech)

    for header, tech in SECURITY_MARKERS:
        if headers.get(header):
            found.append(tech)

    if body:
        html = body.lower()
        for needles, tech in CONTENT_SIGNATURES:
            if any(n in html for n in needles):
                found.append(tech)

    return list(dict.fromkeys(found))[:MAX_TECHNOLOGIES]


class TechStage(BaseStage):
    """Header and HTML fingerprinting of the root site."""

    label = "Technology"
    category = "Technology"
    error_id = "tech-error"
    error_severity = "low"

    @property
    def name(self) -> str:
        return "technology"

    def applies(self, ctx: ScanContext) -> bool:
        mode = ctx.config.mode
        return mode == "attack_surface" or (mode == "website" and ctx.config.deep_scan)

    async def execute(self, ctx: ScanContext) -> StageResult:
        host = ctx.target.domain
        budget = min(ctx.config.http_timeout, ctx.config.stage_timeout * STAGE_CEILING_SHARE)
        start = _clock()

        res = await http_probe.fetch(f"https://{host}/", timeout=budget * HTTPS_BUDGET_SHARE)
        source = "https"
        if res.success:
            headers = res.raw_data["headers"]
            # Only a successful page is worth reading for body signatures
            body = res.raw_data["body"] if res.raw_data["status_code"] < 400 else ""
            technologies = fingerprint(headers, body)
        else:
            remaining = budget - (_clock() - start)
            if remaining >= MIN_FALLBACK_TIMEOUT:
                logger.debug(f"Tech HTTPS fetch for {host} failed ({res.error}), trying HTTP HEAD")
                res = await http_probe.fetch(f"http://{host}/", method="HEAD", timeout=remaining)
            else:
                logger.debug(f"Tech HTTPS fetch for {host} failed ({res.error}), no time left for HTTP HEAD")
            source = "http-head"
            if res.success:
                headers = res.raw_data["headers"]
                server = headers.get("server")
                technologies = [server] if server else []
            else:
                source = None
                headers = {}
                technologies = []

        banners = {h: headers[h] for h in ("server", "x-powered-by") if headers.get(h)}

        if technologies:
            message = f"Detected {len(technologies)} technolog{'y' if len(technologies) == 1 else 'ies'}"
        else:
            message = "No technologies identified"

        logger.info(f"Tech {host}: {technologies or 'none'}")

        return StageResult(
            stage=self.name,
            findings=[self.finding(
                id="tech-detected",
                name="Technology Fingerprint",
                status="info",
                severity="info",
                message=message,
                details={"technologies": technologies, "source": source},
            )],
            data={"technologies": technologies, "banners": banners, "source": source},
        )
