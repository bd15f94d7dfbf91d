# posturescan/scanner/stages/subdomain_stage.py
"""
Subdomain Enumeration Stage (attack-surface mode).

Resolves <prefix>.<domain> for every prefix in a fixed wordlist, with at
most config.max_concurrency lookups in flight. A candidate that does not
resolve is the common case and is dropped silently, never reported as an
error. The root domain is always listed first.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from posturescan.scanner.base import BaseStage, ScanContext, StageResult
from posturescan.scanner.probes import dns_probe

logger = logging.getLogger(__name__)

COMMON_SUBDOMAINS = [
    "www", "mail", "ftp", "localhost", "webmail", "smtp", "pop", "ns1", "ns2",
    "cpanel", "whm", "autodiscover", "autoconfig", "api", "app", "dev", "stage",
    "staging", "test", "uat", "admin", "administrator", "blog", "shop", "store",
    "portal", "secure", "login", "auth", "sso", "cdn", "static", "assets",
    "images", "img", "media", "video", "vpn", "remote", "gateway", "proxy",
    "db", "database", "mysql", "postgres", "redis", "mongo", "elastic",
    "kibana", "grafana", "jenkins", "gitlab", "github", "bitbucket",
    "docs", "documentation", "support", "help", "status", "monitor",
    "mx", "mx1", "mx2", "ns", "ns3", "ns4", "dns", "dns1", "dns2",
    "email", "mail2", "webdisk", "server", "host", "node", "cloud",
    "api-v1", "api-v2", "v1", "v2", "graphql", "rest", "web", "mobile",
    "internal", "intranet", "extranet", "partner", "customer", "client",
    "sandbox", "demo", "preview", "beta", "alpha", "release", "prod",
    "production", "live", "backup", "bak", "old", "new", "legacy",
]

# Candidate cap per plan tier (None = full wordlist)
PLAN_CANDIDATE_LIMITS = {
    "free": 50,
    "pro": None,
    "business": None,
}


def candidate_names(domain: str, plan_tier: str) -> List[str]:
    limit = PLAN_CANDIDATE_LIMITS.get(plan_tier)
    prefixes = COMMON_SUBDOMAINS if limit is None else COMMON_SUBDOMAINS[:limit]
    return [f"{prefix}.{domain}" for prefix in prefixes]


class SubdomainStage(BaseStage):
    """Wordlist-driven subdomain discovery."""

    label = "Subdomain"
    category = "Attack Surface"
    error_id = "subdomains-error"
    error_severity = "low"

    @property
    def name(self) -> str:
        return "subdomains"

    def applies(self, ctx: ScanContext) -> bool:
        return ctx.config.mode == "attack_surface"

    async def execute(self, ctx: ScanContext) -> StageResult:
        domain = ctx.target.domain
        candidates = candidate_names(domain, ctx.config.plan_tier)
        semaphore = asyncio.Semaphore(ctx.config.max_concurrency)

        async def check(name: str) -> Optional[str]:
            async with semaphore:
                res = await dns_probe.resolve(name, "A", timeout=ctx.config.dns_timeout, cache=ctx.cache)
            if res.success and res.raw_data.get("records"):
                return name
            return None

        # gather keeps wordlist order, so output is stable
        results = await asyncio.gather(*(check(name) for name in candidates))
        found = [name for name in results if name]
        subdomains = [domain] + found

        logger.info(f"Subdomains {domain}: {len(found)}/{len(candidates)} candidates resolved")

        finding = self.finding(
            id="subdomains-found",
            name="Subdomains Discovered",
            status="info",
            severity="info",
            message=f"Found {len(subdomains)} host name(s) including the root domain",
            details={"subdomains": subdomains, "candidatesChecked": len(candidates)},
        )

        return StageResult(
            stage=self.name,
            findings=[finding],
            data={"subdomains": subdomains, "candidates_checked": len(candidates)},
        )
