# posturescan/scanner/probes/dns_probe.py
"""
DNS probe (dnspython, asyncio resolver).

resolve()            One record type for one name.
resolve_all()        Several record types for one name, concurrently.
resolve_addresses()  A + AAAA, failures collapsed to an empty list,
                     for discovery, where "no record" is the common case.

NXDOMAIN / NoAnswer are successful lookups with no records.
Timeouts and server failures are probe failures.

If a TTLCache handle is passed, successful answers are memoized under
("dns", name, rdtype).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

import dns.asyncresolver
import dns.exception
import dns.resolver

from posturescan.scanner.base import ProbeResult
from posturescan.scanner.config import DEFAULT_DNS_TIMEOUT

if TYPE_CHECKING:
    from posturescan.scanner.cache import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_RECORD_TYPES = ("A", "AAAA", "MX", "NS", "TXT", "CNAME")


def _new_resolver(timeout: float) -> dns.asyncresolver.Resolver:
    resolver = dns.asyncresolver.Resolver()
    resolver.timeout = timeout
    resolver.lifetime = timeout
    return resolver


def _format_rdata(rdtype: str, rdata) -> str:
    if rdtype == "TXT":
        # TXT records may be split into multiple strings
        return b"".join(rdata.strings).decode("utf-8", errors="replace")
    if rdtype == "MX":
        return f"{rdata.preference} {str(rdata.exchange).rstrip('.')}"
    if rdtype == "CAA":
        value = rdata.value.decode("utf-8", errors="replace") if isinstance(rdata.value, bytes) else rdata.value
        tag = rdata.tag.decode("ascii", errors="replace") if isinstance(rdata.tag, bytes) else rdata.tag
        return f"{rdata.flags} {tag} {value}"
    return str(rdata).rstrip(".")


async def resolve(
    name: str,
    rdtype: str,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    cache: Optional["TTLCache"] = None,
    resolver: Optional[dns.asyncresolver.Resolver] = None,
) -> ProbeResult:
    """
    Query one record type.

    raw_data: {"name", "rdtype", "records": [str], "nxdomain": bool}
    """
    key = ("dns", name.lower(), rdtype)
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            return ProbeResult.ok("dns", dict(cached))

    resolver = resolver or _new_resolver(timeout)
    start = time.monotonic()
    nxdomain = False
    try:
        answers = await resolver.resolve(name, rdtype)
        records = [_format_rdata(rdtype, r) for r in answers]
    except dns.resolver.NXDOMAIN:
        records, nxdomain = [], True
    except dns.resolver.NoAnswer:
        records = []
    except dns.exception.Timeout:
        return ProbeResult.fail("dns", "timeout", f"DNS {rdtype} lookup for {name} timed out",
                                duration_ms=_elapsed(start))
    except dns.resolver.NoNameservers as e:
        return ProbeResult.fail("dns", "network", f"No nameserver answered {rdtype} for {name}: {e}",
                                duration_ms=_elapsed(start))
    except dns.exception.DNSException as e:
        return ProbeResult.fail("dns", "network", f"DNS {rdtype} lookup for {name} failed: {e}",
                                duration_ms=_elapsed(start))

    data = {"name": name, "rdtype": rdtype, "records": records, "nxdomain": nxdomain}
    if cache is not None:
        cache.set(key, data)
    logger.debug(f"DNS {rdtype} {name}: {len(records)} record(s)")
    return ProbeResult.ok("dns", data, duration_ms=_elapsed(start))


async def resolve_all(
    name: str,
    rdtypes: Iterable[str] = DEFAULT_RECORD_TYPES,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    cache: Optional["TTLCache"] = None,
) -> Dict[str, ProbeResult]:
    """Query several record types concurrently. Keys are the record types."""
    types = list(rdtypes)
    resolver = _new_resolver(timeout)
    results = await asyncio.gather(
        *(resolve(name, t, timeout=timeout, cache=cache, resolver=resolver) for t in types)
    )
    return dict(zip(types, results))


async def resolve_addresses(
    name: str,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    cache: Optional["TTLCache"] = None,
) -> List[str]:
    """IPv4 then IPv6 addresses for name. Any failure yields no addresses."""
    results = await resolve_all(name, ("A", "AAAA"), timeout=timeout, cache=cache)
    ips: List[str] = []
    for rdtype in ("A", "AAAA"):
        res = results[rdtype]
        if not res.success:
            continue
        for ip in res.raw_data.get("records", []):
            if ip not in ips:
                ips.append(ip)
    return ips


def _elapsed(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
