# posturescan/scanner/probes/http_probe.py
"""
HTTP probe.

A single request through httpx.AsyncClient. Returns the status code,
lower-cased response headers and a bounded slice of the body. The body is
streamed and decoding stops at MAX_BODY_CHARS, so a huge or endless
response never sits in memory.

Never raises for network conditions:
    httpx.TimeoutException   → error_kind "timeout"
    httpx.DecodingError      → error_kind "parse"
    httpx.HTTPError (other)  → error_kind "network"
    UnicodeEncodeError       → error_kind "parse" (header value not ASCII)
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional

import httpx

from posturescan.scanner.base import ProbeResult
from posturescan.scanner.config import DEFAULT_HTTP_TIMEOUT, USER_AGENT

logger = logging.getLogger(__name__)

MAX_BODY_CHARS = 512_000


def _lower_headers(headers: httpx.Headers) -> Dict[str, str]:
    """Flatten httpx headers to a lower-cased dict (repeated headers joined)."""
    out: Dict[str, str] = {}
    for key, value in headers.multi_items():
        k = key.lower()
        out[k] = f"{out[k]}, {value}" if k in out else value
    return out


async def read_body(resp: httpx.Response, limit: int = MAX_BODY_CHARS) -> str:
    """Decode a streamed body chunk by chunk, stopping once limit characters are in."""
    parts = []
    size = 0
    async for chunk in resp.aiter_text():
        parts.append(chunk)
        size += len(chunk)
        if size >= limit:
            break
    return "".join(parts)[:limit]


async def fetch(
    url: str,
    method: str = "GET",
    headers: Optional[Mapping[str, str]] = None,
    params: Optional[Mapping[str, str]] = None,
    content: Optional[str] = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    follow_redirects: bool = True,
    verify: bool = False,
) -> ProbeResult:
    """
    Issue one HTTP request.

    Certificate verification is off by default: the SSL stage owns trust
    decisions, header and vulnerability checks still want the response.
    """
    req_headers = {"User-Agent": USER_AGENT}
    if headers:
        req_headers.update(headers)

    start = time.monotonic()
    try:
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=follow_redirects,
            verify=verify,
        ) as client:
            async with client.stream(
                method,
                url,
                headers=req_headers,
                params=params,
                content=content if method not in ("GET", "HEAD") else None,
            ) as resp:
                body = await read_body(resp) if method != "HEAD" else ""
    except httpx.TimeoutException as e:
        return ProbeResult.fail("http", "timeout", f"Request to {url} timed out: {type(e).__name__}",
                                duration_ms=_elapsed(start))
    except httpx.DecodingError as e:
        return ProbeResult.fail("http", "parse", f"Could not decode response from {url}: {e}",
                                duration_ms=_elapsed(start))
    except httpx.HTTPError as e:
        return ProbeResult.fail("http", "network", f"Request to {url} failed: {e or type(e).__name__}",
                                duration_ms=_elapsed(start))
    except UnicodeEncodeError as e:
        return ProbeResult.fail("http", "parse", f"Request to {url} not sent, header is not ASCII: {e.reason}",
                                duration_ms=_elapsed(start))

    data: Dict[str, Any] = {
        "url": url,
        "final_url": str(resp.url),
        "status_code": resp.status_code,
        "headers": _lower_headers(resp.headers),
        "body": body,
        "http_version": resp.http_version,
    }
    logger.debug(f"HTTP {method} {url} → {resp.status_code}")
    return ProbeResult.ok("http", data, duration_ms=_elapsed(start))


def _elapsed(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
