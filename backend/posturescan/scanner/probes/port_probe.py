# posturescan/scanner/probes/port_probe.py
"""
Port reachability probe.

This is NOT a TCP port scanner. Every port is probed with an HTTP HEAD
through httpx, and the outcome is read as follows:

    Web ports (80, 443, 8080, 8443)
        any HTTP response                → open
        connection refused / TLS failure → closed
        timeout                          → indeterminate

    Service ports (22, 3306, 5432, 6379, 27017, 3389, 1433)
        any HTTP response                → open
        peer accepted, then spoke a non-HTTP protocol or hung up
        (RemoteProtocolError / ReadError) → open
        connection refused               → closed
        timeout                          → indeterminate

Indeterminate results are counted as closed by the port stage. That biases
towards under-reporting exposure; the approximation is recorded in the
raw data so stages can surface it.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict

import httpx

from posturescan.scanner.base import ProbeResult
from posturescan.scanner.config import DEFAULT_PORT_TIMEOUT, USER_AGENT

logger = logging.getLogger(__name__)

WEB_PORTS: Dict[int, str] = {
    80: "HTTP",
    443: "HTTPS",
    8080: "HTTP Proxy",
    8443: "HTTPS Alt",
}

SERVICE_PORTS: Dict[int, str] = {
    22: "SSH",
    3306: "MySQL",
    5432: "PostgreSQL",
    6379: "Redis",
    27017: "MongoDB",
    3389: "RDP",
    1433: "MSSQL",
}

TLS_PORTS = {443, 8443}

PROBE_METHOD = "http-head"
ACCURACY_NOTE = (
    "Reachability inferred from an HTTP HEAD request, not a TCP connect scan. "
    "Timeouts are treated as closed, so exposure may be under-reported."
)


def service_name(port: int) -> str:
    return WEB_PORTS.get(port) or SERVICE_PORTS.get(port) or "Unknown"


def _url_for(ip: str, port: int) -> str:
    host = f"[{ip}]" if ":" in ip else ip
    scheme = "https" if port in TLS_PORTS else "http"
    return f"{scheme}://{host}:{port}/"


async def probe_port(ip: str, port: int, timeout: float = DEFAULT_PORT_TIMEOUT) -> ProbeResult:
    """
    raw_data: {"ip", "port", "service", "state", "method", "reason", "status_code"?}
    state is one of open, closed, indeterminate. Always a successful ProbeResult:
    the state itself is the observation.
    """
    url = _url_for(ip, port)
    start = time.monotonic()
    data: Dict[str, Any] = {
        "ip": ip,
        "port": port,
        "service": service_name(port),
        "method": PROBE_METHOD,
    }

    try:
        async with httpx.AsyncClient(timeout=timeout, verify=False, follow_redirects=False) as client:
            resp = await client.head(url, headers={"User-Agent": USER_AGENT})
        data.update(state="open", reason="http-response", status_code=resp.status_code)
    except httpx.TimeoutException:
        data.update(state="indeterminate", reason="timeout")
    except httpx.ConnectError as e:
        data.update(state="closed", reason=f"connect-error: {e or 'refused'}")
    except (httpx.RemoteProtocolError, httpx.ReadError) as e:
        if port in SERVICE_PORTS:
            data.update(state="open", reason=f"non-http-peer: {type(e).__name__}")
        else:
            data.update(state="indeterminate", reason=f"protocol-error: {type(e).__name__}")
    except httpx.HTTPError as e:
        data.update(state="indeterminate", reason=f"{type(e).__name__}")

    logger.debug(f"Port {ip}:{port} → {data['state']} ({data['reason']})")
    return ProbeResult.ok("port", data, duration_ms=int((time.monotonic() - start) * 1000))
