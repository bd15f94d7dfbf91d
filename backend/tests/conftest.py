"""Test configuration and fixtures for posturescan."""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

import httpx
import pytest
import respx

from posturescan.scanner.base import BaseStage, ProbeResult, ScanContext, StageResult
from posturescan.scanner.cache import TTLCache
from posturescan.scanner.config import ScanConfig
from posturescan.scanner.probes import dns_probe, port_probe, tls_probe
from posturescan.scanner.stages.vuln_stage import FUZZ_PARAM
from posturescan.scanner.target import parse_target

VALID_CERT = {
    "subject": "example.com",
    "issuer": "R3",
    "issuer_org": "Let's Encrypt",
    "self_signed": False,
    "not_before": "2026-01-01T00:00:00+00:00",
    "not_after": "2027-01-26T00:00:00+00:00",
    "days_until_expiry": 100,
    "serial_number": "1234",
    "fingerprint_sha256": "ab" * 32,
    "san": ["example.com", "www.example.com"],
    "valid": True,
    "verify_error": None,
    "protocol": "TLSv1.3",
    "cipher": "TLS_AES_256_GCM_SHA384",
}

MODERN_PROTOCOLS = {"TLSv1.0": False, "TLSv1.1": False, "TLSv1.2": True, "TLSv1.3": True}

SECURE_HEADERS = {
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'; upgrade-insecure-requests",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-XSS-Protection": "1; mode=block",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Cache-Control": "no-store",
    "Permissions-Policy": "camera=(), microphone=()",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Cross-Origin-Embedder-Policy": "require-corp",
}


class FakeTLS:
    """Stands in for tls_probe: canned certificate and protocol data."""

    def __init__(self):
        self.cert = dict(VALID_CERT)
        self.protocols = dict(MODERN_PROTOCOLS)
        self.cert_failure: Optional[Tuple[str, str]] = None
        self.calls = 0

    async def inspect_certificate(self, hostname, port=443, timeout=10.0, now=None):
        self.calls += 1
        if self.cert_failure:
            kind, message = self.cert_failure
            return ProbeResult.fail("tls", kind, message)
        return ProbeResult.ok("tls", dict(self.cert))

    async def probe_protocols(self, hostname, port=443, timeout=5.0):
        self.calls += 1
        return ProbeResult.ok("tls", dict(self.protocols))


class FakeDNS:
    """
    Stands in for dns_probe.resolve. Unknown names answer with no records,
    like NXDOMAIN; failures map (name, rdtype) to an error kind.
    """

    def __init__(self):
        self.records: Dict[Tuple[str, str], List[str]] = {}
        self.failures: Dict[Tuple[str, str], str] = {}
        self.queries: List[Tuple[str, str]] = []

    def add(self, name: str, rdtype: str, *values: str) -> "FakeDNS":
        self.records[(name, rdtype)] = list(values)
        return self

    def fail(self, name: str, rdtype: str, kind: str = "timeout") -> "FakeDNS":
        self.failures[(name, rdtype)] = kind
        return self

    async def resolve(self, name, rdtype, timeout=2.0, cache=None, resolver=None):
        self.queries.append((name, rdtype))
        key = (name, rdtype)
        if key in self.failures:
            return ProbeResult.fail("dns", self.failures[key], f"DNS {rdtype} lookup for {name} failed")
        records = self.records.get(key, [])
        return ProbeResult.ok("dns", {
            "name": name,
            "rdtype": rdtype,
            "records": list(records),
            "nxdomain": not records,
        })


class FakePorts:
    """Stands in for port_probe.probe_port: only listed (ip, port) pairs are open."""

    def __init__(self):
        self.open: Set[Tuple[str, int]] = set()
        self.probed: List[Tuple[str, int]] = []

    async def probe_port(self, ip, port, timeout=2.0):
        self.probed.append((ip, port))
        is_open = (ip, port) in self.open
        data = {
            "ip": ip,
            "port": port,
            "service": port_probe.service_name(port),
            "method": port_probe.PROBE_METHOD,
            "state": "open" if is_open else "closed",
            "reason": "http-response" if is_open else "connect-error: refused",
        }
        return ProbeResult.ok("port", data)


@pytest.fixture
def fake_tls(monkeypatch) -> FakeTLS:
    fake = FakeTLS()
    monkeypatch.setattr(tls_probe, "inspect_certificate", fake.inspect_certificate)
    monkeypatch.setattr(tls_probe, "probe_protocols", fake.probe_protocols)
    return fake


@pytest.fixture
def fake_dns(monkeypatch) -> FakeDNS:
    fake = FakeDNS()
    monkeypatch.setattr(dns_probe, "resolve", fake.resolve)
    # No real resolver (and no /etc/resolv.conf) needed
    monkeypatch.setattr(dns_probe, "_new_resolver", lambda timeout: None)
    return fake


@pytest.fixture
def fake_ports(monkeypatch) -> FakePorts:
    fake = FakePorts()
    monkeypatch.setattr(port_probe, "probe_port", fake.probe_port)
    return fake


@pytest.fixture
def http_mock():
    """respx router; every request not routed explicitly is an error."""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def healthy_dns(fake_dns: FakeDNS) -> FakeDNS:
    """example.com with addresses, strict SPF and an enforcing DMARC policy."""
    fake_dns.add("example.com", "A", "93.184.216.34")
    fake_dns.add("example.com", "TXT", "v=spf1 include:_spf.google.com -all")
    fake_dns.add("_dmarc.example.com", "TXT", "v=DMARC1; p=reject; rua=mailto:d@example.com")
    fake_dns.add("example.com", "CAA", '0 issue "letsencrypt.org"')
    return fake_dns


@pytest.fixture
def make_ctx():
    """Build a ScanContext: make_ctx("https://example.com", mode="api", method="POST")."""

    def _make(target: str = "https://example.com", cache: Optional[TTLCache] = None,
              method=None, headers=None, auth=None, body=None, **config) -> ScanContext:
        return ScanContext(
            target=parse_target(target, method=method, headers=headers, auth=auth, body=body),
            config=ScanConfig(**config),
            cache=cache,
        )

    return _make


def by_id(findings, finding_id: str):
    """The single finding with this id (fails loudly otherwise)."""
    matches = [f for f in findings if f.id == finding_id]
    assert len(matches) == 1, f"expected one '{finding_id}', got {len(matches)}"
    return matches[0]


def route_site(router, host="example.com", scheme="https", method="GET", status=200,
               headers=None, body="", fuzz_body=None):
    """
    Serve one canned response for every request to scheme://host.

    The vulnerability stage's fuzz request (?fuzz=...) gets fuzz_body when
    given, so reflection and SQL error pages can be simulated.
    """

    def respond(request: httpx.Request) -> httpx.Response:
        text = body
        if fuzz_body is not None and FUZZ_PARAM in request.url.params:
            text = fuzz_body
        return httpx.Response(status, headers=headers or {}, text=text)

    return router.route(method=method, scheme=scheme, host=host).mock(side_effect=respond)


class StaticStage(BaseStage):
    """Stage with canned behaviour for pipeline-level tests."""

    category = "Test"

    def __init__(self, name, delay=0.0, status="passed", severity="info", explode=False, modes=None):
        self._name = name
        self.label = name.title()
        self.error_id = f"{name}-error"
        self.delay = delay
        self.status = status
        self.severity = severity
        self.explode = explode
        self.modes = modes
        self.runs = 0

    @property
    def name(self):
        return self._name

    def applies(self, ctx):
        return self.modes is None or ctx.config.mode in self.modes

    async def execute(self, ctx):
        self.runs += 1
        await asyncio.sleep(self.delay)
        if self.explode:
            raise RuntimeError(f"{self._name} exploded")
        return StageResult(
            stage=self._name,
            findings=[self.finding(f"{self._name}-check", self.label, self.status, self.severity, "done")],
            data={"ran": True},
        )
