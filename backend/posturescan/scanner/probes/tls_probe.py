# posturescan/scanner/probes/tls_probe.py
"""
TLS probe.

Two operations:

    inspect_certificate()   Handshake without verification to grab the peer
                            certificate (DER), negotiated protocol and cipher,
                            then a second, verifying handshake to decide trust.
                            The DER blob is parsed with cryptography.

    probe_protocols()       One handshake per TLS version with
                            minimum_version == maximum_version to see which
                            versions the server accepts.

Everything runs on asyncio streams (asyncio.open_connection with an
SSLContext), so handshakes are await points like any other probe.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from posturescan.scanner.base import ProbeResult, now_utc

logger = logging.getLogger(__name__)

DEFAULT_TLS_TIMEOUT = 10.0

# Protocol versions to probe (name → ssl.TLSVersion member name)
TLS_VERSIONS = {
    "TLSv1.0": "TLSv1",
    "TLSv1.1": "TLSv1_1",
    "TLSv1.2": "TLSv1_2",
    "TLSv1.3": "TLSv1_3",
}


# ---------------------------------------------------------------------------
# Certificate inspection
# ---------------------------------------------------------------------------

async def inspect_certificate(
    hostname: str,
    port: int = 443,
    timeout: float = DEFAULT_TLS_TIMEOUT,
    now: Optional[datetime] = None,
) -> ProbeResult:
    """
    Fetch and parse the certificate served for hostname:port.

    raw_data:
        valid, verify_error, self_signed, subject, issuer, not_before,
        not_after, days_until_expiry, serial_number, fingerprint_sha256,
        san, protocol, cipher
    """
    start = time.monotonic()

    # Step 1: unverified handshake, always yields the cert if TLS works at all
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    try:
        session = await _handshake(hostname, port, ctx, timeout)
    except asyncio.TimeoutError:
        return ProbeResult.fail("tls", "timeout", f"TLS handshake with {hostname}:{port} timed out",
                                duration_ms=_elapsed(start))
    except (ssl.SSLError, OSError) as e:
        return ProbeResult.fail("tls", "network", f"TLS handshake with {hostname}:{port} failed: {e}",
                                duration_ms=_elapsed(start))

    cert_der = session["cert_der"]
    if not cert_der:
        return ProbeResult.fail("tls", "parse", f"{hostname}:{port} presented no certificate",
                                duration_ms=_elapsed(start))

    # Step 2: verifying handshake, chain + hostname
    valid, verify_error = await _verify_chain(hostname, port, timeout)

    try:
        info = parse_certificate(cert_der, now=now)
    except ValueError as e:
        return ProbeResult.fail("tls", "parse", f"Could not parse certificate from {hostname}: {e}",
                                duration_ms=_elapsed(start))

    info.update({
        "hostname": hostname,
        "port": port,
        "valid": valid,
        "verify_error": verify_error,
        "protocol": session["protocol"],
        "cipher": session["cipher"],
    })
    return ProbeResult.ok("tls", info, duration_ms=_elapsed(start))


def parse_certificate(cert_der: bytes, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Parse a DER certificate into a flat dict. Raises ValueError on garbage."""
    cert = x509.load_der_x509_certificate(cert_der)
    now = now or now_utc()

    not_before = cert.not_valid_before_utc
    not_after = cert.not_valid_after_utc
    days_until_expiry = (not_after - now).days

    san: List[str] = []
    try:
        ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        san = ext.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        pass

    return {
        "subject": _common_name(cert.subject) or cert.subject.rfc4514_string(),
        "issuer": _common_name(cert.issuer) or cert.issuer.rfc4514_string(),
        "issuer_org": _name_attr(cert.issuer, NameOID.ORGANIZATION_NAME),
        "self_signed": cert.issuer == cert.subject,
        "not_before": not_before.isoformat(),
        "not_after": not_after.isoformat(),
        "days_until_expiry": days_until_expiry,
        "serial_number": format(cert.serial_number, "x"),
        "fingerprint_sha256": cert.fingerprint(hashes.SHA256()).hex(),
        "san": san,
    }


async def _verify_chain(hostname: str, port: int, timeout: float):
    """Returns (valid, verify_error)."""
    ctx = ssl.create_default_context()
    try:
        await _handshake(hostname, port, ctx, timeout)
        return True, None
    except ssl.SSLCertVerificationError as e:
        return False, e.verify_message or str(e)
    except asyncio.TimeoutError:
        return False, "verification handshake timed out"
    except (ssl.SSLError, OSError) as e:
        return False, str(e)


# ---------------------------------------------------------------------------
# Protocol support
# ---------------------------------------------------------------------------

async def probe_protocols(
    hostname: str,
    port: int = 443,
    timeout: float = 5.0,
) -> ProbeResult:
    """
    Which TLS versions the server accepts.

    raw_data: {"TLSv1.0": bool, "TLSv1.1": bool, "TLSv1.2": bool, "TLSv1.3": bool}
    A version the local OpenSSL cannot speak is reported as unsupported.
    """
    start = time.monotonic()
    names = list(TLS_VERSIONS)
    results = await asyncio.gather(
        *(_test_protocol_version(hostname, port, TLS_VERSIONS[n], timeout) for n in names)
    )
    data = dict(zip(names, results))
    logger.debug(f"TLS versions for {hostname}:{port}: {data}")
    return ProbeResult.ok("tls_protocols", data, duration_ms=_elapsed(start))


async def _test_protocol_version(hostname: str, port: int, version_attr: str, timeout: float) -> bool:
    version = getattr(ssl.TLSVersion, version_attr, None)
    if version is None:
        return False

    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    try:
        ctx.minimum_version = version
        ctx.maximum_version = version
    except (ValueError, ssl.SSLError) as e:
        logger.debug(f"Local OpenSSL cannot pin {version_attr}: {e}")
        return False
    if version_attr in ("TLSv1", "TLSv1_1"):
        # Legacy versions need the legacy cipher list to be offered at all
        try:
            ctx.set_ciphers("DEFAULT:@SECLEVEL=0")
        except ssl.SSLError as e:
            logger.debug(f"Legacy cipher list unavailable: {e}")

    try:
        await _handshake(hostname, port, ctx, timeout)
        return True
    except (asyncio.TimeoutError, ssl.SSLError, OSError):
        return False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _handshake(hostname: str, port: int, ctx: ssl.SSLContext, timeout: float) -> Dict[str, Any]:
    reader, writer = await asyncio.wait_for(
        asyncio.open_connection(hostname, port, ssl=ctx, server_hostname=hostname),
        timeout=timeout,
    )
    try:
        ssl_obj = writer.get_extra_info("ssl_object")
        cipher = ssl_obj.cipher() if ssl_obj else None
        return {
            "cert_der": ssl_obj.getpeercert(binary_form=True) if ssl_obj else None,
            "protocol": ssl_obj.version() if ssl_obj else None,
            "cipher": cipher[0] if cipher else None,
        }
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (ssl.SSLError, OSError):
            pass


def _common_name(name: x509.Name) -> Optional[str]:
    return _name_attr(name, NameOID.COMMON_NAME)


def _name_attr(name: x509.Name, oid) -> Optional[str]:
    attrs = name.get_attributes_for_oid(oid)
    if not attrs:
        return None
    value = attrs[0].value
    return value if isinstance(value, str) else value.decode("utf-8", "replace")


def _elapsed(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
