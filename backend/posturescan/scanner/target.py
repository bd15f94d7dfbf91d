# posturescan/scanner/target.py
"""
Target parsing and normalization.

Everything here runs before any network I/O. A target that cannot be parsed
raises ValidationError so no probe is ever wasted on it.

Normalization:
    - Scheme defaults to https ("example.com" → "https://example.com/")
    - Hostname is lower-cased and stripped of a trailing dot
    - Only http and https are accepted
    - The path is kept for header/vulnerability probes; domain-level stages
      (SSL, DNS, discovery) use hostname only
"""

from __future__ import annotations

import base64
import ipaddress
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

from posturescan.scanner.errors import ValidationError

DOMAIN_RE = re.compile(r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")

HTTP_METHODS = {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"}
AUTH_TYPES = {"bearer", "api-key", "basic"}

MAX_TARGET_LENGTH = 2048

# RFC 7230 token characters
HEADER_NAME_RE = re.compile(r"[!#$%&'*+.^_`|~0-9A-Za-z-]+")
# Printable ASCII plus tab; httpx sends header values as ASCII
HEADER_VALUE_RE = re.compile(r"[\t\x20-\x7e]*")


def is_valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def is_valid_domain(value: str) -> bool:
    v = (value or "").strip().lower()
    if len(v) < 1 or len(v) > 253:
        return False
    return bool(DOMAIN_RE.match(v))


@dataclass(frozen=True)
class AuthConfig:
    """Credentials attached to every request a stage makes."""
    kind: str
    value: str

    def headers(self) -> Dict[str, str]:
        if self.kind == "bearer":
            return {"Authorization": f"Bearer {self.value}"}
        if self.kind == "api-key":
            return {"x-api-key": self.value}
        # basic: "user:pass" gets encoded, anything else is taken as pre-encoded
        token = self.value
        if ":" in token:
            token = base64.b64encode(token.encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {token}"}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["AuthConfig"]:
        if data is None or isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            raise ValidationError("auth must be an object", field="auth")
        kind = str(data.get("type") or "").strip().lower()
        value = data.get("value")
        if kind not in AUTH_TYPES:
            raise ValidationError("auth.type must be bearer, api-key or basic", field="auth")
        if not isinstance(value, str) or not value:
            raise ValidationError("auth.value is required", field="auth")
        auth = cls(kind=kind, value=value)
        if not all(HEADER_VALUE_RE.fullmatch(v) for v in auth.headers().values()):
            raise ValidationError("auth.value must be printable ASCII", field="auth")
        return auth


@dataclass(frozen=True)
class Target:
    """
    The subject of a scan. Immutable for the lifetime of one scan.

    url keeps path and query; hostname is what domain-level checks use.
    """
    url: str
    scheme: str
    hostname: str
    port: Optional[int] = None
    path: str = "/"
    query: str = ""
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    auth: Optional[AuthConfig] = None
    body: Optional[str] = None

    @property
    def is_https(self) -> bool:
        return self.scheme == "https"

    @property
    def is_ip(self) -> bool:
        return is_valid_ip(self.hostname)

    @property
    def effective_port(self) -> int:
        if self.port:
            return self.port
        return 443 if self.is_https else 80

    @property
    def domain(self) -> str:
        """Hostname for domain-level checks (DNS, discovery)."""
        return self.hostname

    @property
    def origin(self) -> str:
        netloc = self._netloc()
        return f"{self.scheme}://{netloc}"

    def request_headers(self) -> Dict[str, str]:
        """Custom headers merged with auth headers (auth wins)."""
        out = dict(self.headers)
        if self.auth:
            out.update(self.auth.headers())
        return out

    def _netloc(self) -> str:
        host = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        return f"{host}:{self.port}" if self.port else host

    def __str__(self) -> str:
        return self.url


def parse_target(
    raw: Any,
    method: Optional[str] = None,
    headers: Optional[Mapping[str, Any]] = None,
    auth: Any = None,
    body: Optional[str] = None,
) -> Target:
    """
    Parse a user-supplied URL or domain into a Target.

    Raises ValidationError on anything that is not an http(s) URL with a
    valid domain name or IP address.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("target is required", field="target")

    value = raw.strip()
    if len(value) > MAX_TARGET_LENGTH:
        raise ValidationError("target is too long", field="target")
    if any(c.isspace() for c in value):
        raise ValidationError("target must not contain whitespace", field="target")

    if "://" not in value:
        value = "https://" + value

    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError:
        raise ValidationError("target is not a valid URL", field="target")

    scheme = parts.scheme.lower()
    if scheme not in ("http", "https"):
        raise ValidationError("target scheme must be http or https", field="target")

    hostname = (parts.hostname or "").lower().rstrip(".")
    if not hostname:
        raise ValidationError("target has no hostname", field="target")
    if not (is_valid_ip(hostname) or is_valid_domain(hostname)):
        raise ValidationError(f"invalid hostname '{hostname}'", field="target")

    m = (method or "GET").strip().upper()
    if m not in HTTP_METHODS:
        raise ValidationError(f"unsupported HTTP method '{method}'", field="method")

    clean_headers: Dict[str, str] = {}
    if headers is not None:
        if not isinstance(headers, Mapping):
            raise ValidationError("headers must be an object", field="headers")
        for k, v in headers.items():
            if not isinstance(k, str) or not HEADER_NAME_RE.fullmatch(k.strip()):
                raise ValidationError(f"invalid header name {k!r}", field="headers")
            value = str(v)
            if not HEADER_VALUE_RE.fullmatch(value):
                raise ValidationError(f"header {k.strip()!r} must be printable ASCII", field="headers")
            clean_headers[k.strip()] = value

    if body is not None and not isinstance(body, str):
        raise ValidationError("body must be a string", field="body")

    path = parts.path or "/"
    netloc_host = f"[{hostname}]" if ":" in hostname else hostname
    netloc = f"{netloc_host}:{port}" if port else netloc_host
    url = urlunsplit((scheme, netloc, path, parts.query, ""))

    return Target(
        url=url,
        scheme=scheme,
        hostname=hostname,
        port=port,
        path=path,
        query=parts.query,
        method=m,
        headers=clean_headers,
        auth=AuthConfig.from_dict(auth),
        body=body,
    )
