# posturescan/scanner/config.py
"""
Scan configuration.

Process-wide defaults come from environment variables (read once at import).
Per-scan options arrive as a dict from the API layer, in camelCase
("timeoutMs", "deepScan", "checkPorts", "planTier") or snake_case, and are
parsed into a frozen ScanConfig.

Environment:
    SCAN_STAGE_TIMEOUT_MS   per-stage ceiling            (default: 15000)
    SCAN_HTTP_TIMEOUT       HTTP probe timeout, seconds  (default: 10)
    SCAN_DNS_TIMEOUT        DNS probe timeout, seconds   (default: 2)
    SCAN_PORT_TIMEOUT       port probe timeout, seconds  (default: 2)
    SCAN_MAX_CONCURRENCY    subdomain lookups in flight  (default: 20)
    SCAN_USER_AGENT         User-Agent for HTTP probes
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from posturescan.scanner.errors import ValidationError


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


DEFAULT_STAGE_TIMEOUT_MS = int(_env_float("SCAN_STAGE_TIMEOUT_MS", 15000))
DEFAULT_HTTP_TIMEOUT = _env_float("SCAN_HTTP_TIMEOUT", 10.0)
DEFAULT_DNS_TIMEOUT = _env_float("SCAN_DNS_TIMEOUT", 2.0)
DEFAULT_PORT_TIMEOUT = _env_float("SCAN_PORT_TIMEOUT", 2.0)
DEFAULT_MAX_CONCURRENCY = int(_env_float("SCAN_MAX_CONCURRENCY", 20))
USER_AGENT = os.getenv("SCAN_USER_AGENT", "posturescan/1.0 (+security posture scanner)")

MODES = ("website", "api", "attack_surface")
PLAN_TIERS = ("free", "pro", "business")

# Hard bounds for caller-supplied timeouts
MIN_STAGE_TIMEOUT_MS = 1000
MAX_STAGE_TIMEOUT_MS = 120000

# Accepted spellings → field name
_KEY_ALIASES = {
    "mode": "mode",
    "timeoutMs": "timeout_ms",
    "timeout_ms": "timeout_ms",
    "deepScan": "deep_scan",
    "deep_scan": "deep_scan",
    "checkPorts": "check_ports",
    "check_ports": "check_ports",
    "planTier": "plan_tier",
    "plan_tier": "plan_tier",
}


@dataclass(frozen=True)
class ScanConfig:
    """
    Options for one scan invocation.

    Fields:
        mode:            website, api or attack_surface
        timeout_ms:      per-stage ceiling
        deep_scan:       website mode also fingerprints technologies
        check_ports:     None = mode default (on for attack_surface only)
        plan_tier:       free, pro or business; caps subdomain candidates
        http_timeout:    seconds, per HTTP probe
        dns_timeout:     seconds, per DNS lookup
        port_timeout:    seconds, per port probe
        max_concurrency: subdomain lookups in flight
        max_port_ips:    addresses probed by the port stage
    """
    mode: str = "website"
    timeout_ms: int = DEFAULT_STAGE_TIMEOUT_MS
    deep_scan: bool = False
    check_ports: Optional[bool] = None
    plan_tier: str = "free"
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    dns_timeout: float = DEFAULT_DNS_TIMEOUT
    port_timeout: float = DEFAULT_PORT_TIMEOUT
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_port_ips: int = 2

    def __post_init__(self):
        if self.mode not in MODES:
            raise ValidationError(f"mode must be one of {', '.join(MODES)}", field="mode")
        if self.plan_tier not in PLAN_TIERS:
            raise ValidationError(f"planTier must be one of {', '.join(PLAN_TIERS)}", field="planTier")
        if not (MIN_STAGE_TIMEOUT_MS <= self.timeout_ms <= MAX_STAGE_TIMEOUT_MS):
            raise ValidationError(
                f"timeoutMs must be between {MIN_STAGE_TIMEOUT_MS} and {MAX_STAGE_TIMEOUT_MS}",
                field="timeoutMs",
            )
        if self.max_concurrency < 1:
            raise ValidationError("max_concurrency must be at least 1", field="max_concurrency")

    @property
    def stage_timeout(self) -> float:
        """Per-stage ceiling in seconds."""
        return self.timeout_ms / 1000.0

    @property
    def ports_enabled(self) -> bool:
        if self.check_ports is None:
            return self.mode == "attack_surface"
        return self.check_ports

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], **overrides: Any) -> "ScanConfig":
        """
        Build a ScanConfig from an API payload.

        Unknown keys are ignored. Wrongly typed values raise ValidationError.
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError("config must be an object", field="config")

        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            field_name = _KEY_ALIASES.get(key)
            if field_name is None or value is None:
                continue
            kwargs[field_name] = value
        kwargs.update(overrides)

        if "mode" in kwargs:
            kwargs["mode"] = str(kwargs["mode"]).strip().lower().replace("-", "_")
        if "plan_tier" in kwargs:
            kwargs["plan_tier"] = str(kwargs["plan_tier"]).strip().lower()
        if "timeout_ms" in kwargs:
            value = kwargs["timeout_ms"]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError("timeoutMs must be a number", field="timeoutMs")
            if isinstance(value, float) and not math.isfinite(value):
                raise ValidationError("timeoutMs must be a finite number", field="timeoutMs")
            kwargs["timeout_ms"] = int(value)
        for flag, label in (("deep_scan", "deepScan"), ("check_ports", "checkPorts")):
            if flag in kwargs and not isinstance(kwargs[flag], bool):
                raise ValidationError(f"{label} must be a boolean", field=label)

        return cls(**kwargs)
