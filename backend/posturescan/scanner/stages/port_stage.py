# posturescan/scanner/stages/port_stage.py
"""
Port Reachability Stage.

Probes at most config.max_port_ips addresses of the root domain against a
fixed allowlist: the web ports over HTTP HEAD, the service ports with a
best-effort HTTP reachability check. There is no raw TCP scanning, so the
state of a port is an approximation; every finding says so in details.

Indeterminate results count as closed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

from posturescan.scanner.base import BaseStage, Finding, ScanContext, StageResult
from posturescan.scanner.probes import dns_probe, port_probe

logger = logging.getLogger(__name__)


class PortStage(BaseStage):
    """HTTP-reachability port probing on a fixed allowlist."""

    label = "Port"
    category = "Attack Surface"
    error_id = "ports-error"
    error_severity = "low"

    @property
    def name(self) -> str:
        return "ports"

    def applies(self, ctx: ScanContext) -> bool:
        return ctx.config.ports_enabled

    async def execute(self, ctx: ScanContext) -> StageResult:
        target = ctx.target
        if target.is_ip:
            ips = [target.hostname]
        else:
            ips = await dns_probe.resolve_addresses(
                target.domain, timeout=ctx.config.dns_timeout, cache=ctx.cache
            )
        ips = ips[: ctx.config.max_port_ips]

        ports = list(port_probe.WEB_PORTS) + list(port_probe.SERVICE_PORTS)
        results = await asyncio.gather(*(
            port_probe.probe_port(ip, port, timeout=ctx.config.port_timeout)
            for ip in ips
            for port in ports
        ))
        observations = [r.raw_data for r in results]

        open_ports = [o for o in observations if o["state"] == "open"]
        closed = sum(1 for o in observations if o["state"] == "closed")
        indeterminate = sum(1 for o in observations if o["state"] == "indeterminate")

        # One finding per port number, listing every address it is open on
        by_port: Dict[int, List[Dict[str, Any]]] = {}
        for o in open_ports:
            by_port.setdefault(o["port"], []).append(o)
        findings: List[Finding] = [self._port_finding(obs) for obs in by_port.values()]
        findings.append(self.finding(
            id="ports-summary",
            name="Port Reachability Summary",
            status="info",
            severity="info",
            message=(
                f"{len(open_ports)} open, {closed} closed, {indeterminate} indeterminate "
                f"across {len(ips)} address(es)"
            ),
            details={
                "ips": ips,
                "open": len(open_ports),
                "closed": closed,
                "indeterminate": indeterminate,
                "method": port_probe.PROBE_METHOD,
                "accuracy": port_probe.ACCURACY_NOTE,
            },
        ))

        logger.info(f"Ports {target.hostname}: {len(open_ports)} open on {len(ips)} IP(s)")

        return StageResult(
            stage=self.name,
            findings=findings,
            data={
                "ips": ips,
                "open_ports": [
                    {"ip": o["ip"], "port": o["port"], "service": o["service"]}
                    for o in open_ports
                ],
                "observations": observations,
            },
        )

    def _port_finding(self, observations: List[Dict[str, Any]]) -> Finding:
        first = observations[0]
        port, service = first["port"], first["service"]
        ips = [o["ip"] for o in observations]
        return self.finding(
            id=f"port-{port}",
            name=f"Port {port} ({service}) Open",
            status="info",
            severity="info",
            message=f"{service} reachable on " + ", ".join(f"{ip}:{port}" for ip in ips),
            details={
                "ips": ips,
                "port": port,
                "service": service,
                "reasons": [o["reason"] for o in observations],
                "method": first["method"],
                "accuracy": port_probe.ACCURACY_NOTE,
            },
        )
