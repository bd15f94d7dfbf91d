# posturescan/scanner/probes/__init__.py
"""
Network probes.
Each probe performs one kind of network operation and returns a ProbeResult.
Probes do NOT classify severity. They only gather facts.
"""
from posturescan.scanner.probes import dns_probe, http_probe, port_probe, tls_probe

__all__ = ["dns_probe", "http_probe", "port_probe", "tls_probe"]
