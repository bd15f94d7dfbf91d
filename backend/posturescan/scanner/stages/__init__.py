# posturescan/scanner/stages/__init__.py
"""
Scan stages.
Each stage issues its own probes and turns the raw data into Findings
with severity classification and remediation text.
"""
from posturescan.scanner.stages.ssl_stage import SSLStage
from posturescan.scanner.stages.header_stage import HeaderStage
from posturescan.scanner.stages.dns_stage import DNSStage
from posturescan.scanner.stages.vuln_stage import VulnStage
from posturescan.scanner.stages.api_stage import APIStage
from posturescan.scanner.stages.subdomain_stage import SubdomainStage
from posturescan.scanner.stages.port_stage import PortStage
from posturescan.scanner.stages.tech_stage import TechStage

# Registry of all available stages.
# ORDER MATTERS: it is the order findings appear in the report,
# whatever order the stages finish in.
ALL_STAGES = {
    "ssl": SSLStage,
    "headers": HeaderStage,
    "dns": DNSStage,
    "vulnerabilities": VulnStage,
    "api": APIStage,
    "subdomains": SubdomainStage,
    "ports": PortStage,
    "technology": TechStage,
}

__all__ = [
    "SSLStage", "HeaderStage", "DNSStage", "VulnStage",
    "APIStage", "SubdomainStage", "PortStage", "TechStage",
    "ALL_STAGES",
]
