# posturescan/scan/__init__.py
from posturescan.scan.routes import scan_bp

__all__ = ["scan_bp"]
