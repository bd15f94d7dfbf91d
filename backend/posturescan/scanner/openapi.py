# posturescan/scanner/openapi.py
"""
OpenAPI endpoint extraction.

Turns an OpenAPI 3.x or Swagger 2.0 document into the list of endpoints
that POST /scan/api runs its checks against. The document may arrive
already decoded (a dict) or as raw JSON or YAML text.

One endpoint per operation under GET, POST, PUT, DELETE and PATCH, in
document order. The base URL is, first match wins:
    1. the caller's base_url
    2. servers[0].url (OpenAPI 3), server variables set to their defaults
    3. scheme + host + basePath (Swagger 2)
A relative server URL is resolved against the caller's base_url.

Path templates ("/users/{id}") are filled with "1" so the request
reaches a concrete route.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import yaml

from posturescan.scanner.errors import ValidationError

logger = logging.getLogger(__name__)

OPENAPI_METHODS = ("get", "post", "put", "delete", "patch")

MAX_DOCUMENT_CHARS = 2_000_000

PATH_PARAM_RE = re.compile(r"\{[^}/]+\}")
SERVER_VAR_RE = re.compile(r"\{([^}]+)\}")

JSON_CONTENT_TYPE = "application/json"


def load_document(raw: Any) -> Dict[str, Any]:
    """
    Decode an OpenAPI document. Dicts pass through; strings are tried as
    JSON first, then YAML. Raises ValidationError for anything else.
    """
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("openapi must be a JSON or YAML document", field="openapi")
    if len(raw) > MAX_DOCUMENT_CHARS:
        raise ValidationError("openapi document is too large", field="openapi")

    try:
        doc = json.loads(raw)
    except ValueError:
        try:
            doc = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            logger.debug(f"OpenAPI document is neither JSON nor YAML: {e}")
            raise ValidationError("openapi document is neither valid JSON nor YAML", field="openapi")

    if not isinstance(doc, dict):
        raise ValidationError("openapi document must be an object", field="openapi")
    return doc


def _server_url(doc: Dict[str, Any]) -> str:
    servers = doc.get("servers")
    if isinstance(servers, list):
        for server in servers:
            if isinstance(server, dict) and server.get("url"):
                url = str(server["url"])
                variables = server.get("variables") or {}

                def _default(m: "re.Match[str]") -> str:
                    var = variables.get(m.group(1)) if isinstance(variables, dict) else None
                    if isinstance(var, dict) and var.get("default") is not None:
                        return str(var["default"])
                    return m.group(0)

                return SERVER_VAR_RE.sub(_default, url)

    # Swagger 2.0
    host = doc.get("host")
    if host:
        schemes = doc.get("schemes") or ["https"]
        scheme = "https" if "https" in schemes else str(schemes[0])
        return f"{scheme}://{host}{doc.get('basePath') or ''}"
    return ""


def _base_url(doc: Dict[str, Any], base_url: Optional[str]) -> str:
    server = _server_url(doc)
    if base_url:
        if server and "://" not in server:
            return urljoin(base_url.rstrip("/") + "/", server.lstrip("/"))
        return base_url
    return server


def join_url(base: str, path: str) -> str:
    if not base:
        return path
    if base.endswith("/") and path.startswith("/"):
        return base + path[1:]
    if not base.endswith("/") and not path.startswith("/"):
        return f"{base}/{path}"
    return base + path


def _consumes_json(doc: Dict[str, Any], operation: Dict[str, Any]) -> bool:
    # OpenAPI 3: requestBody.content; Swagger 2: consumes (operation, then document)
    body = operation.get("requestBody")
    if isinstance(body, dict) and isinstance(body.get("content"), dict):
        return JSON_CONTENT_TYPE in body["content"]
    consumes = operation.get("consumes", doc.get("consumes"))
    if isinstance(consumes, list):
        return JSON_CONTENT_TYPE in consumes
    return True


def parse_openapi(raw: Any, base_url: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Endpoints described by an OpenAPI document.

    Returns a list of {"url", "method", "headers"} dicts, the same shape
    POST /scan/api accepts in its endpoints array.
    """
    doc = load_document(raw)
    paths = doc.get("paths")
    if not isinstance(paths, dict):
        raise ValidationError("openapi document has no paths", field="openapi")

    base = _base_url(doc, base_url)
    endpoints: List[Dict[str, Any]] = []

    for path, item in paths.items():
        if not isinstance(item, dict):
            continue
        concrete = PATH_PARAM_RE.sub("1", str(path))
        for method in OPENAPI_METHODS:
            operation = item.get(method)
            if not isinstance(operation, dict):
                continue
            endpoint: Dict[str, Any] = {
                "url": join_url(base, concrete),
                "method": method.upper(),
            }
            if _consumes_json(doc, operation):
                endpoint["headers"] = {"Content-Type": JSON_CONTENT_TYPE}
            endpoints.append(endpoint)

    logger.info(f"OpenAPI document: {len(endpoints)} endpoint(s) under {base or '(no base URL)'}")
    return endpoints
