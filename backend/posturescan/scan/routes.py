# posturescan/scan/routes.py
"""
Scan endpoints.

    POST /scan                   {target, config}
    POST /scan/api               {url, method, headers, auth, body, config}   mode forced to api
                                 {endpoints: [...], headers, auth, config}
                                 {openapi, baseUrl, headers, auth, config}
    POST /scan/attack-surface    {domain, config}                             mode forced to attack_surface

A report is always 200, even when stages errored; the degradation is in
the findings. Bad input is 400, a denied quota decision is 402.

/scan/api with a single url answers with one report. With an endpoints
array or an OpenAPI document it answers {endpoints, truncated, results},
one report per endpoint. Top-level headers and auth apply to every
endpoint; an endpoint's own headers and auth win.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from flask import Blueprint, current_app, jsonify, request

from posturescan.scanner.config import ScanConfig
from posturescan.scanner.errors import ScanDenied, ValidationError
from posturescan.scanner.openapi import parse_openapi
from posturescan.scanner.pipeline import QuotaDecision, run_scan, run_scans
from posturescan.scanner.target import Target, parse_target

logger = logging.getLogger(__name__)

scan_bp = Blueprint("scan", __name__)

# Endpoints scanned per /scan/api request
MAX_API_ENDPOINTS = 50


def _quota_decision() -> Optional[QuotaDecision]:
    provider = current_app.config.get("SCAN_QUOTA_PROVIDER")
    if provider is None:
        return None
    return provider(request)


def _json_body() -> Optional[Dict[str, Any]]:
    """The request's JSON object; None when the body is missing, malformed or not an object."""
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        return None
    return body


def _run(target: Any, config: Any, **kwargs: Any):
    ext = current_app.extensions["posturescan"]
    try:
        report = run_scan(
            target,
            config,
            cache=ext["cache"],
            quota=_quota_decision(),
            pipeline=ext["pipeline"],
            **kwargs,
        )
    except ValidationError as e:
        return jsonify(error=e.message), 400
    except ScanDenied as e:
        return jsonify(error=e.message, remaining=e.remaining), 402
    return jsonify(report.to_dict()), 200


def _config(body: Dict[str, Any], **overrides: Any) -> ScanConfig:
    return ScanConfig.from_dict(body.get("config"), **overrides)


@scan_bp.post("/scan")
def scan():
    body = _json_body()
    if body is None:
        return jsonify(error="request body must be a JSON object"), 400
    target = (body.get("target") or "").strip() if isinstance(body.get("target"), str) else None
    if not target:
        return jsonify(error="target is required"), 400

    try:
        config = _config(body)
    except ValidationError as e:
        return jsonify(error=e.message), 400

    return _run(target, config)


@scan_bp.post("/scan/api")
def scan_api():
    body = _json_body()
    if body is None:
        return jsonify(error="request body must be a JSON object"), 400

    if "endpoints" in body or "openapi" in body:
        return _scan_api_batch(body)

    url = body.get("url")
    if not isinstance(url, str) or not url.strip():
        return jsonify(error="url is required"), 400

    try:
        config = _config(body, mode="api")
    except ValidationError as e:
        return jsonify(error=e.message), 400

    return _run(
        url.strip(),
        config,
        method=body.get("method"),
        headers=body.get("headers"),
        auth=body.get("auth"),
        body=body.get("body"),
    )


def _endpoint_targets(body: Dict[str, Any], endpoints: List[Any]) -> List[Target]:
    """Parse every endpoint up front so a bad one fails the request before any I/O."""
    shared_headers = body.get("headers")
    if shared_headers is not None and not isinstance(shared_headers, dict):
        raise ValidationError("headers must be an object", field="headers")

    targets: List[Target] = []
    for i, ep in enumerate(endpoints):
        if not isinstance(ep, dict):
            raise ValidationError(f"endpoints[{i}] must be an object", field="endpoints")
        headers = dict(shared_headers or {})
        if isinstance(ep.get("headers"), dict):
            headers.update(ep["headers"])
        elif ep.get("headers") is not None:
            raise ValidationError(f"endpoints[{i}]: headers must be an object", field="endpoints")
        try:
            targets.append(parse_target(
                ep.get("url"),
                method=ep.get("method"),
                headers=headers,
                auth=ep.get("auth") or body.get("auth"),
                body=ep.get("body"),
            ))
        except ValidationError as e:
            raise ValidationError(f"endpoints[{i}]: {e.message}", field="endpoints")
    return targets


def _scan_api_batch(body: Dict[str, Any]):
    truncated = False
    try:
        if "openapi" in body:
            base_url = body.get("baseUrl")
            if base_url is not None and not isinstance(base_url, str):
                raise ValidationError("baseUrl must be a string", field="baseUrl")
            endpoints = parse_openapi(body["openapi"], base_url=base_url)
            if len(endpoints) > MAX_API_ENDPOINTS:
                logger.warning(f"OpenAPI document lists {len(endpoints)} endpoints, scanning the first {MAX_API_ENDPOINTS}")
                endpoints = endpoints[:MAX_API_ENDPOINTS]
                truncated = True
        else:
            endpoints = body["endpoints"]
            if not isinstance(endpoints, list):
                raise ValidationError("endpoints must be an array", field="endpoints")
            if len(endpoints) > MAX_API_ENDPOINTS:
                raise ValidationError(f"at most {MAX_API_ENDPOINTS} endpoints per request", field="endpoints")

        if not endpoints:
            raise ValidationError("No endpoints provided", field="endpoints")

        targets = _endpoint_targets(body, endpoints)
        config = _config(body, mode="api")
    except ValidationError as e:
        return jsonify(error=e.message), 400

    ext = current_app.extensions["posturescan"]
    logger.info(f"API scan requested for {len(targets)} endpoint(s)")
    try:
        reports = run_scans(
            targets,
            config,
            cache=ext["cache"],
            quota=_quota_decision(),
            pipeline=ext["pipeline"],
        )
    except ScanDenied as e:
        return jsonify(error=e.message, remaining=e.remaining), 402

    return jsonify(
        endpoints=len(reports),
        truncated=truncated,
        results=[r.to_dict() for r in reports],
    ), 200


@scan_bp.post("/scan/attack-surface")
def scan_attack_surface():
    body = _json_body()
    if body is None:
        return jsonify(error="request body must be a JSON object"), 400
    domain = body.get("domain")
    if not isinstance(domain, str) or not domain.strip():
        return jsonify(error="domain is required"), 400

    # Accept "https://example.com/path" and reduce it to the host
    value = domain.strip().lower()
    if "://" in value:
        value = value.split("://", 1)[1]
    value = value.split("/", 1)[0]

    try:
        config = _config(body, mode="attack_surface")
    except ValidationError as e:
        return jsonify(error=e.message), 400

    logger.info(f"Attack-surface scan requested for {value}")
    return _run(value, config)
