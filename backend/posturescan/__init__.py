# posturescan/__init__.py
"""
App factory for the posture scan API.

    - CORS origins read from CORS_ORIGINS env var (localhost fallback in dev)
    - SECRET_KEY required in production (no default fallback)
    - Production-appropriate logging levels
    - One TTLCache per app (SCAN_CACHE_TTL), shared by every scan it serves
    - Clean JSON errors, never a traceback
"""

from __future__ import annotations

import logging
import os
import re
import traceback
from typing import Any, Mapping, Optional

from flask import Flask, jsonify
from flask_cors import CORS

from posturescan.scan import scan_bp
from posturescan.scanner.cache import TTLCache
from posturescan.scanner.pipeline import ScanPipeline

error_logger = logging.getLogger("posturescan.errors")


def _is_production() -> bool:
    """Detect production by checking CORS_ORIGINS for https."""
    return os.getenv("CORS_ORIGINS", "").startswith("https://")


def create_app(config: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)

    is_prod = _is_production()

    # ── Logging ──────────────────────────────────────────────────────
    if is_prod:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        app.logger.setLevel(logging.INFO)
    else:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )
        app.logger.setLevel(logging.DEBUG)

    # Werkzeug logs every request
    logging.getLogger("werkzeug").setLevel(logging.INFO)
    # Quieten noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    # ─────────────────────────────────────────────────────────────────

    # ── CORS ────────────────────────────────────────────────────────
    # Production: set CORS_ORIGINS="https://scan.example.com" in .env
    # Dev: falls back to localhost origins if env var is not set
    cors_env = os.getenv("CORS_ORIGINS")
    if cors_env:
        cors_origins = [o.strip() for o in cors_env.split(",") if o.strip()]
    else:
        cors_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            re.compile(r"http://192\.168\.\d+\.\d+:3000"),
        ]

    CORS(app, resources={
        r"/*": {
            "origins": cors_origins,
            "supports_credentials": True,
            "allow_headers": ["Content-Type", "Authorization"],
            "methods": ["GET", "POST", "OPTIONS"],
        }
    })

    # ── Secret Key ───────────────────────────────────────────────────
    secret_key = os.getenv("SECRET_KEY")
    if is_prod and not secret_key:
        raise RuntimeError(
            "SECRET_KEY environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
        )
    app.config["SECRET_KEY"] = secret_key or "dev-secret-key-change-me"

    # ── Scanner ──────────────────────────────────────────────────────
    app.config["SCAN_CACHE_TTL"] = float(os.getenv("SCAN_CACHE_TTL", "300"))
    # Optional callable(request) -> QuotaDecision, supplied by the host app
    app.config["SCAN_QUOTA_PROVIDER"] = None
    app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024

    if config:
        app.config.update(config)

    app.extensions["posturescan"] = {
        "cache": TTLCache(ttl=app.config["SCAN_CACHE_TTL"]),
        "pipeline": app.config.get("SCAN_PIPELINE") or ScanPipeline(),
    }

    # ── Blueprints ───────────────────────────────────────────────────
    app.register_blueprint(scan_bp)

    # ── Global Error Handlers ────────────────────────────────────────
    # Return clean JSON for all errors and never expose tracebacks to users.
    # Errors are logged server-side for debugging.

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({
            "error": "Bad request",
            "message": str(e.description) if hasattr(e, "description") else "The request was malformed or invalid.",
        }), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({
            "error": "Not found",
            "message": "The requested resource was not found.",
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({
            "error": "Method not allowed",
            "message": "This HTTP method is not allowed for this endpoint.",
        }), 405

    @app.errorhandler(413)
    def payload_too_large(e):
        return jsonify({
            "error": "Payload too large",
            "message": "The request body exceeds the maximum allowed size.",
        }), 413

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({
            "error": "Too many requests",
            "message": "Rate limit exceeded. Please try again later.",
        }), 429

    @app.errorhandler(500)
    def internal_error(e):
        error_logger.error(
            "500 Internal Server Error:\n%s", traceback.format_exc()
        )
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    @app.errorhandler(Exception)
    def catch_all(e):
        """Catch-all for any unhandled exception, never leaks tracebacks."""
        error_logger.error(
            "Unhandled exception: %s\n%s", str(e), traceback.format_exc()
        )
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    # ─────────────────────────────────────────────────────────────────

    # Health check
    @app.get("/health")
    def health():
        return jsonify(status="up and running"), 200

    return app
