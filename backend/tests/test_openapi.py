"""Tests for OpenAPI endpoint extraction."""

import json

import pytest

from posturescan.scanner.errors import ValidationError
from posturescan.scanner.openapi import join_url, load_document, parse_openapi


PETSTORE = {
    "openapi": "3.0.3",
    "servers": [
        {"url": "https://{env}.example.com/v{version}", "variables": {
            "env": {"default": "api"},
            "version": {"default": "2"},
        }},
        {"url": "https://backup.example.com"},
    ],
    "paths": {
        "/pets": {
            "get": {"summary": "List pets"},
            "post": {"requestBody": {"content": {"application/json": {}}}},
            "parameters": [],
        },
        "/pets/{petId}": {
            "get": {},
            "put": {"requestBody": {"content": {"application/xml": {}}}},
            "head": {},
        },
    },
}

SWAGGER = {
    "swagger": "2.0",
    "host": "legacy.example.com",
    "basePath": "/api",
    "schemes": ["http", "https"],
    "consumes": ["application/xml"],
    "paths": {
        "/users": {"get": {}, "patch": {"consumes": ["application/json"]}},
    },
}


class TestParseOpenAPI:
    """Document → endpoint list."""

    def test_openapi3_operations_in_document_order(self):
        endpoints = parse_openapi(PETSTORE)

        assert [(e["method"], e["url"]) for e in endpoints] == [
            ("GET", "https://api.example.com/v2/pets"),
            ("POST", "https://api.example.com/v2/pets"),
            ("GET", "https://api.example.com/v2/pets/1"),
            ("PUT", "https://api.example.com/v2/pets/1"),
        ]

    def test_json_content_type_follows_request_body(self):
        endpoints = parse_openapi(PETSTORE)
        put = endpoints[3]
        assert "headers" not in put
        assert endpoints[1]["headers"] == {"Content-Type": "application/json"}

    def test_swagger2_host_and_consumes(self):
        endpoints = parse_openapi(SWAGGER)

        assert [(e["method"], e["url"]) for e in endpoints] == [
            ("GET", "https://legacy.example.com/api/users"),
            ("PATCH", "https://legacy.example.com/api/users"),
        ]
        # document-level consumes is xml only; the PATCH operation overrides it
        assert "headers" not in endpoints[0]
        assert endpoints[1]["headers"] == {"Content-Type": "application/json"}

    def test_base_url_overrides_servers(self):
        endpoints = parse_openapi(PETSTORE, base_url="https://staging.example.com/")
        assert endpoints[0]["url"] == "https://staging.example.com/pets"

    def test_no_base_url_leaves_paths_relative(self):
        endpoints = parse_openapi({"paths": {"/ping": {"get": {}}}})
        assert endpoints == [{"url": "/ping", "method": "GET", "headers": {"Content-Type": "application/json"}}]

    def test_json_and_yaml_strings(self):
        yaml_doc = "servers:\n  - url: https://api.example.com\npaths:\n  /ping:\n    get: {}\n"
        assert parse_openapi(json.dumps(PETSTORE)) == parse_openapi(PETSTORE)
        assert parse_openapi(yaml_doc)[0]["url"] == "https://api.example.com/ping"

    @pytest.mark.parametrize("raw", [
        None,
        "",
        42,
        "- just\n- a list\n",
        "paths: [unclosed",
        {"openapi": "3.0.0"},
        {"paths": ["not", "a", "mapping"]},
    ])
    def test_invalid_documents(self, raw):
        with pytest.raises(ValidationError) as exc:
            parse_openapi(raw)
        assert exc.value.field == "openapi"

    def test_document_size_limit(self, monkeypatch):
        monkeypatch.setattr("posturescan.scanner.openapi.MAX_DOCUMENT_CHARS", 10)
        with pytest.raises(ValidationError):
            load_document('{"paths": {}}')


@pytest.mark.parametrize("base,path,expected", [
    ("https://a.example.com", "/x", "https://a.example.com/x"),
    ("https://a.example.com/", "/x", "https://a.example.com/x"),
    ("https://a.example.com", "x", "https://a.example.com/x"),
    ("", "/x", "/x"),
])
def test_join_url(base, path, expected):
    assert join_url(base, path) == expected
