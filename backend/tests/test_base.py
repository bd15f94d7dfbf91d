"""Tests for Finding and the BaseStage error boundary."""

import asyncio

import pytest

from posturescan.scanner.base import BaseStage, Finding, ProbeResult, StageResult
from posturescan.scanner.errors import ProbeNetworkError, ProbeParseError, ProbeTimeout


class TestFinding:
    """Finding invariants."""

    def test_passed_coerced_to_info(self):
        f = Finding(id="x", name="X", category="C", status="passed", severity="high", message="m")
        assert f.severity == "info"

    def test_info_status_coerced_to_info(self):
        f = Finding(id="x", name="X", category="C", status="info", severity="critical", message="m")
        assert f.severity == "info"

    def test_failed_keeps_severity(self):
        f = Finding(id="x", name="X", category="C", status="failed", severity="critical", message="m")
        assert f.severity == "critical"
        assert f.penalized

    def test_unknown_values_rejected(self):
        with pytest.raises(ValueError):
            Finding(id="x", name="X", category="C", status="broken", severity="low", message="m")
        with pytest.raises(ValueError):
            Finding(id="x", name="X", category="C", status="failed", severity="urgent", message="m")

    def test_to_dict_omits_empty_optionals(self):
        f = Finding(id="x", name="X", category="C", status="warning", severity="low", message="m")
        assert f.to_dict() == {
            "id": "x", "name": "X", "category": "C",
            "status": "warning", "severity": "low", "message": "m",
        }


class TestProbeResult:
    """unwrap raises the typed error."""

    def test_unwrap_success(self):
        assert ProbeResult.ok("http", {"a": 1}).unwrap() == {"a": 1}

    @pytest.mark.parametrize("kind,exc", [
        ("timeout", ProbeTimeout),
        ("network", ProbeNetworkError),
        ("parse", ProbeParseError),
    ])
    def test_unwrap_failure(self, kind, exc):
        with pytest.raises(exc) as info:
            ProbeResult.fail("dns", kind, "boom").unwrap()
        assert info.value.probe == "dns"


class DummyStage(BaseStage):
    label = "Dummy"
    category = "Test"
    error_id = "dummy-error"
    error_severity = "high"

    def __init__(self, behaviour):
        self.behaviour = behaviour

    @property
    def name(self):
        return "dummy"

    async def execute(self, ctx):
        return await self.behaviour(self, ctx)


class TestBaseStageRun:
    """run() never raises; failures become one error finding."""

    async def test_success(self, make_ctx):
        async def ok(stage, ctx):
            return StageResult(stage="", findings=[stage.finding("d", "D", "passed", "info", "fine")])

        result = await DummyStage(ok).run(make_ctx())
        assert result.stage == "dummy"
        assert not result.failed
        assert result.findings[0].category == "Test"

    async def test_exception_becomes_error_finding(self, make_ctx):
        async def explode(stage, ctx):
            raise RuntimeError("kaboom")

        result = await DummyStage(explode).run(make_ctx())
        assert result.failed
        assert len(result.findings) == 1
        f = result.findings[0]
        assert f.id == "dummy-error"
        assert f.status == "error"
        assert f.severity == "high"
        assert "kaboom" in f.message

    async def test_probe_error_kind_recorded(self, make_ctx):
        async def probe_fails(stage, ctx):
            ProbeResult.fail("http", "timeout", "read timed out").unwrap()

        result = await DummyStage(probe_fails).run(make_ctx())
        assert result.findings[0].details == {"errorKind": "timeout"}

    async def test_timeout(self, make_ctx):
        async def hang(stage, ctx):
            await asyncio.sleep(30)

        result = await DummyStage(hang).run(make_ctx(timeout_ms=1000))
        assert result.failed
        assert "timed out" in result.findings[0].message
        assert result.duration_ms >= 900
