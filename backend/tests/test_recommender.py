"""Tests for remediation recommendations."""

from posturescan.scanner.base import Finding
from posturescan.scanner.recommender import build_recommendations


def make(fid, status, severity, category="Headers", **kwargs):
    return Finding(id=fid, name=fid.title(), category=category, status=status,
                   severity=severity, message=f"{fid} message", **kwargs)


class TestBuildRecommendations:
    """Filtering, curation, ordering and deduplication."""

    def test_only_failed_and_warning(self):
        recs = build_recommendations([
            make("a", "passed", "info"),
            make("b", "info", "info"),
            make("c", "error", "high"),
            make("d", "warning", "low"),
        ])
        assert [r.id for r in recs] == ["rec-d"]

    def test_curated_entries(self):
        recs = build_recommendations([
            make("header-csp", "failed", "high"),
            make("header-hsts", "failed", "high"),
        ])
        csp = next(r for r in recs if r.id == "rec-csp")
        assert len(csp.steps) == 4
        assert csp.effort == "medium"
        hsts = next(r for r in recs if r.id == "rec-hsts")
        assert len(hsts.steps) == 3

    def test_generic_entry_uses_finding_recommendation(self):
        recs = build_recommendations([
            make("header-xfo", "warning", "medium", recommendation="Add X-Frame-Options: DENY"),
        ])
        rec = recs[0]
        assert rec.id == "rec-header-xfo"
        assert rec.description == "Add X-Frame-Options: DENY"
        assert rec.impact == "medium"
        assert "steps" not in rec.to_dict()

    def test_ssl_renew_severity_depends_on_days(self):
        soon = build_recommendations([make("ssl-expiry", "failed", "high", category="SSL/TLS",
                                           details={"daysUntilExpiry": 3})])
        later = build_recommendations([make("ssl-expiry", "warning", "medium", category="SSL/TLS",
                                            details={"daysUntilExpiry": 20})])
        assert soon[0].severity == "critical"
        assert later[0].severity == "high"

    def test_sorted_by_severity_then_category(self):
        recs = build_recommendations([
            make("x-low", "warning", "low", category="A"),
            make("x-high-b", "failed", "high", category="B"),
            make("x-high-a", "failed", "high", category="A"),
            make("x-crit", "failed", "critical", category="Z"),
        ])
        assert [r.id for r in recs] == ["rec-x-crit", "rec-x-high-a", "rec-x-high-b", "rec-x-low"]

    def test_deduplicated_by_finding_id(self):
        recs = build_recommendations([
            make("risk-x", "failed", "medium", details={"asset": "a"}),
            make("risk-x", "failed", "critical", details={"asset": "b"}),
        ])
        assert len(recs) == 1
        # the most severe occurrence wins
        assert recs[0].severity == "critical"

    def test_curated_severity_reorders(self):
        recs = build_recommendations([
            make("x-high", "failed", "high"),
            make("no-https", "failed", "critical", category="SSL/TLS"),
            make("ssl-valid", "failed", "critical", category="SSL/TLS"),
        ])
        assert [r.id for r in recs][:2] == ["rec-https", "rec-ssl-cert"]
        assert recs[-1].id == "rec-x-high"

    def test_empty(self):
        assert build_recommendations([]) == []
