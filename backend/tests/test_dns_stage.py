"""Tests for the DNS / email security stage."""

from posturescan.scanner.stages.dns_stage import DNSStage, detect_cdn, parse_dmarc, parse_spf, spf_issues

from conftest import by_id


class TestDNSStage:
    """Resolution, SPF, DMARC, CAA and CDN findings."""

    async def test_healthy_domain(self, healthy_dns, make_ctx):
        result = await DNSStage().run(make_ctx("example.com"))

        assert not result.failed
        assert [f.id for f in result.findings] == ["dns-resolved", "dns-spf", "dns-dmarc", "dns-caa"]
        assert all(f.status == "passed" for f in result.findings)
        assert result.data["ips"] == ["93.184.216.34"]
        assert result.data["dmarc"]["policy"] == "reject"

    async def test_missing_spf_and_dmarc(self, fake_dns, make_ctx):
        fake_dns.add("example.com", "A", "93.184.216.34")
        result = await DNSStage().run(make_ctx("example.com"))

        for fid in ("dns-spf", "dns-dmarc"):
            f = by_id(result.findings, fid)
            assert (f.status, f.severity) == ("failed", "medium")
        caa = by_id(result.findings, "dns-caa")
        assert (caa.status, caa.severity) == ("warning", "low")
        assert result.data["spf"] is None

    async def test_weak_spf_and_monitoring_dmarc(self, fake_dns, make_ctx):
        fake_dns.add("example.com", "A", "93.184.216.34")
        fake_dns.add("example.com", "TXT", "google-site-verification=abc", "v=spf1 include:x.net +all")
        fake_dns.add("_dmarc.example.com", "TXT", "v=DMARC1; p=none")
        result = await DNSStage().run(make_ctx("example.com"))

        spf = by_id(result.findings, "dns-spf")
        assert (spf.status, spf.severity) == ("warning", "medium")
        assert "+all" in spf.message
        dmarc = by_id(result.findings, "dns-dmarc")
        assert (dmarc.status, dmarc.severity) == ("warning", "medium")
        assert "none" in dmarc.message

    async def test_unresolvable_domain(self, fake_dns, make_ctx):
        result = await DNSStage().run(make_ctx("example.com"))

        f = by_id(result.findings, "dns-resolved")
        assert (f.status, f.severity) == ("failed", "critical")

    async def test_ipv6_only_resolves(self, fake_dns, make_ctx):
        fake_dns.add("example.com", "AAAA", "2606:2800:220:1::1")
        result = await DNSStage().run(make_ctx("example.com"))
        assert by_id(result.findings, "dns-resolved").status == "passed"

    async def test_cdn_detected(self, healthy_dns, make_ctx):
        healthy_dns.add("example.com", "NS", "ada.ns.cloudflare.com", "bob.ns.cloudflare.com")
        result = await DNSStage().run(make_ctx("example.com"))

        assert [f.id for f in result.findings][-2:] == ["dns-cdn", "dns-caa"]
        assert result.data["cdn"] == "Cloudflare"

    async def test_a_lookup_timeout_is_stage_error(self, fake_dns, make_ctx):
        fake_dns.fail("example.com", "A", "timeout")
        result = await DNSStage().run(make_ctx("example.com"))

        assert result.failed
        f = result.findings[0]
        assert (f.id, f.status) == ("dns-error", "error")
        assert f.details["errorKind"] == "timeout"

    async def test_other_lookup_failure_counts_as_empty(self, healthy_dns, make_ctx):
        healthy_dns.fail("example.com", "MX", "network")
        result = await DNSStage().run(make_ctx("example.com"))
        assert not result.failed
        assert result.data["records"]["MX"] == []

    def test_applies(self, make_ctx):
        assert DNSStage().applies(make_ctx("example.com"))
        assert DNSStage().applies(make_ctx("example.com", mode="attack_surface"))
        assert not DNSStage().applies(make_ctx("https://93.184.216.34"))
        assert not DNSStage().applies(make_ctx("example.com", mode="api"))


class TestRecordParsing:
    """SPF / DMARC parsing and CDN matching."""

    def test_parse_spf(self):
        spf = parse_spf(["v=spf1 ip4:192.0.2.0/24 include:_spf.example.net ~all"])
        assert spf["all_qualifier"] == "~"
        assert spf["mechanisms"] == ["ip4:192.0.2.0/24", "include:_spf.example.net", "~all"]
        assert spf_issues(spf) == []

    def test_spf_issues(self):
        assert spf_issues(parse_spf(["v=spf1 mx"])) == ["no 'all' mechanism"]
        assert len(spf_issues(parse_spf(["v=spf1 -all", "v=spf1 ?all"]))) == 1
        assert "neutral" in spf_issues(parse_spf(["v=spf1 ?all"]))[0]
        assert parse_spf(["v=spf1 all"])["all_qualifier"] == "+"

    def test_parse_dmarc(self):
        dmarc = parse_dmarc(["v=DMARC1; p=Quarantine; sp=reject; pct=50; rua=mailto:a@example.com"])
        assert dmarc["policy"] == "quarantine"
        assert dmarc["subdomain_policy"] == "reject"
        assert dmarc["pct"] == 50

    def test_dmarc_unknown_policy(self):
        assert parse_dmarc(["v=DMARC1; p=maybe"])["policy"] is None
        assert parse_dmarc(["some other txt"]) is None

    def test_detect_cdn(self):
        assert detect_cdn(["d111111abcdef8.cloudfront.net"]) == "AWS CloudFront"
        assert detect_cdn(["ns1.example.com"]) is None
        assert detect_cdn([]) is None
