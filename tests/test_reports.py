"""Tests for scanner report decoding."""

import json

import pytest

from fakes import trivy_report, trivy_vuln
from vscan.core.errors import ScanParseError
from vscan.scanners.reports import (
    GrypeReport,
    TrivyReport,
    UnknownReport,
    count_by_severity,
    decode_report,
    parse_report,
)


def test_trivy_report():
    text = trivy_report(
        trivy_vuln(
            "CVE-2024-0001",
            FixedVersion="3.0.13",
            References=["https://nvd.nist.gov/vuln/detail/CVE-2024-0001"],
            PublishedDate="2024-01-10T00:00:00Z",
        ),
        trivy_vuln("CVE-2024-0002", pkg="zlib", version="1.2.11", severity="critical"),
    )
    report, findings = parse_report(text)
    assert isinstance(report, TrivyReport)
    assert [f.finding_id for f in findings] == ["CVE-2024-0001", "CVE-2024-0002"]
    first = findings[0]
    assert first.fixed_version == "3.0.13"
    assert first.references == ("https://nvd.nist.gov/vuln/detail/CVE-2024-0001",)
    assert first.package_path == "usr/lib/os-release"
    assert findings[1].severity == "CRITICAL"
    assert findings[1].key == ("CVE-2024-0002", "zlib", "1.2.11")


def test_trivy_report_without_vulnerabilities():
    report, findings = parse_report(json.dumps({"SchemaVersion": 2, "Results": [{"Target": "x"}]}))
    assert isinstance(report, TrivyReport)
    assert findings == []


def test_grype_report():
    document = {
        "matches": [
            {
                "vulnerability": {
                    "id": "CVE-2023-4863",
                    "severity": "Negligible",
                    "fix": {"versions": ["1.3.2"], "state": "fixed"},
                    "urls": ["https://example.org/CVE-2023-4863"],
                },
                "artifact": {
                    "name": "libwebp",
                    "version": "1.2.4",
                    "locations": [{"path": "/var/lib/dpkg/status"}],
                },
            },
            {"vulnerability": {"id": "CVE-2023-0000"}, "artifact": {}},
        ]
    }
    report, findings = parse_report(json.dumps(document))
    assert isinstance(report, GrypeReport)
    assert len(findings) == 1
    finding = findings[0]
    assert finding.severity == "LOW"
    assert finding.fixed_version == "1.3.2"
    assert finding.package_path == "/var/lib/dpkg/status"


def test_unknown_report_is_rejected():
    report = decode_report({"artifacts": []})
    assert isinstance(report, UnknownReport)
    with pytest.raises(ScanParseError) as exc_info:
        report.findings()
    assert exc_info.value.details == {"top_level_keys": ["artifacts"]}


@pytest.mark.parametrize("text", ["", "   ", "not json"])
def test_unreadable_report(text):
    with pytest.raises(ScanParseError):
        parse_report(text)


def test_count_by_severity():
    _, findings = parse_report(
        trivy_report(
            trivy_vuln("CVE-1", severity="HIGH"),
            trivy_vuln("CVE-2", severity="HIGH"),
            trivy_vuln("CVE-3", severity="weird"),
        )
    )
    counts = count_by_severity(findings)
    assert counts["high"] == 2
    assert counts["unknown"] == 1
    assert counts["total"] == 3


@pytest.mark.parametrize(
    "document",
    [
        {"matches": [None]},
        {"matches": {"a": 1}},
        {"matches": [{"vulnerability": "CVE-2024-0001", "artifact": {"name": "zlib"}}]},
        {"matches": [{"vulnerability": {"id": "CVE-1"}, "artifact": {"name": "zlib", "locations": ["/usr"]}}]},
        {"Results": ["x"]},
        {"Results": {"Target": "/"}},
        {"Results": [{"Vulnerabilities": [None]}]},
        {"SchemaVersion": 2, "Results": [{"Vulnerabilities": "none"}]},
    ],
)
def test_malformed_report_shapes_are_parse_errors(document):
    with pytest.raises(ScanParseError, match="Malformed scanner report"):
        parse_report(json.dumps(document))


def test_null_collections_mean_no_findings():
    _, findings = parse_report(json.dumps({"SchemaVersion": 2, "Results": [{"Target": "/", "Vulnerabilities": None}]}))
    assert findings == []
    _, findings = parse_report(json.dumps({"matches": None}))
    assert findings == []
