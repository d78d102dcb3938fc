"""Decoding scanner JSON reports into normalized findings.

Reports are decoded as a tagged union keyed on their top-level shape:
Trivy writes ``Results`` (plus ``SchemaVersion``), Grype writes ``matches``.
Anything else decodes to :class:`UnknownReport` and is rejected explicitly.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from vscan.core.errors import ScanParseError

SEVERITIES = ("CRITICAL", "HIGH", "MEDIUM", "LOW", "UNKNOWN")


@dataclass(frozen=True)
class Finding:
    finding_id: str
    package_name: str
    installed_version: str
    severity: str
    fixed_version: str | None = None
    description: str | None = None
    references: tuple[str, ...] = ()
    published_date: str | None = None
    package_path: str | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.finding_id, self.package_name, self.installed_version)


@dataclass
class TrivyReport:
    results: list[dict[str, Any]]
    scanner: str = "trivy"

    def findings(self) -> list[Finding]:
        out: list[Finding] = []
        for result in _records(self.results, "Results"):
            for vuln in _records(result.get("Vulnerabilities"), "Results[].Vulnerabilities"):
                if not vuln.get("VulnerabilityID") or not vuln.get("PkgName"):
                    continue
                out.append(
                    Finding(
                        finding_id=str(vuln["VulnerabilityID"]),
                        package_name=str(vuln["PkgName"]),
                        installed_version=str(vuln.get("InstalledVersion") or ""),
                        severity=normalize_severity(vuln.get("Severity")),
                        fixed_version=_text(vuln.get("FixedVersion")),
                        description=_text(vuln.get("Description") or vuln.get("Title")),
                        references=_strings(vuln.get("References")),
                        published_date=_text(vuln.get("PublishedDate")),
                        package_path=_text(vuln.get("PkgPath") or result.get("Target")),
                    )
                )
        return out


@dataclass
class GrypeReport:
    matches: list[dict[str, Any]]
    scanner: str = "grype"

    def findings(self) -> list[Finding]:
        out: list[Finding] = []
        for match in _records(self.matches, "matches"):
            vuln = _record(match.get("vulnerability"), "matches[].vulnerability")
            artifact = _record(match.get("artifact"), "matches[].artifact")
            if not vuln.get("id") or not artifact.get("name"):
                continue
            fix_versions = _strings(_record(vuln.get("fix"), "matches[].vulnerability.fix").get("versions"))
            locations = _records(artifact.get("locations"), "matches[].artifact.locations")
            out.append(
                Finding(
                    finding_id=str(vuln["id"]),
                    package_name=str(artifact["name"]),
                    installed_version=str(artifact.get("version") or ""),
                    severity=normalize_severity(vuln.get("severity")),
                    fixed_version=fix_versions[0] if fix_versions else None,
                    description=_text(vuln.get("description")),
                    references=_strings(vuln.get("urls") or vuln.get("references")),
                    published_date=_text(vuln.get("published")),
                    package_path=_text(locations[0].get("path")) if locations else None,
                )
            )
        return out


@dataclass
class UnknownReport:
    keys: list[str] = field(default_factory=list)
    scanner: str = "unknown"

    def findings(self) -> list[Finding]:
        raise ScanParseError(
            "Unrecognized scanner report shape", details={"top_level_keys": self.keys}
        )


Report = Union[TrivyReport, GrypeReport, UnknownReport]


def normalize_severity(value: Any) -> str:
    severity = str(value or "UNKNOWN").upper()
    if severity == "NEGLIGIBLE":
        return "LOW"
    return severity if severity in SEVERITIES else "UNKNOWN"


def _records(value: Any, where: str) -> list[dict[str, Any]]:
    """A JSON array of objects; ``null`` is an empty array."""
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(entry, dict) for entry in value):
        raise ScanParseError(f"Malformed scanner report: {where} must be a list of objects", details={"field": where})
    return value


def _record(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ScanParseError(f"Malformed scanner report: {where} must be an object", details={"field": where})
    return value


def _text(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def _strings(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v) for v in value if isinstance(v, (str, int, float)))


def decode_report(document: Any) -> Report:
    """Pick the report variant from the document's discriminating keys."""
    if not isinstance(document, dict):
        return UnknownReport(keys=[])
    if "Results" in document or "SchemaVersion" in document:
        return TrivyReport(results=document.get("Results") or [])
    if "matches" in document:
        return GrypeReport(matches=document.get("matches") or [])
    return UnknownReport(keys=sorted(document))


def parse_report(text: str) -> tuple[Report, list[Finding]]:
    """Decode raw report text and return the variant with its findings."""
    if not text or not text.strip():
        raise ScanParseError("Scanner report is empty")
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ScanParseError(f"Scanner report is not valid JSON: {exc.msg}") from exc
    report = decode_report(document)
    return report, report.findings()


def count_by_severity(findings: list[Finding]) -> dict[str, int]:
    counts = {severity.lower(): 0 for severity in SEVERITIES}
    for finding in findings:
        counts[finding.severity.lower()] += 1
    counts["total"] = len(findings)
    return counts
