"""Tests for the categories / severities / assets YAML configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from lycaon.config.incident_config import (
    UNKNOWN_ID,
    Category,
    IncidentConfig,
    Severity,
    default_incident_config,
    load_incident_config,
)
from lycaon.infra.errors import InvalidInputError

_VALID_YAML = """\
categories:
  - id: security_incident
    name: Security Incident
    invite_users: ["@security-lead", "U01ABCDEF"]
    invite_groups: ["@sec-oncall"]
  - id: unknown
    name: Unknown
severities:
  - {id: sev1, name: Critical, level: 90}
  - {id: sev4, name: Informational, level: 0}
assets:
  - {id: web_frontend, name: Web Frontend}
"""


class TestLoad:
    def test_valid_file(self, tmp_path: Path) -> None:
        path = tmp_path / "incident.yaml"
        path.write_text(_VALID_YAML, encoding="utf-8")

        config = load_incident_config(path)

        security = config.find_category("security_incident")
        assert security is not None
        assert security.invite_users == ["@security-lead", "U01ABCDEF"]
        assert security.has_invitees
        assert config.find_severity("sev4").is_ignorable
        assert config.find_asset("web_frontend").name == "Web Frontend"

    def test_no_path_uses_default(self) -> None:
        config = load_incident_config(None)
        assert [c.id for c in config.categories] == [UNKNOWN_ID]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidInputError, match="not found"):
            load_incident_config(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("categories: [unclosed", encoding="utf-8")
        with pytest.raises(InvalidInputError, match="failed to parse"):
            load_incident_config(path)

    def test_missing_unknown_category(self, tmp_path: Path) -> None:
        path = tmp_path / "no_unknown.yaml"
        path.write_text("categories:\n  - {id: a, name: A}\n", encoding="utf-8")
        with pytest.raises(InvalidInputError, match="'unknown' category is required"):
            load_incident_config(path)


class TestValidation:
    def test_duplicate_ids_rejected(self) -> None:
        with pytest.raises(ValidationError, match="duplicate category ID"):
            IncidentConfig(
                categories=[
                    Category(id="unknown", name="Unknown"),
                    Category(id="unknown", name="Again"),
                ]
            )

    def test_severity_level_range(self) -> None:
        with pytest.raises(ValidationError):
            Severity(id="x", name="X", level=100)

    def test_reference_validation(self, incident_config: IncidentConfig) -> None:
        incident_config.validate_severity_id("")
        incident_config.validate_severity_id("critical")
        incident_config.validate_category_id("")
        incident_config.validate_asset_ids(["web", "db"])
        with pytest.raises(InvalidInputError, match="invalid severity ID"):
            incident_config.validate_severity_id("sev0")
        with pytest.raises(InvalidInputError, match="invalid category ID"):
            incident_config.validate_category_id("nope")
        with pytest.raises(InvalidInputError, match="invalid asset ID"):
            incident_config.validate_asset_ids(["web", "mainframe"])


class TestSeverityFallback:
    def test_known(self, incident_config: IncidentConfig) -> None:
        assert incident_config.find_severity_with_fallback("low").name == "Low"

    @pytest.mark.parametrize("severity_id", ["", "sev0"])
    def test_unknown_falls_back(self, incident_config: IncidentConfig, severity_id) -> None:
        severity = incident_config.find_severity_with_fallback(severity_id)
        assert severity.id == UNKNOWN_ID
        assert severity.is_unknown

    def test_configured_unknown_preferred(self) -> None:
        config = IncidentConfig(
            categories=default_incident_config().categories,
            severities=[Severity(id="unknown", name="Not assessed", level=-1)],
        )
        assert config.find_severity_with_fallback("").name == "Not assessed"
