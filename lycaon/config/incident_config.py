"""Categories, severities and assets loaded from a YAML file.

Example::

    categories:
      - id: security_incident
        name: Security Incident
        invite_users: ["@security-lead", "U01ABCDEF"]
        invite_groups: ["@sec-oncall"]
      - id: unknown
        name: Unknown
    severities:
      - {id: sev1, name: Critical, level: 90}
    assets:
      - {id: web_frontend, name: Web Frontend}
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Self

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from lycaon.infra.errors import InvalidInputError

logger = structlog.get_logger()

UNKNOWN_ID = "unknown"


class Category(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    invite_users: list[str] = Field(default_factory=list)
    invite_groups: list[str] = Field(default_factory=list)

    @property
    def has_invitees(self) -> bool:
        return bool(self.invite_users or self.invite_groups)


class Severity(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    level: int = 50  # 0 = ignorable, -1 = unknown

    @field_validator("level")
    @classmethod
    def _validate_level(cls, v: int) -> int:
        if not (-1 <= v <= 99):
            raise ValueError(f"severity level must be between -1 and 99 (got {v})")
        return v

    @property
    def is_ignorable(self) -> bool:
        return self.level == 0

    @property
    def is_unknown(self) -> bool:
        return self.level == -1


class Asset(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""


_UNKNOWN_SEVERITY = Severity(
    id=UNKNOWN_ID, name="Unknown", description="Unknown severity", level=-1
)


def _ensure_unique(kind: str, ids: Iterable[str]) -> None:
    seen: set[str] = set()
    for item_id in ids:
        if item_id in seen:
            raise ValueError(f"duplicate {kind} ID '{item_id}'")
        seen.add(item_id)


class IncidentConfig(BaseModel):
    """Validated categories / severities / assets configuration."""

    categories: list[Category]
    severities: list[Severity] = Field(default_factory=list)
    assets: list[Asset] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate(self) -> Self:
        if not self.categories:
            raise ValueError("at least one category is required")
        _ensure_unique("category", (c.id for c in self.categories))
        _ensure_unique("severity", (s.id for s in self.severities))
        _ensure_unique("asset", (a.id for a in self.assets))
        if not any(c.id == UNKNOWN_ID for c in self.categories):
            raise ValueError(f"'{UNKNOWN_ID}' category is required")
        return self

    def find_category(self, category_id: str) -> Category | None:
        return next((c for c in self.categories if c.id == category_id), None)

    def find_severity(self, severity_id: str) -> Severity | None:
        return next((s for s in self.severities if s.id == severity_id), None)

    def find_severity_with_fallback(self, severity_id: str) -> Severity:
        """Empty or unconfigured IDs map to the 'unknown' severity."""
        found = self.find_severity(severity_id) if severity_id else None
        if found is not None:
            return found
        return self.find_severity(UNKNOWN_ID) or _UNKNOWN_SEVERITY

    def find_asset(self, asset_id: str) -> Asset | None:
        return next((a for a in self.assets if a.id == asset_id), None)

    def validate_severity_id(self, severity_id: str) -> None:
        if severity_id and self.find_severity(severity_id) is None:
            raise InvalidInputError(f"invalid severity ID '{severity_id}'")

    def validate_category_id(self, category_id: str) -> None:
        if category_id and self.find_category(category_id) is None:
            raise InvalidInputError(f"invalid category ID '{category_id}'")

    def validate_asset_ids(self, asset_ids: Iterable[str]) -> None:
        for asset_id in asset_ids:
            if self.find_asset(asset_id) is None:
                raise InvalidInputError(f"invalid asset ID '{asset_id}'")


def default_incident_config() -> IncidentConfig:
    """Configuration used when no YAML file is provided."""
    return IncidentConfig(categories=[Category(id=UNKNOWN_ID, name="Unknown")])


def load_incident_config(path: Path | None) -> IncidentConfig:
    """Load and validate the YAML configuration. Raises InvalidInputError on bad files."""
    if path is None:
        logger.info("incident_config_default")
        return default_incident_config()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise InvalidInputError(f"configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise InvalidInputError(f"failed to parse YAML configuration {path}: {exc}") from exc

    try:
        config = IncidentConfig.model_validate(raw or {})
    except ValidationError as exc:
        raise InvalidInputError(f"invalid configuration {path}: {exc}") from exc

    logger.info(
        "incident_config_loaded",
        path=str(path),
        categories=len(config.categories),
        severities=len(config.severities),
        assets=len(config.assets),
    )
    return config
