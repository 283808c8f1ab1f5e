"""
Analyzer configuration models.

Provides Pydantic-validated thresholds, signal weights and pattern lists for
the workflow analysis engine, loadable from environment and YAML.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Self

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from apiflow.analysis.models import DependencyType

logger = structlog.get_logger(__name__)


DEFAULT_AUTH_HEADER_PATTERNS = (
    "authorization",
    "x-auth-token",
    "x-api-key",
    "bearer",
    "access_token",
)

DEFAULT_AUTH_URL_PATTERNS = ("/login", "/auth", "/signin", "/token", "/oauth")

DEFAULT_CRUD_SEQUENCES = (
    ("POST", "GET"),
    ("PUT", "GET"),
    ("DELETE", "GET"),
    ("POST", "PUT"),
    ("GET", "PUT"),
    ("GET", "DELETE"),
)

# Later entries override earlier ones when several signals fire for a pair.
# This is not the signal evaluation order: that order would let the success
# status candidate win, typing a login followed by an authenticated call as
# conditional. With this order token flow types as data_flow and a plain
# create-then-read pair as sequential.
DEFAULT_TYPE_PRECEDENCE = (
    DependencyType.CONDITIONAL,
    DependencyType.SEQUENTIAL,
    DependencyType.DATA_FLOW,
    DependencyType.PARALLEL,
)


class SignalWeights(BaseModel):
    """Points contributed by each dependency signal."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url_similarity: float = Field(default=20.0, ge=0.0, le=100.0)
    authentication: float = Field(default=40.0, ge=0.0, le=100.0)
    token_flow: float = Field(default=20.0, ge=0.0, le=100.0)
    crud: float = Field(default=30.0, ge=0.0, le=100.0)
    data_flow: float = Field(default=25.0, ge=0.0, le=100.0)
    conditional: float = Field(default=15.0, ge=0.0, le=100.0)
    parallel: float = Field(default=10.0, ge=0.0, le=100.0)


class AnalyzerConfig(BaseModel):
    """Complete configuration for sequence grouping, detection and synthesis."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_sequence_gap_ms: int = Field(
        default=30000,
        ge=0,
        description="Largest gap between consecutive calls of one sequence",
    )
    min_confidence: float = Field(
        default=70.0,
        ge=0.0,
        le=100.0,
        description="Minimum confidence for a pair to be emitted as an edge",
    )
    parallel_window_ms: int = Field(
        default=1000,
        ge=0,
        description="Calls closer than this to the same path template count as a burst",
    )
    max_sequence_size: int = Field(
        default=100,
        ge=2,
        description="Sequences above this size are cut to their most recent calls",
    )
    min_workflow_edges: int = Field(
        default=2,
        ge=1,
        description="Edges sharing an origin needed before a workflow is emitted",
    )
    analysis_timeout_seconds: float = Field(default=30.0, gt=0.0, le=3600.0)

    weights: SignalWeights = Field(default_factory=SignalWeights)
    auth_header_patterns: tuple[str, ...] = DEFAULT_AUTH_HEADER_PATTERNS
    auth_url_patterns: tuple[str, ...] = DEFAULT_AUTH_URL_PATTERNS
    crud_sequences: tuple[tuple[str, str], ...] = DEFAULT_CRUD_SEQUENCES
    identifier_pattern: str = r"^[a-f0-9-]{20,}|^\d+$"
    type_precedence: tuple[DependencyType, ...] = DEFAULT_TYPE_PRECEDENCE

    @field_validator("auth_header_patterns")
    @classmethod
    def lowercase_header_patterns(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Header names are matched case-insensitively."""
        return tuple(p.lower() for p in v)

    @field_validator("crud_sequences")
    @classmethod
    def uppercase_methods(
        cls, v: tuple[tuple[str, str], ...]
    ) -> tuple[tuple[str, str], ...]:
        return tuple((a.upper(), b.upper()) for a, b in v)

    @field_validator("identifier_pattern")
    @classmethod
    def validate_identifier_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"identifier_pattern is not a valid regex: {e}") from e
        return v

    @model_validator(mode="after")
    def validate_precedence(self) -> Self:
        """Every dependency type must appear exactly once in the precedence."""
        if sorted(self.type_precedence) != sorted(DependencyType):
            raise ValueError(
                "type_precedence must list each dependency type exactly once"
            )
        return self

    def with_overrides(self, **overrides: Any) -> AnalyzerConfig:
        """Return a copy with the given fields replaced and re-validated."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return AnalyzerConfig(**data)


class AnalyzerSettings(BaseSettings):
    """
    Environment-based analyzer settings.

    Loads scalar thresholds from environment variables with the APIFLOW_
    prefix; weights may be set with APIFLOW_WEIGHTS__<NAME>.
    """

    model_config = SettingsConfigDict(
        env_prefix="APIFLOW_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    max_sequence_gap_ms: int | None = None
    min_confidence: float | None = None
    parallel_window_ms: int | None = None
    max_sequence_size: int | None = None
    min_workflow_edges: int | None = None
    analysis_timeout_seconds: float | None = None
    weights: dict[str, float] | None = None

    def overrides(self) -> dict[str, Any]:
        """Values explicitly provided through the environment."""
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }


STANDARD_CONFIG_PATHS = (
    Path(".apiflow/analyzer.yaml"),
    Path(".apiflow/analyzer.yml"),
    Path("apiflow.yaml"),
    Path("apiflow.yml"),
)


def load_analyzer_config(
    config_file: Path | str | None = None,
    env_override: bool = True,
) -> AnalyzerConfig:
    """
    Load analyzer configuration from file and/or environment.

    Priority (highest to lowest):
    1. Environment variables (if env_override=True)
    2. Config file (explicit path, else the first standard location found)
    3. Defaults

    Args:
        config_file: Optional path to YAML config file
        env_override: Whether environment variables override file config

    Returns:
        Validated AnalyzerConfig instance
    """
    file_config: dict[str, Any] = {}
    if config_file:
        config_path = Path(config_file)
        if config_path.exists():
            file_config = _read_yaml(config_path)
        else:
            logger.warning("Analyzer config file not found", path=str(config_path))
    else:
        for path in STANDARD_CONFIG_PATHS:
            if path.exists():
                file_config = _read_yaml(path)
                break

    data = dict(file_config)
    if env_override:
        env_values = AnalyzerSettings().overrides()
        env_weights = env_values.pop("weights", None)
        if env_weights:
            data["weights"] = {**data.get("weights", {}), **env_weights}
        data.update(env_values)

    return AnalyzerConfig(**data)


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open() as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Analyzer config {path} must be a mapping")
    return loaded
