"""Engine configuration.

Values resolve in order: keyword arguments, ``SEMCHECK_*`` environment
variables, defaults. For example ``SEMCHECK_TREAT_DEPRECATION_AS=none``
makes deprecation-only changes invisible to the required bump.
"""

from typing import Any, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from semcheck.kernel.classify import ClassifyOptions
from semcheck.kernel.errors import ConfigError
from semcheck.kernel.model import Severity

# Changes that never affect compilation may only be patch or nothing.
_NON_BREAKING_LEVELS = (Severity.NONE, Severity.PATCH)


class EngineConfig(BaseSettings):
    """Configuration for one comparison."""

    model_config = SettingsConfigDict(
        env_prefix="SEMCHECK_",
        case_sensitive=False,
        extra="forbid",
        frozen=True,
    )

    treat_deprecation_as: Severity = Severity.PATCH
    treat_docs_as: Severity = Severity.PATCH
    fail_on_unresolved_reexport: bool = False
    shard_count: int = Field(default=1, ge=1)
    max_workers: Optional[int] = Field(default=None, ge=1)  # None: one per shard

    @field_validator("treat_deprecation_as", "treat_docs_as", mode="before")
    @classmethod
    def parse_non_breaking_level(cls, value: Any) -> Severity:
        severity = Severity.parse(value)
        if severity not in _NON_BREAKING_LEVELS:
            raise ValueError(f"must be 'patch' or 'none', got '{severity.label}'")
        return severity

    def classify_options(self) -> ClassifyOptions:
        return ClassifyOptions(
            treat_deprecation_as=self.treat_deprecation_as,
            treat_docs_as=self.treat_docs_as,
        )


def load_config(**overrides: Any) -> EngineConfig:
    """Build an EngineConfig from overrides, environment and defaults.

    Raises:
        ConfigError: if any value is invalid
    """
    try:
        return EngineConfig(**overrides)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "config"
        raise ConfigError(f"Invalid configuration: {first['msg']}", path=field) from e
