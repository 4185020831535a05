# src/casebook/core/config.py
"""
Configuration schema and loading for the Casebook engine.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from casebook.contracts.enums import OperationType
from casebook.contracts.fields import FLAG_FIELDS, FieldName


class BackendSettings(BaseModel):
    """Workbook backend selection.

    Example YAML:
        backend:
          kind: sql
          url: sqlite:///./casebook.db
    """

    model_config = {"frozen": True}

    kind: Literal["memory", "sql"] = Field(default="memory", description="Workbook implementation")
    url: str = Field(default="sqlite:///./casebook.db", description="SQLAlchemy database URL (sql backend only)")
    echo: bool = Field(default=False, description="Echo SQL statements")


class CacheSettings(BaseModel):
    """Read-through cache configuration.

    Staleness across processes is bounded only by ``ttl_seconds``.
    """

    model_config = {"frozen": True}

    ttl_seconds: float = Field(default=300.0, gt=0, description="Lifetime of a cached range")
    sweep_interval_seconds: float = Field(default=60.0, gt=0, description="Background purge interval")


class OperationBatchSettings(BaseModel):
    """Chunking for one operation type."""

    model_config = {"frozen": True}

    max_size: int = Field(gt=0, description="Maximum requests per physical call")
    delay_ms: int = Field(ge=0, description="Pause before every physical call after the first")


class BatchSettings(BaseModel):
    """Per-operation chunk ceilings and inter-chunk delays."""

    model_config = {"frozen": True}

    read: OperationBatchSettings = Field(default_factory=lambda: OperationBatchSettings(max_size=500, delay_ms=50))
    write: OperationBatchSettings = Field(default_factory=lambda: OperationBatchSettings(max_size=100, delay_ms=100))
    update: OperationBatchSettings = Field(default_factory=lambda: OperationBatchSettings(max_size=200, delay_ms=75))
    delete: OperationBatchSettings = Field(default_factory=lambda: OperationBatchSettings(max_size=50, delay_ms=150))

    def for_operation(self, operation: OperationType) -> OperationBatchSettings:
        settings: OperationBatchSettings = getattr(self, str(operation))
        return settings


class OperationRateLimit(BaseModel):
    """Rate limit configuration for one operation type."""

    model_config = {"frozen": True}

    requests_per_second: int = Field(gt=0, description="Maximum physical calls per second")
    requests_per_minute: int | None = Field(default=None, gt=0, description="Maximum physical calls per minute")


class RateLimitSettings(BaseModel):
    """Configuration for rate limiting physical workbook calls.

    Example YAML:
        rate_limit:
          enabled: true
          default_requests_per_second: 5
          persistence_path: ./rate_limits.db
          operations:
            read:
              requests_per_second: 10
              requests_per_minute: 300
    """

    model_config = {"frozen": True}

    enabled: bool = Field(default=True, description="Enable rate limiting of physical calls")
    default_requests_per_second: int = Field(default=5, gt=0, description="Default limit for unconfigured operations")
    default_requests_per_minute: int | None = Field(default=300, gt=0, description="Optional per-minute limit")
    persistence_path: str | None = Field(default=None, description="SQLite path for cross-process limits")
    operations: dict[OperationType, OperationRateLimit] = Field(
        default_factory=dict, description="Per-operation rate limit configurations"
    )

    def get_operation_config(self, operation: OperationType | str) -> OperationRateLimit:
        """Get rate limit config for an operation, with fallback to defaults."""
        key = OperationType(operation)
        if key in self.operations:
            return self.operations[key]
        return OperationRateLimit(
            requests_per_second=self.default_requests_per_second,
            requests_per_minute=self.default_requests_per_minute,
        )


class LockSettings(BaseModel):
    """Lock coordinator timing."""

    model_config = {"frozen": True}

    default_timeout_seconds: float = Field(default=10.0, gt=0, description="Acquisition timeout when none is given")
    max_hold_seconds: float = Field(default=30.0, gt=0, description="Hard ceiling after which a lock is force-released")
    poll_interval_seconds: float = Field(default=0.05, gt=0, description="Wait between acquisition attempts")


class DuplicateFieldWeight(BaseModel):
    """One field contributing to the duplicate similarity score."""

    model_config = {"frozen": True}

    field: FieldName
    weight: float = Field(gt=0, le=1)
    kind: Literal["exact", "text"] = "exact"


def _default_duplicate_fields() -> list[DuplicateFieldWeight]:
    return [
        DuplicateFieldWeight(field=FieldName.CASE_ID, weight=0.4, kind="exact"),
        DuplicateFieldWeight(field=FieldName.FIRST_ASSIGNEE, weight=0.3, kind="exact"),
        DuplicateFieldWeight(field=FieldName.CASE_OPEN_DATE, weight=0.1, kind="exact"),
        DuplicateFieldWeight(field=FieldName.DETAILS, weight=0.2, kind="text"),
    ]


class DuplicateSettings(BaseModel):
    """Fuzzy duplicate detection.

    Pairwise comparison is quadratic. When ``n(n-1)/2`` exceeds
    ``max_comparisons`` records are partitioned by ``block_field`` and only
    compared within their block until the budget is spent. Exact
    duplicates are found by grouping and do not count against the budget.
    """

    model_config = {"frozen": True}

    enabled: bool = True
    threshold: float = Field(default=0.85, gt=0, le=1)
    fields: list[DuplicateFieldWeight] = Field(default_factory=_default_duplicate_fields)
    max_comparisons: int = Field(default=250_000, gt=0)
    block_field: FieldName = FieldName.CASE_OPEN_DATE
    max_potential_duplicates: int = Field(default=100, gt=0)

    @field_validator("fields")
    @classmethod
    def validate_fields_not_empty(cls, v: list[DuplicateFieldWeight]) -> list[DuplicateFieldWeight]:
        if not v:
            raise ValueError("At least one duplicate field is required")
        return v


class IntegritySettings(BaseModel):
    """Integrity checker rules and report caching."""

    model_config = {"frozen": True}

    exclusion_flags: list[FieldName] = Field(
        default_factory=lambda: [FieldName.AM_TRANSFER, FieldName.NON_NCC, FieldName.BUG, FieldName.NEED_INFO]
    )
    conflicting_flag_pairs: list[tuple[FieldName, FieldName]] = Field(
        default_factory=lambda: [(FieldName.BUG, FieldName.NEED_INFO)]
    )
    excessive_flag_threshold: int = Field(default=3, gt=0)
    allowed_assignee_domains: list[str] = Field(
        default_factory=list,
        description="Email domains accepted in assignee columns; empty disables the check",
    )
    duplicates: DuplicateSettings = Field(default_factory=DuplicateSettings)
    result_ttl_seconds: float = Field(default=300.0, gt=0, description="Lifetime of a cached report")
    history_size: int = Field(default=20, gt=0)

    @field_validator("allowed_assignee_domains")
    @classmethod
    def normalize_domains(cls, v: list[str]) -> list[str]:
        domains = [d.strip().lstrip("@").lower() for d in v]
        if any(not d for d in domains):
            raise ValueError("allowed_assignee_domains entries must not be empty")
        return domains

    @model_validator(mode="after")
    def validate_flags_are_flags(self) -> "IntegritySettings":
        for name in self.exclusion_flags:
            if name not in FLAG_FIELDS:
                raise ValueError(f"{name} is not a flag field")
        for left, right in self.conflicting_flag_pairs:
            if left not in self.exclusion_flags or right not in self.exclusion_flags:
                raise ValueError(f"Conflicting pair ({left}, {right}) must name configured exclusion flags")
        return self


class RecordSettings(BaseModel):
    """Defaults applied when creating records."""

    model_config = {"frozen": True}

    timezone: str = Field(default="UTC", description="IANA zone used for default open date and time")
    case_link_template: str = Field(
        default="https://cases.example.com/case/{case_id}",
        description="Template for the caseLink column; {case_id} is substituted",
    )
    search_limit: int = Field(default=100, gt=0, description="Default page size of record searches")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v!r}") from e
        return v

    @field_validator("case_link_template")
    @classmethod
    def validate_template(cls, v: str) -> str:
        if "{case_id}" not in v:
            raise ValueError("case_link_template must contain {case_id}")
        return v


class LoggingSettings(BaseModel):
    """Logging output."""

    model_config = {"frozen": True}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = False


class CasebookSettings(BaseModel):
    """Top-level engine settings."""

    model_config = {"frozen": True}

    backend: BackendSettings = Field(default_factory=BackendSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    locks: LockSettings = Field(default_factory=LockSettings)
    integrity: IntegritySettings = Field(default_factory=IntegritySettings)
    records: RecordSettings = Field(default_factory=RecordSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""
    import os

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            default = match.group(2)
            if default is not None:
                return default
            # No env var and no default - keep original so validation reports it
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    """Lower-case mapping keys recursively (Dynaconf upper-cases env overrides)."""
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(item) for item in value]
    return value


def load_settings(config_path: Path) -> CasebookSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (CASEBOOK_*) - highest priority
    2. Config file
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: CASEBOOK_CACHE__TTL_SECONDS for nested keys.

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="CASEBOOK",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _lower_keys(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return CasebookSettings(**raw_config)
