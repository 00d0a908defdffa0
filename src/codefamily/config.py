"""Configuration loading and management for codefamily.

Configuration sources are merged in priority order:
    1. Defaults (defined in AppConfig / ScoringConfig)
    2. Global config (~/.codefamily.toml)
    3. Project config (./codefamily.toml)
    4. Explicit config file
    5. Environment variables (CODEFAMILY_* prefix)
    6. CLI overrides (passed as kwargs)

Example:
    >>> config = load_config(poll_interval_seconds=0.5)
    >>> config.poll_interval_seconds
    0.5
    >>> config.scoring.conflict_threshold
    0.8
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional, get_type_hints

from .exceptions import ConfigurationError, InvalidConfigError

Verbosity = Literal["quiet", "normal", "verbose"]


@dataclass(frozen=True)
class ScoringConfig:
    """Tuning surface of the replacement detector, aggregator and risk engine.

    Attributes:
        Replacement detection:
            dissimilarity_floor: Transitions less dissimilar than this are refactors
            max_proximity_days: Transitions further apart are independent evolution
            churn_cap: Lines changed that count as a full-magnitude replacement
            proximity_scale_days: e-folding time of the time-proximity factor
            decay_half_life_weeks: Half-life of an event's contribution to standing
            revert_signal: Multiplier for revert/rollback messages
            fix_signal: Multiplier for fix/bug/patch messages
            fallback_dissimilarity_base: Positional estimate lower bound
            fallback_dissimilarity_span: Positional estimate width

        Aggregation:
            commits_per_normalization_unit: Commits per unit of the normalizer

        Conflict risk (weights must sum to 1.0):
            structural_weight: Weight of file-set intersection
            semantic_weight: Weight of embedding similarity
            conflict_threshold: Risk at or above which a request conflicts
    """

    # === Replacement detection ===
    dissimilarity_floor: float = 0.3
    max_proximity_days: int = 60
    churn_cap: int = 200
    proximity_scale_days: float = 7.0
    decay_half_life_weeks: float = 18.0
    revert_signal: float = 2.0
    fix_signal: float = 1.5
    fallback_dissimilarity_base: float = 0.4
    fallback_dissimilarity_span: float = 0.2

    # === Aggregation ===
    commits_per_normalization_unit: int = 10

    # === Conflict risk ===
    structural_weight: float = 0.4
    semantic_weight: float = 0.6
    conflict_threshold: float = 0.8

    def __post_init__(self) -> None:
        """Validate scoring configuration."""
        for field_name in ("dissimilarity_floor", "conflict_threshold", "structural_weight", "semantic_weight"):
            value = getattr(self, field_name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{field_name} must be between 0.0 and 1.0")

        weight_sum = self.structural_weight + self.semantic_weight
        if not 0.99 <= weight_sum <= 1.01:
            raise ValueError(f"Risk weights must sum to 1.0, got {weight_sum:.3f}")

        if self.max_proximity_days < 0:
            raise ValueError("max_proximity_days must be non-negative")
        if self.churn_cap < 1:
            raise ValueError("churn_cap must be at least 1")
        if self.proximity_scale_days <= 0:
            raise ValueError("proximity_scale_days must be positive")
        if self.decay_half_life_weeks <= 0:
            raise ValueError("decay_half_life_weeks must be positive")
        if self.commits_per_normalization_unit < 1:
            raise ValueError("commits_per_normalization_unit must be at least 1")


DEFAULT_SCORING = ScoringConfig()


@dataclass(frozen=True)
class AppConfig:
    """Configuration for ingestion runs and the background worker.

    Attributes:
        Storage:
            database_path: SQLite database holding facts, aggregates and the queue
            clone_dir: Directory holding bare clones
            analysis_lock_timeout_seconds: Age after which a repository left
                "analyzing" by a crashed process may be claimed again

        Worker loop:
            poll_interval_seconds: Idle wait between queue polls
            error_backoff_seconds: Wait after an unexpected loop error
            queue_max_attempts: Attempts per queue item (1 = never retried)
            queue_retry_base_seconds: Base delay of the queue retry backoff

        Outbound calls:
            retry_max_attempts: Attempts per external call
            retry_base_delay_seconds: Base of the jittered exponential backoff
            retry_max_delay_seconds: Backoff ceiling
            http_timeout_seconds: Per-request timeout

        External services:
            embedding_*: Embedding provider endpoint, model and vector size
            parser_url: Base URL of the parser sidecar
            github_*: Hosting platform endpoint and token
            slack_*: Notification channel endpoint and token
            webhook_secret: Shared secret for webhook signatures
            status_context: Name of the commit status check

        Chunking:
            max_chunk_chars: Code characters sent per embedding request
            max_parse_bytes: Larger files are not sent to the parser
    """

    # Storage
    database_path: str = ".codefamily/analysis.db"
    clone_dir: str = ".codefamily/repos"
    git_timeout_seconds: int = 120
    analysis_lock_timeout_seconds: float = 6 * 3600.0

    # Worker loop
    poll_interval_seconds: float = 1.0
    error_backoff_seconds: float = 5.0
    queue_max_attempts: int = 1
    queue_retry_base_seconds: float = 30.0

    # Outbound calls
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 10.0
    http_timeout_seconds: float = 30.0

    # External services
    embedding_api_url: str = "https://generativelanguage.googleapis.com/v1beta"
    embedding_model: str = "text-embedding-004"
    embedding_api_key: str = ""
    embedding_dimensions: int = 768
    parser_url: str = "http://localhost:3002"
    github_api_url: str = "https://api.github.com"
    github_token: str = ""
    slack_api_url: str = "https://slack.com/api"
    slack_token: str = ""
    webhook_secret: str = ""
    status_context: str = "codefamily/conflict-risk"

    # Chunking
    max_chunk_chars: int = 8000
    max_parse_bytes: int = 1_000_000

    # Output control
    verbosity: Verbosity = "normal"

    scoring: ScoringConfig = field(default_factory=ScoringConfig)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if self.error_backoff_seconds < 0:
            raise ValueError("error_backoff_seconds must be non-negative")
        if self.queue_max_attempts < 1:
            raise ValueError("queue_max_attempts must be at least 1")
        if self.retry_max_attempts < 1:
            raise ValueError("retry_max_attempts must be at least 1")
        if self.retry_base_delay_seconds < 0 or self.retry_max_delay_seconds < 0:
            raise ValueError("retry delays must be non-negative")
        if self.http_timeout_seconds <= 0:
            raise ValueError("http_timeout_seconds must be positive")
        if self.embedding_dimensions < 1:
            raise ValueError("embedding_dimensions must be at least 1")
        if self.max_chunk_chars < 1:
            raise ValueError("max_chunk_chars must be at least 1")
        if self.git_timeout_seconds < 1:
            raise ValueError("git_timeout_seconds must be at least 1")
        if self.analysis_lock_timeout_seconds <= 0:
            raise ValueError("analysis_lock_timeout_seconds must be positive")


def load_config(config_file: Optional[Path] = None, **overrides) -> AppConfig:
    """Load configuration with auto-discovery and merging.

    Args:
        config_file: Optional explicit config file path
        **overrides: Direct overrides (typically from CLI flags)

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigurationError: If a config file is invalid or missing
    """
    merged: dict = {}

    global_config = Path.home() / ".codefamily.toml"
    if global_config.exists():
        merged.update(_read_config_file(global_config, "global config"))

    project_config = Path.cwd() / "codefamily.toml"
    if project_config.exists():
        merged.update(_read_config_file(project_config, "project config"))

    if config_file is not None:
        if not config_file.exists():
            raise ConfigurationError(f"Config file not found: {config_file}")
        merged.update(_read_config_file(config_file, "config file"))

    merged.update(_load_env_vars())

    if "verbose" in overrides:
        if overrides["verbose"]:
            overrides["verbosity"] = "verbose"
        del overrides["verbose"]
    if "quiet" in overrides:
        if overrides["quiet"]:
            overrides["verbosity"] = "quiet"
        del overrides["quiet"]

    merged.update({k: v for k, v in overrides.items() if v is not None})

    scoring = merged.pop("scoring", None)
    if scoring is not None:
        if isinstance(scoring, dict):
            try:
                merged["scoring"] = ScoringConfig(**scoring)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid [scoring] config: {e}")
        elif isinstance(scoring, ScoringConfig):
            merged["scoring"] = scoring

    try:
        return AppConfig(**merged)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}")


def _read_config_file(path: Path, label: str) -> dict:
    try:
        return _load_toml_file(path)
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Invalid {label} '{path}': {e}")


def _load_env_vars() -> dict[str, Any]:
    """Load configuration from CODEFAMILY_* environment variables.

    Every scalar AppConfig field can be set, e.g. CODEFAMILY_DATABASE_PATH,
    CODEFAMILY_GITHUB_TOKEN, CODEFAMILY_QUEUE_MAX_ATTEMPTS. The nested scoring
    table is file-only.
    """
    type_hints = get_type_hints(AppConfig)

    result: dict[str, Any] = {}

    for field_name in AppConfig.__dataclass_fields__:
        if field_name == "scoring":
            continue
        env_key = f"CODEFAMILY_{field_name.upper()}"
        env_value = os.environ.get(env_key)
        if env_value is None:
            continue

        type_hint = type_hints.get(field_name)
        if type_hint is None:
            continue

        try:
            parsed = _parse_env_value(env_value, type_hint)
        except ValueError as e:
            raise InvalidConfigError(env_key, env_value, str(e))
        if parsed is not None:
            result[field_name] = parsed

    return result


def _parse_env_value(value: str, type_hint: Any) -> Any:
    """Parse environment variable string to the annotated type."""
    origin = getattr(type_hint, "__origin__", None)

    if type_hint is bool:
        lower = value.lower()
        if lower in ("true", "1", "yes", "on"):
            return True
        if lower in ("false", "0", "no", "off"):
            return False
        raise ValueError(f"expected true/false, got '{value}'")

    if type_hint is int:
        return int(value)

    if type_hint is float:
        return float(value)

    if type_hint is str or origin is Literal:
        return value

    return None


def _load_toml_file(path: Path) -> dict:
    """Load TOML file and return parsed dict."""
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore

    with open(path, "rb") as f:
        return tomllib.load(f)
