"""
Configuration management and loading.

Handles orchestrator settings, environment overrides and upstream credentials.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from llm_orchestrator.core.registry import CostClass, Priority

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
MAX_API_KEYS = 3


@dataclass(frozen=True)
class BudgetLimits:
    """Daily request limits per cost class."""
    low: int = 10000
    medium: int = 5000
    high: int = 500

    def __post_init__(self):
        """Validate limits are positive."""
        for name in ("low", "medium", "high"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"{name} budget must be a positive integer")

    def for_class(self, cost_class: CostClass) -> int:
        return getattr(self, cost_class.value)

    def as_dict(self) -> Dict[CostClass, int]:
        return {c: self.for_class(c) for c in CostClass}


@dataclass(frozen=True)
class ExecutorSettings:
    """Upstream call settings shared by every key."""
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = 45.0
    cooldown_seconds: float = 60.0
    default_max_tokens: int = 4096

    def __post_init__(self):
        """Validate executor values."""
        if not self.base_url:
            raise ValueError("base_url cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.cooldown_seconds <= 0:
            raise ValueError("cooldown_seconds must be > 0")
        if self.default_max_tokens <= 0:
            raise ValueError("default_max_tokens must be > 0")


@dataclass(frozen=True)
class ProvenanceSettings:
    """Where and whether provenance records are written."""
    enabled: bool = True
    db_path: str = "llm_provenance.db"

    def __post_init__(self):
        if not self.db_path:
            raise ValueError("db_path cannot be empty")


@dataclass(frozen=True)
class DriftSettings:
    """Thresholds for recent-vs-historical drift detection."""
    min_samples: int = 5
    latency_increase: float = 0.2  # 20% slower than historical
    error_rate_multiplier: float = 2.0
    recent_hours: int = 24
    historical_days: int = 30

    def __post_init__(self):
        """Validate drift thresholds."""
        if self.min_samples < 1:
            raise ValueError("min_samples must be >= 1")
        if self.latency_increase <= 0:
            raise ValueError("latency_increase must be > 0")
        if self.error_rate_multiplier <= 1:
            raise ValueError("error_rate_multiplier must be > 1")
        if self.recent_hours <= 0:
            raise ValueError("recent_hours must be > 0")
        if self.historical_days * 24 <= self.recent_hours:
            raise ValueError("historical window must be longer than recent window")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Complete orchestrator configuration."""
    budgets: BudgetLimits = field(default_factory=BudgetLimits)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    provenance: ProvenanceSettings = field(default_factory=ProvenanceSettings)
    drift: DriftSettings = field(default_factory=DriftSettings)
    two_pass_enabled: bool = True
    auto_downgrade: bool = True
    default_priority: Priority = Priority.QUALITY
    warning_threshold: float = 0.8
    critical_threshold: float = 0.9

    def __post_init__(self):
        """Validate warning thresholds."""
        if not 0 < self.warning_threshold < 1:
            raise ValueError("warning_threshold must be between 0 and 1")
        if not self.warning_threshold < self.critical_threshold <= 1:
            raise ValueError("critical_threshold must be above warning_threshold and <= 1")


_SECTIONS = {
    "budgets": (BudgetLimits, {"low": int, "medium": int, "high": int}),
    "executor": (ExecutorSettings, {
        "base_url": str,
        "timeout_seconds": (int, float),
        "cooldown_seconds": (int, float),
        "default_max_tokens": int,
    }),
    "provenance": (ProvenanceSettings, {"enabled": bool, "db_path": str}),
    "drift": (DriftSettings, {
        "min_samples": int,
        "latency_increase": (int, float),
        "error_rate_multiplier": (int, float),
        "recent_hours": int,
        "historical_days": int,
    }),
}

_SCALARS = {
    "two_pass_enabled": bool,
    "auto_downgrade": bool,
    "default_priority": str,
    "warning_threshold": (int, float),
    "critical_threshold": (int, float),
}


def default_config() -> OrchestratorConfig:
    """Configuration used when no file is given."""
    return OrchestratorConfig()


def load_config(path: str) -> OrchestratorConfig:
    """Load and validate orchestrator configuration from a YAML file.

    Unknown keys and wrongly typed values are rejected so a typo can never
    silently fall back to a default budget.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated OrchestratorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Orchestrator config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    return parse_config(raw_config)


def parse_config(raw_config: Dict[str, Any]) -> OrchestratorConfig:
    """Build a config from already-parsed YAML data."""
    allowed_top_keys = set(_SECTIONS) | set(_SCALARS)
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    kwargs: Dict[str, Any] = {}
    for section, (cls, schema) in _SECTIONS.items():
        if section in raw_config:
            kwargs[section] = _parse_section(raw_config[section], section, cls, schema)

    for key, expected in _SCALARS.items():
        if key not in raw_config:
            continue
        value = raw_config[key]
        _check_type(value, expected, key)
        if key == "default_priority":
            try:
                value = Priority(value.lower())
            except ValueError:
                valid = [p.value for p in Priority]
                raise ValueError(f"'default_priority' must be one of: {valid}")
        elif expected == (int, float):
            value = float(value)
        kwargs[key] = value

    return OrchestratorConfig(**kwargs)


def _parse_section(data: Any, path: str, cls, schema: Dict[str, Any]):
    """Parse and validate one nested configuration section.

    Args:
        data: Section data from YAML
        path: Section name for error messages
        cls: Dataclass to build
        schema: Allowed keys and their accepted types

    Returns:
        Instance of cls

    Raises:
        ValueError: If the section is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    unknown_keys = set(data.keys()) - set(schema)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    values = {}
    for key, value in data.items():
        _check_type(value, schema[key], f"{path}.{key}")
        values[key] = float(value) if schema[key] == (int, float) else value
    return cls(**values)


def _check_type(value: Any, expected, path: str) -> None:
    # bool is an int subclass; only accept it where bool is expected
    if isinstance(value, bool) and expected is not bool:
        raise ValueError(f"'{path}' has invalid type bool")
    if not isinstance(value, expected):
        raise ValueError(f"'{path}' has invalid type {type(value).__name__}")


def apply_env_overrides(
    config: OrchestratorConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> OrchestratorConfig:
    """Overlay LLM_* environment variables on top of a configuration.

    Raises:
        ValueError: If an environment value cannot be parsed
    """
    env = os.environ if environ is None else environ

    budgets = config.budgets
    budget_values = {}
    for cost_class in CostClass:
        name = f"LLM_DAILY_BUDGET_{cost_class.name}"
        if name in env:
            budget_values[cost_class.value] = _env_int(env, name)
    if budget_values:
        budgets = replace(budgets, **budget_values)

    provenance = config.provenance
    if "LLM_LOGGING_ENABLED" in env:
        provenance = replace(provenance, enabled=_env_bool(env, "LLM_LOGGING_ENABLED"))
    if env.get("LLM_PROVENANCE_DB"):
        provenance = replace(provenance, db_path=env["LLM_PROVENANCE_DB"])

    executor = config.executor
    if "LLM_REQUEST_TIMEOUT" in env:
        try:
            timeout = float(env["LLM_REQUEST_TIMEOUT"])
        except ValueError:
            raise ValueError("LLM_REQUEST_TIMEOUT must be a number")
        executor = replace(executor, timeout_seconds=timeout)

    two_pass = config.two_pass_enabled
    if "LLM_TWO_PASS_ENABLED" in env:
        two_pass = _env_bool(env, "LLM_TWO_PASS_ENABLED")

    return replace(
        config,
        budgets=budgets,
        provenance=provenance,
        executor=executor,
        two_pass_enabled=two_pass,
    )


def load_api_keys(environ: Optional[Mapping[str, str]] = None) -> List[str]:
    """Collect upstream credentials from GROQ_API_KEY_1..3, else GROQ_API_KEY."""
    env = os.environ if environ is None else environ
    keys = [
        env[f"GROQ_API_KEY_{i}"]
        for i in range(1, MAX_API_KEYS + 1)
        if env.get(f"GROQ_API_KEY_{i}")
    ]
    if not keys and env.get("GROQ_API_KEY"):
        keys.append(env["GROQ_API_KEY"])
    return keys


def _env_int(env: Mapping[str, str], name: str) -> int:
    try:
        return int(env[name])
    except ValueError:
        raise ValueError(f"{name} must be an integer")


def _env_bool(env: Mapping[str, str], name: str) -> bool:
    value = env[name].strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean")
