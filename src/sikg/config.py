"""Engine configuration: defaults → JSON file → environment.

Values are validated once at load time.  Invalid values raise
``ConfigError`` instead of being clamped, so a misconfigured engine never
starts with silently corrected settings.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from sikg import defaults

log = logging.getLogger("sikg.config")

ENV_PREFIX = "SIKG_"
CONFIG_CANDIDATES = (Path(defaults.STATE_DIR) / "config.json", Path("sikg.json"))


class ConfigError(ValueError):
    """Raised when configuration values are out of range or malformed."""


@dataclass
class SikgConfig:
    max_traversal_depth: int = defaults.MAX_TRAVERSAL_DEPTH
    min_impact_threshold: float = defaults.MIN_IMPACT_THRESHOLD
    high_impact_threshold: float = defaults.HIGH_IMPACT_THRESHOLD
    low_impact_threshold: float = defaults.LOW_IMPACT_THRESHOLD
    historical_window_days: int = defaults.HISTORICAL_WINDOW_DAYS
    fault_half_life_days: float = defaults.FAULT_HALF_LIFE_DAYS
    max_historical_boost: float = defaults.MAX_HISTORICAL_BOOST
    min_cochange_count: int = defaults.MIN_COCHANGE_COUNT
    min_cochange_frequency: float = defaults.MIN_COCHANGE_FREQUENCY
    cochange_edge_scale: float = defaults.COCHANGE_EDGE_SCALE
    learning_rate: float = defaults.LEARNING_RATE
    exploration_rate: float = defaults.EXPLORATION_RATE
    exploration_magnitude: float = defaults.EXPLORATION_MAGNITUDE
    significance_threshold: float = defaults.SIGNIFICANCE_THRESHOLD
    consistent_pass_runs: int = defaults.CONSISTENT_PASS_RUNS
    rl_enabled: bool = True
    rl_timeout_seconds: float = defaults.RL_TIMEOUT_SECONDS
    rl_seed: int | None = None
    parallel_workers: int = defaults.PARALLEL_WORKERS
    workspace_root: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def validate(self) -> SikgConfig:
        """Raise ``ConfigError`` on the first invalid value; return self."""
        depth = self.max_traversal_depth
        if isinstance(depth, bool) or not isinstance(depth, int) or depth < 0:
            raise ConfigError(f"max_traversal_depth must be an integer >= 0, got {depth!r}")
        for name in (
            "min_impact_threshold", "historical_window_days", "fault_half_life_days",
            "max_historical_boost", "min_cochange_count", "consistent_pass_runs",
            "rl_timeout_seconds", "parallel_workers",
        ):
            _require_number(name, getattr(self, name))
        if self.min_impact_threshold < 0:
            raise ConfigError(
                f"min_impact_threshold must be >= 0, got {self.min_impact_threshold}"
            )
        for name in (
            "high_impact_threshold", "low_impact_threshold", "min_cochange_frequency",
            "cochange_edge_scale", "learning_rate", "exploration_rate",
            "exploration_magnitude", "significance_threshold",
        ):
            _require_unit(name, getattr(self, name))
        if self.low_impact_threshold >= self.high_impact_threshold:
            raise ConfigError(
                "low_impact_threshold must be below high_impact_threshold "
                f"({self.low_impact_threshold} >= {self.high_impact_threshold})"
            )
        if self.historical_window_days <= 0:
            raise ConfigError(
                f"historical_window_days must be > 0, got {self.historical_window_days}"
            )
        if self.fault_half_life_days <= 0:
            raise ConfigError(
                f"fault_half_life_days must be > 0, got {self.fault_half_life_days}"
            )
        if not 0.0 <= self.max_historical_boost <= 1.0:
            raise ConfigError(
                f"max_historical_boost must be in [0, 1], got {self.max_historical_boost}"
            )
        if self.min_cochange_count < 1:
            raise ConfigError(f"min_cochange_count must be >= 1, got {self.min_cochange_count}")
        if self.consistent_pass_runs < 1:
            raise ConfigError(
                f"consistent_pass_runs must be >= 1, got {self.consistent_pass_runs}"
            )
        if self.rl_timeout_seconds <= 0:
            raise ConfigError(f"rl_timeout_seconds must be > 0, got {self.rl_timeout_seconds}")
        if self.parallel_workers < 1:
            raise ConfigError(f"parallel_workers must be >= 1, got {self.parallel_workers}")
        return self


def _require_number(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name} must be a number, got {value!r}")


def _require_unit(name: str, value: Any) -> None:
    _require_number(name, value)
    if not 0.0 <= value <= 1.0:
        raise ConfigError(f"{name} must be in [0, 1], got {value}")


_FIELD_TYPES = {f.name: f.type for f in fields(SikgConfig)}


def _coerce_env(name: str, raw: str) -> Any:
    kind = _FIELD_TYPES[name]
    try:
        if kind == "bool":
            return raw.lower() in ("1", "true", "yes", "on")
        if kind == "int":
            return int(raw)
        if kind == "float":
            return float(raw)
        if kind == "int | None":
            return None if raw.lower() in ("", "none") else int(raw)
    except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX}{name.upper()}: cannot parse {raw!r}") from e
    return raw or None


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
    env: dict[str, str] | None = None,
) -> SikgConfig:
    """Load configuration from defaults → file → env vars → explicit overrides."""
    values: dict[str, Any] = {}

    candidates = [Path(path)] if path else list(CONFIG_CANDIDATES)
    for p in candidates:
        if p.exists():
            try:
                data = json.loads(p.read_text())
            except json.JSONDecodeError as e:
                raise ConfigError(f"{p}: invalid JSON ({e})") from e
            if not isinstance(data, dict):
                raise ConfigError(f"{p}: expected a JSON object")
            values.update(data)
            log.debug("Loaded configuration from %s", p)
            break
        if path:
            raise ConfigError(f"Config file not found: {p}")

    environ = os.environ if env is None else env
    for name in _FIELD_TYPES:
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            values[name] = _coerce_env(name, raw)

    values.update(overrides or {})

    unknown = sorted(set(values) - set(_FIELD_TYPES))
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
    return SikgConfig(**values).validate()
