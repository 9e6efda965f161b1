"""Centralized feature flag registry.

Optional engine stages can be toggled via flags.  Flags default to enabled.
Override via environment variables (SIKG_FF_<FLAG_NAME>) or the
.sikg/flags.json config file.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

log = logging.getLogger("sikg.feature_flags")

# ---------------------------------------------------------------------------
# Flag definitions with safe defaults
# ---------------------------------------------------------------------------

_FLAG_DEFAULTS: dict[str, dict[str, Any]] = {
    "rl_refinement": {"enabled": True, "description": "Adjust impact scores from learned policy"},
    "historical_boost": {"enabled": True, "description": "Add fault-history boost during propagation"},
    "cochange_edges": {"enabled": True, "description": "Create DEPENDS_ON edges from co-change history"},
    "parallel_propagation": {"enabled": False, "description": "Propagate changes on a thread pool"},
}


@dataclass
class FlagState:
    name: str
    enabled: bool
    description: str = ""
    source: str = "default"         # default | env | config | api

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "description": self.description,
            "source": self.source,
        }


# ---------------------------------------------------------------------------
# Flag cache (loaded once, refreshable)
# ---------------------------------------------------------------------------

_flags: dict[str, FlagState] = {}
_loaded = False


def _load_flags() -> None:
    """Load flags from defaults → config file → env vars (highest priority)."""
    global _loaded

    for name, cfg in _FLAG_DEFAULTS.items():
        _flags[name] = FlagState(
            name=name,
            enabled=cfg.get("enabled", True),
            description=cfg.get("description", ""),
            source="default",
        )

    for p in [Path(".sikg/flags.json"), Path("flags.json")]:
        if p.exists():
            try:
                data = json.loads(p.read_text())
            except (json.JSONDecodeError, OSError) as e:
                log.warning("Ignoring unreadable flags file %s: %s", p, e)
                break
            for name, cfg in data.items():
                if name not in _flags:
                    continue
                if isinstance(cfg, bool):
                    _flags[name].enabled = cfg
                elif isinstance(cfg, dict):
                    _flags[name].enabled = cfg.get("enabled", _flags[name].enabled)
                _flags[name].source = "config"
            break

    for name in _FLAG_DEFAULTS:
        env_val = os.environ.get(f"SIKG_FF_{name.upper()}")
        if env_val is not None:
            _flags[name].enabled = env_val.lower() in ("1", "true", "yes", "on")
            _flags[name].source = "env"

    _loaded = True


def _ensure_loaded() -> None:
    if not _loaded:
        _load_flags()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def is_enabled(flag_name: str) -> bool:
    """Check if a feature flag is enabled."""
    _ensure_loaded()
    state = _flags.get(flag_name)
    return state.enabled if state else True  # unknown flags default to enabled


def list_flags() -> list[dict[str, Any]]:
    _ensure_loaded()
    return [f.to_dict() for f in sorted(_flags.values(), key=lambda f: f.name)]


def set_flag(flag_name: str, enabled: bool) -> FlagState | None:
    """Set a flag's state at runtime."""
    _ensure_loaded()
    state = _flags.get(flag_name)
    if state is None:
        return None
    state.enabled = enabled
    state.source = "api"
    log.info("Feature flag %s set to %s", flag_name, enabled)
    return state


def reload_flags() -> None:
    """Force reload flags from all sources."""
    global _loaded
    _flags.clear()
    _loaded = False
    _ensure_loaded()
