"""Learned policy state and its scoped, single-writer store."""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from sikg import defaults
from sikg.config import SikgConfig
from sikg.models import now_iso
from sikg.ports import PolicyStatePort

log = logging.getLogger("sikg.policy")


def pair_key(change_node_id: str, test_id: str) -> str:
    return f"{change_node_id}|{test_id}"


@dataclass
class PolicyState:
    parameters: dict[str, float] = field(default_factory=lambda: dict(defaults.POLICY_DEFAULTS))
    type_adjustments: dict[str, float] = field(default_factory=dict)
    pair_adjustments: dict[str, float] = field(default_factory=dict)
    pass_streaks: dict[str, int] = field(default_factory=dict)
    learning_rate: float = defaults.LEARNING_RATE
    exploration_rate: float = defaults.EXPLORATION_RATE
    sessions: int = 0
    average_reward: float = 0.0
    stability: float = 1.0
    recent_metrics: list[dict[str, Any]] = field(default_factory=list)
    version: int = 0
    updated_at: str = field(default_factory=now_iso)

    @classmethod
    def initial(cls, config: SikgConfig) -> PolicyState:
        params = dict(defaults.POLICY_DEFAULTS)
        params["selection_threshold"] = round(config.high_impact_threshold * 0.8, 4)
        return cls(
            parameters=params,
            learning_rate=config.learning_rate,
            exploration_rate=config.exploration_rate,
        )

    def copy(self) -> PolicyState:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "parameters": self.parameters,
            "type_adjustments": self.type_adjustments,
            "pair_adjustments": self.pair_adjustments,
            "pass_streaks": self.pass_streaks,
            "learning_rate": self.learning_rate,
            "exploration_rate": self.exploration_rate,
            "sessions": self.sessions,
            "average_reward": self.average_reward,
            "stability": self.stability,
            "recent_metrics": self.recent_metrics,
            "version": self.version,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PolicyState:
        params = dict(defaults.POLICY_DEFAULTS)
        params.update(d.get("parameters", {}))
        return cls(
            parameters=params,
            type_adjustments=dict(d.get("type_adjustments", {})),
            pair_adjustments=dict(d.get("pair_adjustments", {})),
            pass_streaks={k: int(v) for k, v in d.get("pass_streaks", {}).items()},
            learning_rate=float(d.get("learning_rate", defaults.LEARNING_RATE)),
            exploration_rate=float(d.get("exploration_rate", defaults.EXPLORATION_RATE)),
            sessions=int(d.get("sessions", 0)),
            average_reward=float(d.get("average_reward", 0.0)),
            stability=float(d.get("stability", 1.0)),
            recent_metrics=list(d.get("recent_metrics", [])),
            version=int(d.get("version", 0)),
            updated_at=d.get("updated_at", now_iso()),
        )


class PolicyTransaction:
    """Mutable working copy handed out by ``PolicyStore.session()``."""

    def __init__(self, state: PolicyState) -> None:
        self.state = state
        self.committed = False

    def commit(self) -> None:
        self.committed = True


class PolicyStore:
    """Explicit owner of the learned policy.

    Readers get consistent copies.  Writers enter ``session()``, which
    serializes them and persists the working copy only if it was committed.
    """

    def __init__(self, config: SikgConfig, backend: PolicyStatePort | None = None) -> None:
        self.config = config
        self._backend = backend
        self._write_lock = threading.Lock()
        self._read_lock = threading.Lock()
        data = backend.load_policy_state() if backend is not None else None
        self._state = PolicyState.from_dict(data) if data else PolicyState.initial(config)

    def read(self) -> PolicyState:
        with self._read_lock:
            return self._state.copy()

    @contextmanager
    def session(self) -> Iterator[PolicyTransaction]:
        with self._write_lock:
            txn = PolicyTransaction(self.read())
            yield txn
            if not txn.committed:
                log.debug("Policy session closed without commit; changes discarded")
                return
            txn.state.version += 1
            txn.state.updated_at = now_iso()
            if self._backend is not None:
                self._backend.save_policy_state(txn.state.to_dict(), txn.state.version)
            with self._read_lock:
                self._state = txn.state

    def reset(self) -> PolicyState:
        with self._write_lock:
            fresh = PolicyState.initial(self.config)
            if self._backend is not None:
                self._backend.delete_policy_state()
            with self._read_lock:
                self._state = fresh
            log.info("Policy state reset to defaults")
            return fresh.copy()
