"""Storage port interfaces for SIKG.

Defines Protocol classes that any persistence backend must implement.
The composite ``SikgStore`` is what application code depends on.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from sikg.models import CommitRecord, Event, TestResult


# ---------------------------------------------------------------------------
# Individual ports
# ---------------------------------------------------------------------------

@runtime_checkable
class EventStorePort(Protocol):
    def append(self, event: Event) -> Event: ...
    def query(
        self,
        *,
        event_type: str | None = None,
        since: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]: ...
    def count(self, event_type: str | None = None) -> int: ...


@runtime_checkable
class HistoryStorePort(Protocol):
    def add_commits(self, commits: list[CommitRecord]) -> int: ...
    def list_commits(self, *, since: str | None = None, limit: int = 10_000) -> list[CommitRecord]: ...
    def add_test_results(self, results: list[TestResult]) -> int: ...
    def list_test_results(
        self,
        *,
        since: str | None = None,
        test_id: str | None = None,
        limit: int = 10_000,
    ) -> list[TestResult]: ...


@runtime_checkable
class PolicyStatePort(Protocol):
    def load_policy_state(self) -> dict[str, Any] | None: ...
    def save_policy_state(self, data: dict[str, Any], version: int) -> None: ...
    def delete_policy_state(self) -> None: ...
    def save_rl_session(self, session_id: str, data: dict[str, Any], status: str = "open") -> None: ...
    def get_rl_session(self, session_id: str) -> dict[str, Any] | None: ...
    def latest_rl_session(self, status: str = "open") -> dict[str, Any] | None: ...


# ---------------------------------------------------------------------------
# Composite
# ---------------------------------------------------------------------------

@runtime_checkable
class SikgStore(EventStorePort, HistoryStorePort, PolicyStatePort, Protocol):
    def close(self) -> None: ...
