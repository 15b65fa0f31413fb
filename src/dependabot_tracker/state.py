"""Publication point for AlertState between the poller and the renderer."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Mapping

from dependabot_tracker.models import (
    AlertState,
    FetchResult,
    RepositorySnapshot,
    RepositoryTarget,
)
from dependabot_tracker.registry import RepositoryRegistry


class AlertStateStore:
    """Holds the latest AlertState.

    One writer publishes whole replacement states; readers only ever see a
    complete state, old or new.
    """

    def __init__(self, initial: AlertState | None = None) -> None:
        self._lock = threading.Lock()
        self._state = initial or AlertState()

    def latest(self) -> AlertState:
        """Get the most recently published state."""
        with self._lock:
            return self._state

    @property
    def version(self) -> int:
        return self.latest().version

    def publish(self, state: AlertState) -> None:
        """Replace the published state.

        Raises:
            ValueError: If ``state.version`` is not exactly one more than the
                current version.
        """
        with self._lock:
            if state.version != self._state.version + 1:
                raise ValueError(
                    f"Cannot publish version {state.version} over {self._state.version}"
                )
            self._state = state


def next_state(
    previous: AlertState,
    registry: RepositoryRegistry,
    results: Mapping[RepositoryTarget, FetchResult],
    now: datetime,
) -> AlertState:
    """Merge one cycle's fetch results into a new state.

    Snapshots follow registry order. A failed repository keeps its previous
    counts and success time and carries the new error.

    Args:
        previous: Currently published state.
        registry: Repositories visited this cycle.
        results: Fetch outcome per repository. Missing entries keep their
            previous snapshot unchanged.
        now: Completion time of the cycle.

    Returns:
        New AlertState with ``version = previous.version + 1``.
    """
    snapshots = []
    for target in registry:
        prior = previous.snapshot_for(target) or RepositorySnapshot(target=target)
        result = results.get(target)
        if result is None:
            snapshots.append(prior)
        elif result.ok:
            snapshots.append(
                RepositorySnapshot(
                    target=target,
                    open_count=result.open_count or 0,
                    severities=result.severities,
                    last_success_at=now,
                )
            )
        else:
            snapshots.append(prior.model_copy(update={"last_error": result.error}))

    return AlertState.from_snapshots(
        snapshots, version=previous.version + 1, updated_at=now
    )
