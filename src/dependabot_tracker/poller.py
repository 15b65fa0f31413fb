"""Poll cycles over the repository registry."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from dependabot_tracker.config import PollingConfig
from dependabot_tracker.log import LogSink
from dependabot_tracker.models import AlertState, ErrorKind, FetchResult, RepositoryTarget
from dependabot_tracker.registry import RepositoryRegistry
from dependabot_tracker.state import AlertStateStore, next_state

if TYPE_CHECKING:
    from dependabot_tracker.github import AlertClient


class Poller:
    """Refresh alert counts for every tracked repository.

    One cycle visits the registry, fetching at most ``max_concurrency``
    repositories at a time, and publishes a single new AlertState when all
    of them have finished or the cycle budget runs out.

    Example:
        >>> poller = Poller(registry, client, store)
        >>> state = await poller.run_cycle()
        >>> print(f"Open alerts: {state.total_open}")
    """

    def __init__(
        self,
        registry: RepositoryRegistry,
        client: AlertClient,
        store: AlertStateStore,
        config: PollingConfig | None = None,
        log: LogSink | None = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the poller.

        Args:
            registry: Repositories to visit.
            client: Alert client used for every fetch.
            store: Where completed states are published.
            config: Interval, budget, and concurrency settings.
            log: Log sink for cycle events.
            now: Clock for snapshot timestamps.
        """
        self.registry = registry
        self.client = client
        self.store = store
        self.config = config or PollingConfig()
        self.log = log or LogSink()
        self._now = now
        self._stopping = asyncio.Event()
        self._progress_callback: Callable[[str, int, int], None] | None = None

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def set_progress_callback(
        self, callback: Callable[[str, int, int], None]
    ) -> None:
        """Set progress callback for cycle updates.

        Args:
            callback: Function called with (repo_name, current, total).
        """
        self._progress_callback = callback

    def _report_progress(self, repo_name: str, current: int, total: int) -> None:
        """Report cycle progress."""
        if self._progress_callback:
            self._progress_callback(repo_name, current, total)

    def stop(self) -> None:
        """Ask the poller to exit.

        Requests already sent complete; no further request is made and the
        current cycle is abandoned.
        """
        self._stopping.set()
        self.client.stop()

    async def _visit(
        self,
        target: RepositoryTarget,
        semaphore: asyncio.Semaphore,
        results: dict[RepositoryTarget, FetchResult],
        started: list[int],
    ) -> None:
        async with semaphore:
            if self.stopping:
                return
            started[0] += 1
            self._report_progress(target.full_name, started[0], len(self.registry))
            try:
                results[target] = await self.client.fetch_open_alert_count(target)
            except asyncio.CancelledError:
                raise
            except Exception:
                self.log.exception(
                    f"Unexpected error fetching {target}", repository=target.full_name
                )
                results[target] = FetchResult.failure(ErrorKind.TRANSIENT)

    async def run_cycle(self) -> AlertState:
        """Run one refresh cycle and publish the result.

        Returns:
            The newly published AlertState, or the previous one if the
            poller was stopped before the cycle completed.
        """
        previous = self.store.latest()
        results: dict[RepositoryTarget, FetchResult] = {}
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        started = [0]

        tasks = [
            asyncio.create_task(self._visit(target, semaphore, results, started))
            for target in self.registry
        ]
        if tasks:
            _, pending = await asyncio.wait(
                tasks, timeout=self.config.cycle_budget_seconds
            )
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if self.stopping:
            self.log.event("Poller stopped, cycle abandoned")
            return previous

        for target in self.registry:
            if target not in results:
                self.log.failure(
                    target,
                    ErrorKind.TIMEOUT,
                    f"cycle budget of {self.config.cycle_budget_seconds:.0f}s exceeded",
                )
                results[target] = FetchResult.failure(ErrorKind.TIMEOUT)

        state = next_state(previous, self.registry, results, self._now())
        self.store.publish(state)
        self.log.event(
            f"Cycle {state.version} complete: {state.total_open} open alerts, "
            f"{state.error_count} failing repositories",
            version=state.version,
        )
        return state

    async def run_forever(self) -> None:
        """Run cycles on a fixed interval until stopped.

        A cycle that overruns the interval delays the next one rather than
        overlapping it.
        """
        loop = asyncio.get_running_loop()
        while not self.stopping:
            started = loop.time()
            await self.run_cycle()
            if self.stopping:
                break

            delay = self.config.interval_seconds - (loop.time() - started)
            if delay <= 0:
                self.log.event("Cycle overran the interval, starting next cycle now")
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
