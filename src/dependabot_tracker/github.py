"""GitHub Dependabot alerts client."""

from __future__ import annotations

import asyncio
import math
import random
import time
from typing import Any, Awaitable, Callable

import httpx

from dependabot_tracker import __version__
from dependabot_tracker.config import Credentials, TrackerConfig
from dependabot_tracker.log import LogSink
from dependabot_tracker.models import (
    SEVERITY_MAP,
    AlertPage,
    ErrorKind,
    FetchResult,
    RepositoryTarget,
    Severity,
    SeverityCounts,
)
from dependabot_tracker.retry import FetchPhase, PageFetchMachine, RetryPolicy

Sleep = Callable[[float], Awaitable[None]]

# Fail without retrying; anything else not rate limiting is retried
FATAL_KINDS = frozenset({ErrorKind.AUTH, ErrorKind.NOT_FOUND, ErrorKind.BAD_REQUEST})


def _header_seconds(value: str | None) -> float | None:
    """Parse a numeric header, ignoring malformed or non-finite values."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if math.isfinite(seconds) else None


class GitHubAPIError(Exception):
    """GitHub API error, classified by how the poller should treat it."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        kind: ErrorKind = ErrorKind.TRANSIENT,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.kind = kind


class RateLimitExceeded(GitHubAPIError):
    """Rate limit exceeded error.

    ``reset_at`` is in epoch seconds, as reported by ``X-RateLimit-Reset``.
    """

    def __init__(
        self,
        reset_at: float | None = None,
        retry_after: float | None = None,
        status_code: int | None = 403,
    ) -> None:
        super().__init__(
            "GitHub API rate limit exceeded", status_code, ErrorKind.RATE_LIMITED
        )
        self.reset_at = reset_at
        self.retry_after = retry_after


class ClientStopped(GitHubAPIError):
    """The client was stopped before the fetch could finish."""

    def __init__(self) -> None:
        super().__init__("Alert client stopped")


class RateLimitGate:
    """Shared quota tracker for all requests made through one client.

    Armed when a successful response reports no remaining quota; the next
    request waits until the reported reset.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self.remaining: int | None = None
        self.reset_at: float | None = None

    def update(self, response: httpx.Response) -> None:
        """Update quota info from response headers."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset = _header_seconds(response.headers.get("X-RateLimit-Reset"))

        if remaining and remaining.isdigit():
            self.remaining = int(remaining)
        if reset is not None:
            self.reset_at = reset

    def delay(self) -> float:
        """Seconds to wait before the next request."""
        if self.remaining != 0 or self.reset_at is None:
            return 0.0
        return max(0.0, self.reset_at - self._clock())

    def clear(self) -> None:
        self.remaining = None
        self.reset_at = None


class AlertClient:
    """Async client counting open Dependabot alerts for one repository at a time.

    Example:
        >>> async with AlertClient(config, credentials) as client:
        ...     result = await client.fetch_open_alert_count(target)
        >>> result.open_count
        3
    """

    def __init__(
        self,
        config: TrackerConfig,
        credentials: Credentials,
        log: LogSink | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the alert client.

        Args:
            config: Tracker configuration.
            credentials: Account and token.
            log: Log sink for failure records.
            sleep: Coroutine used for every wait, injectable for tests.
            transport: Optional httpx transport, for tests.
            rng: Random source for backoff jitter.
            clock: Epoch-seconds clock used for rate-limit resets.
        """
        self.config = config
        self.credentials = credentials
        self.log = log or LogSink()
        self.policy = RetryPolicy.from_config(config.polling)
        self.gate = RateLimitGate(clock)
        self._sleep = sleep
        self._transport = transport
        self._rng = rng or random.Random()
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self._stopped = asyncio.Event()

    async def __aenter__(self) -> AlertClient:
        """Enter async context."""
        self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context."""
        await self.close()

    def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._client is None or self._client.is_closed:
            headers = {
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self.credentials.token}",
                "User-Agent": f"Dependabot-Tracker/{__version__}",
                "X-GitHub-Api-Version": "2022-11-28",
            }
            self._client = httpx.AsyncClient(
                base_url=self.config.github.api_url,
                headers=headers,
                timeout=self.config.github.request_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def stop(self) -> None:
        """Stop issuing requests.

        A request already on the wire completes; pending backoff and quota
        waits end early and no further request is sent.
        """
        self._stopped.set()

    async def _wait(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless the client is stopped first."""
        sleeper = asyncio.ensure_future(self._sleep(seconds))
        stopper = asyncio.ensure_future(self._stopped.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                task.cancel()
            await asyncio.gather(sleeper, stopper, return_exceptions=True)
        if self.stopped:
            raise ClientStopped()

    async def _request_page(
        self, target: RepositoryTarget, cursor: str | None
    ) -> AlertPage:
        """Request one page of alerts.

        Args:
            target: Repository to query.
            cursor: Next-page URL from the previous page, or None for the first.

        Returns:
            AlertPage with the raw records.

        Raises:
            RateLimitExceeded: If the quota is exhausted.
            GitHubAPIError: On any other failure, with its ErrorKind.
        """
        client = self._ensure_client()
        try:
            if cursor is None:
                response = await client.get(
                    f"/repos/{target.owner}/{target.name}/dependabot/alerts",
                    params={"state": "open", "per_page": self.config.github.per_page},
                )
            else:
                response = await client.get(cursor)
        except httpx.TimeoutException as e:
            raise GitHubAPIError(f"Timed out: {e}") from e
        except httpx.TransportError as e:
            raise GitHubAPIError(f"Network error: {e}") from e

        self._raise_for_status(response, target)
        self.gate.update(response)

        try:
            data = response.json()
        except ValueError as e:
            raise GitHubAPIError(f"Invalid JSON from {target}", response.status_code) from e
        if not isinstance(data, list):
            raise GitHubAPIError(
                f"Unexpected payload from {target}: {type(data).__name__}",
                response.status_code,
            )

        next_link = response.links.get("next", {}).get("url")
        return AlertPage(alerts=data, next_cursor=next_link)

    def _raise_for_status(self, response: httpx.Response, target: RepositoryTarget) -> None:
        """Classify an error response."""
        status = response.status_code
        if status < 400:
            return

        remaining = response.headers.get("X-RateLimit-Remaining")
        if status == 429 or (
            status == 403
            and (remaining == "0" or "rate limit" in response.text.lower())
        ):
            raise RateLimitExceeded(
                reset_at=_header_seconds(response.headers.get("X-RateLimit-Reset")),
                retry_after=_header_seconds(response.headers.get("Retry-After")),
                status_code=status,
            )

        if status in (401, 403):
            raise GitHubAPIError(
                f"Forbidden: {target} ({status})", status, ErrorKind.AUTH
            )

        if status in (404, 410):
            raise GitHubAPIError(f"Not found: {target}", status, ErrorKind.NOT_FOUND)

        if status < 500:
            raise GitHubAPIError(
                f"Request rejected: {status} - {response.text}", status, ErrorKind.BAD_REQUEST
            )

        raise GitHubAPIError(f"API error: {status} - {response.text}", status)

    async def _fetch_page(
        self, target: RepositoryTarget, cursor: str | None
    ) -> AlertPage:
        """Fetch one page, driving the retry state machine.

        Raises:
            GitHubAPIError: When the page fails terminally.
        """
        machine = PageFetchMachine(self.policy, rng=self._rng, clock=self._clock)
        while True:
            wait = self.gate.delay()
            if wait > 0:
                self.log.debug(
                    f"Quota exhausted, waiting {wait:.1f}s", repository=target.full_name
                )
                await self._wait(wait)
                self.gate.clear()

            if self.stopped:
                raise ClientStopped()

            try:
                page = await self._request_page(target, cursor)
            except RateLimitExceeded as e:
                machine.on_rate_limited(e.reset_at, e.retry_after)
                last_error: GitHubAPIError = e
            except GitHubAPIError as e:
                if e.kind in FATAL_KINDS:
                    machine.on_fatal(e.kind)
                else:
                    machine.on_transient()
                last_error = e
            else:
                machine.on_success()
                return page

            if machine.phase is FetchPhase.FAILED:
                assert machine.error is not None
                raise GitHubAPIError(
                    str(last_error), last_error.status_code, machine.error
                ) from last_error

            self.log.debug(
                f"Retrying {target} in {machine.delay:.1f}s after: {last_error}",
                repository=target.full_name,
            )
            await self._wait(machine.delay)
            self.gate.clear()
            machine.resume()

    async def fetch_open_alert_count(self, target: RepositoryTarget) -> FetchResult:
        """Count open alerts across all pages for one repository.

        Never returns a partial count: if any page fails, the whole fetch
        fails with that page's error kind.

        Args:
            target: Repository to query.

        Returns:
            FetchResult with the open count or the error kind.
        """
        max_pages = self.config.github.max_pages
        open_count = 0
        severities: list[Severity] = []
        cursor: str | None = None
        pages = 0

        try:
            while True:
                if pages >= max_pages:
                    self.log.failure(
                        target, ErrorKind.PAGE_LIMIT, f"stopped after {pages} pages"
                    )
                    return FetchResult.failure(ErrorKind.PAGE_LIMIT)

                page = await self._fetch_page(target, cursor)
                pages += 1

                for alert in page.alerts:
                    if alert.get("state") != "open":
                        continue
                    open_count += 1
                    severity = self._alert_severity(alert)
                    if severity is not None:
                        severities.append(severity)

                if page.is_last:
                    break
                cursor = page.next_cursor
        except ClientStopped:
            self.log.debug(f"{target}: fetch stopped", repository=target.full_name)
            return FetchResult.failure(ErrorKind.TRANSIENT)
        except GitHubAPIError as e:
            self.log.failure(target, e.kind, str(e))
            return FetchResult.failure(e.kind)

        self.log.debug(
            f"{target}: {open_count} open alerts over {pages} pages",
            repository=target.full_name,
        )
        return FetchResult.success(open_count, SeverityCounts.from_severities(severities))

    @staticmethod
    def _alert_severity(alert: dict[str, Any]) -> Severity | None:
        """Map an alert's advisory severity to Severity."""
        severity = (alert.get("security_advisory") or {}).get("severity") or (
            alert.get("security_vulnerability") or {}
        ).get("severity")
        if not severity:
            return None
        return SEVERITY_MAP.get(str(severity).lower())
