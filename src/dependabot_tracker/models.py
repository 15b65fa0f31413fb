"""Data models for Dependabot alert tracking."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ErrorKind(str, Enum):
    """Why a repository could not be refreshed."""

    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    PAGE_LIMIT = "page_limit"
    BAD_REQUEST = "bad_request"


class Severity(str, Enum):
    """Dependabot alert severity levels."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_MAP: dict[str, Severity] = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "low": Severity.LOW,
}


class SeverityCounts(BaseModel):
    """Open alert counts broken down by severity."""

    model_config = ConfigDict(frozen=True)

    critical: int = Field(default=0, ge=0)
    high: int = Field(default=0, ge=0)
    medium: int = Field(default=0, ge=0)
    low: int = Field(default=0, ge=0)

    def __add__(self, other: SeverityCounts) -> SeverityCounts:
        return SeverityCounts(
            critical=self.critical + other.critical,
            high=self.high + other.high,
            medium=self.medium + other.medium,
            low=self.low + other.low,
        )

    @classmethod
    def from_severities(cls, severities: Iterable[Severity]) -> SeverityCounts:
        """Tally a sequence of severities."""
        tally = {severity.value: 0 for severity in Severity}
        for severity in severities:
            tally[severity.value] += 1
        return cls(**tally)


class RepositoryTarget(BaseModel):
    """A tracked repository, identified by (owner, name)."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(min_length=1)
    name: str = Field(min_length=1)

    @property
    def full_name(self) -> str:
        """Get the ``owner/name`` form."""
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, value: str, default_owner: str | None = None) -> RepositoryTarget:
        """Parse ``owner/name`` or a bare ``name``.

        Args:
            value: Repository reference.
            default_owner: Owner used when ``value`` has no owner part.

        Returns:
            RepositoryTarget instance.

        Raises:
            ValueError: If the reference cannot be resolved.
        """
        owner, sep, name = value.strip().partition("/")
        if not sep:
            if not default_owner:
                raise ValueError(f"Repository {value!r} has no owner")
            owner, name = default_owner, owner
        if not owner or not name or "/" in name:
            raise ValueError(f"Invalid repository reference: {value!r}")
        return cls(owner=owner, name=name)

    def __str__(self) -> str:
        return self.full_name


class AlertPage(BaseModel):
    """One page of raw alert records plus the cursor for the next page."""

    alerts: list[dict[str, Any]] = Field(default_factory=list)
    next_cursor: str | None = None

    @property
    def is_last(self) -> bool:
        """Check if this is the final page."""
        return self.next_cursor is None


class FetchResult(BaseModel):
    """Outcome of fetching one repository: a count or an error kind."""

    model_config = ConfigDict(frozen=True)

    open_count: int | None = None
    severities: SeverityCounts = Field(default_factory=SeverityCounts)
    error: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        """Check if the fetch succeeded."""
        return self.error is None

    @classmethod
    def success(
        cls, open_count: int, severities: SeverityCounts | None = None
    ) -> FetchResult:
        return cls(open_count=open_count, severities=severities or SeverityCounts())

    @classmethod
    def failure(cls, kind: ErrorKind) -> FetchResult:
        return cls(error=kind)


class RepositorySnapshot(BaseModel):
    """Alert counts for one repository as of the latest cycle."""

    model_config = ConfigDict(frozen=True)

    target: RepositoryTarget
    open_count: int = Field(default=0, ge=0)
    severities: SeverityCounts = Field(default_factory=SeverityCounts)
    last_success_at: datetime | None = None
    last_error: ErrorKind | None = None

    @property
    def is_stale(self) -> bool:
        """Check if the counts are left over from an earlier cycle."""
        return self.last_error is not None

    @property
    def is_pending(self) -> bool:
        """Check if the repository has not been polled yet."""
        return self.last_success_at is None and self.last_error is None


class AlertState(BaseModel):
    """Versioned snapshot of alert counts across all tracked repositories.

    Replaced as a whole on every poll cycle. ``total_open`` only counts
    repositories whose latest fetch succeeded.
    """

    model_config = ConfigDict(frozen=True)

    snapshots: tuple[RepositorySnapshot, ...] = ()
    total_open: int = Field(default=0, ge=0)
    version: int = Field(default=0, ge=0)
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _check_total(self) -> AlertState:
        expected = sum(s.open_count for s in self.snapshots if s.last_error is None)
        if self.total_open != expected:
            raise ValueError(
                f"total_open {self.total_open} does not match snapshots ({expected})"
            )
        return self

    @classmethod
    def from_snapshots(
        cls,
        snapshots: Iterable[RepositorySnapshot],
        version: int,
        updated_at: datetime | None = None,
    ) -> AlertState:
        """Build a state, deriving ``total_open`` from the snapshots."""
        snapshots = tuple(snapshots)
        return cls(
            snapshots=snapshots,
            total_open=sum(s.open_count for s in snapshots if s.last_error is None),
            version=version,
            updated_at=updated_at,
        )

    @classmethod
    def initial(cls, targets: Iterable[RepositoryTarget]) -> AlertState:
        """State shown before the first poll cycle completes."""
        return cls.from_snapshots(
            (RepositorySnapshot(target=t) for t in targets), version=0
        )

    @property
    def stale_open(self) -> int:
        """Sum of retained counts for repositories whose last fetch failed."""
        return sum(s.open_count for s in self.snapshots if s.last_error is not None)

    @property
    def known_open(self) -> int:
        """Fresh plus stale open alerts."""
        return self.total_open + self.stale_open

    @property
    def error_count(self) -> int:
        """Number of repositories whose last fetch failed."""
        return sum(1 for s in self.snapshots if s.last_error is not None)

    @property
    def severity_totals(self) -> SeverityCounts:
        """Severity breakdown over repositories with fresh data."""
        total = SeverityCounts()
        for snapshot in self.snapshots:
            if snapshot.last_error is None:
                total = total + snapshot.severities
        return total

    def snapshot_for(self, target: RepositoryTarget) -> RepositorySnapshot | None:
        """Get the snapshot for a repository, if tracked."""
        for snapshot in self.snapshots:
            if snapshot.target == target:
                return snapshot
        return None
