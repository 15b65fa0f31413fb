"""Tests for Dependabot Tracker data models."""

from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from dependabot_tracker.models import (
    AlertPage,
    AlertState,
    ErrorKind,
    FetchResult,
    RepositorySnapshot,
    RepositoryTarget,
    Severity,
    SeverityCounts,
)


class TestRepositoryTarget:
    """Tests for RepositoryTarget."""

    def test_full_name(self) -> None:
        """Test owner/name formatting."""
        target = RepositoryTarget(owner="octo", name="hello")
        assert target.full_name == "octo/hello"
        assert str(target) == "octo/hello"

    def test_parse_full_name(self) -> None:
        """Test parsing owner/name."""
        target = RepositoryTarget.parse("octo/hello")
        assert target == RepositoryTarget(owner="octo", name="hello")

    def test_parse_bare_name_uses_default_owner(self) -> None:
        """Test bare names resolve against the default owner."""
        target = RepositoryTarget.parse("hello", default_owner="octo")
        assert target.owner == "octo"
        assert target.name == "hello"

    def test_parse_bare_name_without_owner(self) -> None:
        """Test bare names need a default owner."""
        with pytest.raises(ValueError):
            RepositoryTarget.parse("hello")

    @pytest.mark.parametrize("value", ["/hello", "octo/", "a/b/c"])
    def test_parse_invalid(self, value: str) -> None:
        """Test malformed references are rejected."""
        with pytest.raises(ValueError):
            RepositoryTarget.parse(value, default_owner="octo")

    def test_identity_and_hashing(self) -> None:
        """Test targets compare and hash by (owner, name)."""
        a = RepositoryTarget(owner="octo", name="hello")
        b = RepositoryTarget(owner="octo", name="hello")
        assert a == b
        assert len({a, b}) == 1

    def test_immutable(self) -> None:
        """Test targets cannot be mutated."""
        target = RepositoryTarget(owner="octo", name="hello")
        with pytest.raises(ValidationError):
            target.name = "other"  # type: ignore[misc]


class TestSeverityCounts:
    """Tests for SeverityCounts."""

    def test_from_severities(self) -> None:
        """Test tallying severities."""
        counts = SeverityCounts.from_severities(
            [Severity.HIGH, Severity.HIGH, Severity.LOW, Severity.CRITICAL]
        )
        assert counts == SeverityCounts(critical=1, high=2, medium=0, low=1)

    def test_addition(self) -> None:
        """Test adding counts."""
        total = SeverityCounts(critical=1, low=2) + SeverityCounts(high=3, low=1)
        assert total == SeverityCounts(critical=1, high=3, medium=0, low=3)


class TestAlertPage:
    """Tests for AlertPage."""

    def test_last_page(self) -> None:
        """Test a page without cursor is the last."""
        assert AlertPage(alerts=[]).is_last is True

    def test_page_with_cursor(self) -> None:
        """Test a page with cursor is not the last."""
        assert AlertPage(alerts=[], next_cursor="https://next").is_last is False


class TestFetchResult:
    """Tests for FetchResult."""

    def test_success(self) -> None:
        """Test successful result."""
        result = FetchResult.success(3)
        assert result.ok is True
        assert result.open_count == 3
        assert result.error is None

    def test_failure(self) -> None:
        """Test failed result carries no count."""
        result = FetchResult.failure(ErrorKind.AUTH)
        assert result.ok is False
        assert result.open_count is None
        assert result.error == ErrorKind.AUTH


class TestRepositorySnapshot:
    """Tests for RepositorySnapshot."""

    def test_pending(self) -> None:
        """Test a never-polled snapshot is pending."""
        snapshot = RepositorySnapshot(target=RepositoryTarget(owner="a", name="x"))
        assert snapshot.is_pending is True
        assert snapshot.is_stale is False

    def test_stale(self) -> None:
        """Test a failed snapshot is stale."""
        snapshot = RepositorySnapshot(
            target=RepositoryTarget(owner="a", name="x"),
            open_count=4,
            last_success_at=datetime(2024, 1, 1),
            last_error=ErrorKind.TRANSIENT,
        )
        assert snapshot.is_stale is True
        assert snapshot.is_pending is False

    def test_negative_count_rejected(self) -> None:
        """Test open_count must not be negative."""
        with pytest.raises(ValidationError):
            RepositorySnapshot(target=RepositoryTarget(owner="a", name="x"), open_count=-1)


class TestAlertState:
    """Tests for AlertState."""

    @pytest.fixture
    def snapshots(self) -> list[RepositorySnapshot]:
        """Create one fresh and one stale snapshot."""
        return [
            RepositorySnapshot(
                target=RepositoryTarget(owner="a", name="x"),
                open_count=3,
                severities=SeverityCounts(high=2, low=1),
                last_success_at=datetime(2024, 1, 1),
            ),
            RepositorySnapshot(
                target=RepositoryTarget(owner="a", name="y"),
                open_count=5,
                severities=SeverityCounts(critical=5),
                last_success_at=datetime(2024, 1, 1),
                last_error=ErrorKind.TRANSIENT,
            ),
        ]

    def test_default_state_is_empty(self) -> None:
        """Test default state."""
        state = AlertState()
        assert state.snapshots == ()
        assert state.total_open == 0
        assert state.version == 0

    def test_from_snapshots_excludes_errored(
        self, snapshots: list[RepositorySnapshot]
    ) -> None:
        """Test total_open only counts snapshots without an error."""
        state = AlertState.from_snapshots(snapshots, version=1)
        assert state.total_open == 3
        assert state.stale_open == 5
        assert state.known_open == 8
        assert state.error_count == 1

    def test_total_mismatch_rejected(self, snapshots: list[RepositorySnapshot]) -> None:
        """Test inconsistent totals fail validation."""
        with pytest.raises(ValidationError):
            AlertState(snapshots=tuple(snapshots), total_open=8, version=1)

    def test_severity_totals_use_fresh_data(
        self, snapshots: list[RepositorySnapshot]
    ) -> None:
        """Test severity totals skip stale repositories."""
        state = AlertState.from_snapshots(snapshots, version=1)
        assert state.severity_totals == SeverityCounts(high=2, low=1)

    def test_initial(self) -> None:
        """Test initial state has one pending snapshot per target."""
        targets = [
            RepositoryTarget(owner="a", name="x"),
            RepositoryTarget(owner="a", name="y"),
        ]
        state = AlertState.initial(targets)
        assert [s.target for s in state.snapshots] == targets
        assert all(s.is_pending for s in state.snapshots)
        assert state.version == 0
        assert state.updated_at is None

    def test_snapshot_for(self, snapshots: list[RepositorySnapshot]) -> None:
        """Test looking up a snapshot by target."""
        state = AlertState.from_snapshots(snapshots, version=1)
        found = state.snapshot_for(RepositoryTarget(owner="a", name="y"))
        assert found is not None
        assert found.open_count == 5
        assert state.snapshot_for(RepositoryTarget(owner="b", name="z")) is None
