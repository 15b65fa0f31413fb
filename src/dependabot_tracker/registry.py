"""Ordered, deduplicated set of repositories to track."""

from __future__ import annotations

from typing import Any, Iterable, Iterator

from dependabot_tracker.models import RepositoryTarget


class RepositoryRegistry:
    """Immutable list of repositories, in configuration order.

    Duplicates are dropped, keeping the first occurrence.

    Example:
        >>> registry = RepositoryRegistry.from_entries(["a/x", "a/y", "a/x"])
        >>> [t.full_name for t in registry]
        ['a/x', 'a/y']
    """

    def __init__(self, targets: Iterable[RepositoryTarget] = ()) -> None:
        self._targets: tuple[RepositoryTarget, ...] = tuple(dict.fromkeys(targets))

    @classmethod
    def from_entries(
        cls, entries: Iterable[str | dict[str, Any]], default_owner: str | None = None
    ) -> RepositoryRegistry:
        """Build a registry from configuration entries.

        Args:
            entries: ``"owner/name"``, bare ``"name"``, or mappings with
                ``owner`` and ``name`` or ``full_name``.
            default_owner: Owner for entries that do not name one.

        Returns:
            RepositoryRegistry instance.

        Raises:
            ValueError: If an entry cannot be resolved.
        """
        targets = []
        for entry in entries:
            if isinstance(entry, str):
                targets.append(RepositoryTarget.parse(entry, default_owner))
            elif isinstance(entry, dict):
                if "owner" in entry and "name" in entry:
                    targets.append(
                        RepositoryTarget(owner=entry["owner"], name=entry["name"])
                    )
                elif "full_name" in entry:
                    targets.append(RepositoryTarget.parse(entry["full_name"]))
                elif "name" in entry:
                    targets.append(RepositoryTarget.parse(entry["name"], default_owner))
                else:
                    raise ValueError(f"Unrecognised repository entry: {entry!r}")
            else:
                raise ValueError(f"Unrecognised repository entry: {entry!r}")
        return cls(targets)

    @property
    def targets(self) -> tuple[RepositoryTarget, ...]:
        return self._targets

    def __iter__(self) -> Iterator[RepositoryTarget]:
        return iter(self._targets)

    def __len__(self) -> int:
        return len(self._targets)

    def __getitem__(self, index: int) -> RepositoryTarget:
        return self._targets[index]

    def __contains__(self, target: object) -> bool:
        return target in self._targets

    def __repr__(self) -> str:
        return f"RepositoryRegistry({[t.full_name for t in self._targets]!r})"
