"""Versioned, copy-on-write engine state.

``SnapshotStore`` is the single writer for templates, overrides, completion
records, one-off activities, dismissed conflicts and learned time patterns.
Readers take ``store.snapshot()`` and work on that immutable object, so a
plan or timeline never spans a concurrent mutation.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import date
from types import MappingProxyType
from typing import TypeVar

from loguru import logger

from moveplan.domain.models import ActivityTemplate, OccurrenceOverride, OneOffActivity
from moveplan.insights.patterns import ActivityTimePattern

T = TypeVar("T")

OccurrenceKey = tuple[str, date]
DismissedKey = tuple[str, date]


@dataclass(frozen=True)
class EngineSnapshot:
    """Immutable view of all engine state at one version."""

    version: int = 0
    templates: Mapping[str, ActivityTemplate] = field(default_factory=dict)
    overrides: Mapping[OccurrenceKey, OccurrenceOverride] = field(default_factory=dict)
    completions: Mapping[OccurrenceKey, bool] = field(default_factory=dict)
    one_offs: Mapping[str, OneOffActivity] = field(default_factory=dict)
    dismissed: frozenset[DismissedKey] = frozenset()
    patterns: tuple[ActivityTimePattern, ...] = ()

    def __post_init__(self) -> None:
        for name in ("templates", "overrides", "completions", "one_offs"):
            value = getattr(self, name)
            if not isinstance(value, MappingProxyType):
                object.__setattr__(self, name, MappingProxyType(dict(value)))
        if not isinstance(self.dismissed, frozenset):
            object.__setattr__(self, "dismissed", frozenset(self.dismissed))
        if not isinstance(self.patterns, tuple):
            object.__setattr__(self, "patterns", tuple(self.patterns))

    def with_template(self, template: ActivityTemplate) -> EngineSnapshot:
        return replace(self, templates={**self.templates, template.template_id: template})

    def with_override(self, override: OccurrenceOverride) -> EngineSnapshot:
        overrides = dict(self.overrides)
        if override.is_empty:
            overrides.pop(override.key, None)
        else:
            overrides[override.key] = override
        return replace(self, overrides=overrides)

    def with_completion(self, key: OccurrenceKey, completed: bool) -> EngineSnapshot:
        return replace(self, completions={**self.completions, key: completed})

    def with_one_off(self, activity: OneOffActivity) -> EngineSnapshot:
        return replace(self, one_offs={**self.one_offs, activity.activity_id: activity})

    def without_one_off(self, activity_id: str) -> EngineSnapshot:
        one_offs = dict(self.one_offs)
        one_offs.pop(activity_id, None)
        return replace(self, one_offs=one_offs)


CommitHook = Callable[[EngineSnapshot], None]
Listener = Callable[[EngineSnapshot], None]


class SnapshotStore:
    """Single-writer holder of the current ``EngineSnapshot``.

    Mutations run under a re-entrant lock: the mutation function receives the
    current snapshot and returns ``(new_snapshot, result)``. The optional
    commit hook (persistence) runs before the new snapshot is published; if
    either raises, the published snapshot is unchanged.
    """

    def __init__(self, initial: EngineSnapshot | None = None, on_commit: CommitHook | None = None):
        self._lock = threading.RLock()
        self._current = initial or EngineSnapshot()
        self._on_commit = on_commit
        self._listeners: list[Listener] = []

    def snapshot(self) -> EngineSnapshot:
        return self._current

    @property
    def version(self) -> int:
        return self._current.version

    def subscribe(self, listener: Listener) -> None:
        """Register a callback invoked with each newly published snapshot."""
        self._listeners.append(listener)

    def mutate(self, fn: Callable[[EngineSnapshot], tuple[EngineSnapshot, T]], reason: str = "mutation") -> T:
        """Apply a mutation atomically.

        Args:
            fn: Pure function from current snapshot to (new snapshot, result)
            reason: Short description for logs

        Returns:
            The result returned by ``fn``
        """
        with self._lock:
            base = self._current
            updated, result = fn(base)
            if updated is base:
                return result

            updated = replace(updated, version=base.version + 1)
            if self._on_commit is not None:
                self._on_commit(updated)
            self._current = updated
            listeners = list(self._listeners)

        logger.debug(f"[SNAPSHOT] Published version={updated.version} reason={reason}")
        for listener in listeners:
            listener(updated)
        return result
