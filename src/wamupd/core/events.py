# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Lifecycle events for observability.

Components report record additions/removals, failures and drain progress
here. Events are kept in memory and pushed to subscribers; the CLI uses a
subscriber to echo what happens to the console.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum

import structlog
from pydantic import BaseModel, ConfigDict, Field

from wamupd.core.models import RecordType

logger = structlog.get_logger(__name__)


class EventKind(StrEnum):
    RECORD_ADDED = "record_added"
    RECORD_REMOVED = "record_removed"
    UPDATE_FAILED = "update_failed"
    DRAIN_PROGRESS = "drain_progress"
    REQUEST_ABANDONED = "request_abandoned"


class LifecycleEvent(BaseModel):
    """One observable state change."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    kind: EventKind
    target: str | None = None
    record_type: RecordType | None = None
    outstanding: int | None = None
    detail: str | None = None


Subscriber = Callable[[LifecycleEvent], None]


class EventCollector:
    """Collects lifecycle events in memory and fans them out to subscribers."""

    def __init__(self, *, max_events: int = 10_000) -> None:
        self._events: list[LifecycleEvent] = []
        self._subscribers: list[Subscriber] = []
        self._max_events = max_events

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(
        self,
        kind: EventKind,
        *,
        target: str | None = None,
        record_type: RecordType | None = None,
        outstanding: int | None = None,
        detail: str | None = None,
    ) -> LifecycleEvent:
        """Record an event and notify subscribers. Returns the event."""
        event = LifecycleEvent(
            kind=kind,
            target=target,
            record_type=record_type,
            outstanding=outstanding,
            detail=detail,
        )
        self._events.append(event)
        if len(self._events) > self._max_events:
            del self._events[: len(self._events) - self._max_events]

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed", kind=kind.value)
        return event

    @property
    def events(self) -> list[LifecycleEvent]:
        """Return all collected events."""
        return list(self._events)

    def events_of(self, kind: EventKind) -> list[LifecycleEvent]:
        return [e for e in self._events if e.kind == kind]

    def clear(self) -> None:
        self._events.clear()
