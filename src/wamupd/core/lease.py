# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Lease maintenance.

Each record class is renewed by its own timer. A renewal re-submits the ADD
for every record believed published; when the record is still there the
dispatcher resolves it as CONFLICT_RESOLVED and nothing changes.
"""

from __future__ import annotations

import asyncio

import structlog

from wamupd.core.actions import RecordClass
from wamupd.core.dispatcher import UpdateDispatcher, UpdateHandle
from wamupd.core.models import DispatcherClosedError, UpdateOutcome
from wamupd.core.reconciler import ReconciliationModel

logger = structlog.get_logger(__name__)


class LeaseMaintainer:
    """Periodically re-publishes one record class."""

    def __init__(
        self,
        model: ReconciliationModel,
        dispatcher: UpdateDispatcher,
        record_class: RecordClass,
        interval: float,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Lease interval must be positive, got {interval}")
        self._model = model
        self._dispatcher = dispatcher
        self._record_class = record_class
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def record_class(self) -> RecordClass:
        return self._record_class

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(
            self._run(), name=f"wamupd-lease-{self._record_class.value}"
        )
        logger.debug("Lease timer started", record_class=self._record_class.value, interval=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Lease timer stopped", record_class=self._record_class.value)

    async def renew_once(self) -> list[UpdateHandle]:
        """Submit one round of renewals. Returns the handles of the submissions."""
        handles: list[UpdateHandle] = []
        actions = self._model.renewal_actions(self._record_class)
        for action in actions:
            # Skip records withdrawn since the round started
            if not self._model.is_current(action):
                continue
            try:
                handle = await self._dispatcher.submit(action)
            except DispatcherClosedError:
                logger.debug("Dispatcher closed, skipping remaining renewals")
                break
            handle.add_done_callback(_log_renewal_outcome)
            handles.append(handle)
        logger.info(
            "Renewing leases",
            record_class=self._record_class.value,
            records=len(handles),
        )
        return handles

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.renew_once()
            except Exception:
                logger.exception("Lease renewal round failed", record_class=self._record_class.value)


def _log_renewal_outcome(outcome: UpdateOutcome) -> None:
    if not outcome.success:
        logger.warning(
            "Lease renewal failed",
            action=outcome.action.describe(),
            status=outcome.status.value,
            error=outcome.error_message,
        )
