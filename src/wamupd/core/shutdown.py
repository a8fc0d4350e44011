# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Graceful shutdown: Running -> Draining -> Terminated.

On the termination signal the coordinator stops the lease timers and
discovery intake, withdraws everything published, and waits for the
dispatcher to drain, never longer than ``config.max_drain_seconds``.
Requests still outstanding at the deadline are abandoned and reported.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Iterable
from enum import StrEnum

import structlog

from wamupd.config import BridgeConfig
from wamupd.core.dispatcher import OutstandingEntry, UpdateDispatcher
from wamupd.core.events import EventCollector, EventKind
from wamupd.core.lease import LeaseMaintainer
from wamupd.core.models import DispatcherClosedError
from wamupd.core.reconciler import ReconciliationModel
from wamupd.discovery.base import DiscoverySource

logger = structlog.get_logger(__name__)

TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGUSR1)


class ShutdownState(StrEnum):
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


class ShutdownCoordinator:
    """Drives the drain protocol once a termination signal arrives."""

    def __init__(
        self,
        config: BridgeConfig,
        dispatcher: UpdateDispatcher,
        model: ReconciliationModel,
        *,
        maintainers: Iterable[LeaseMaintainer] = (),
        sources: Iterable[DiscoverySource] = (),
        events: EventCollector | None = None,
        poll_interval: float = 0.5,
    ) -> None:
        self._config = config
        self._dispatcher = dispatcher
        self._model = model
        self._maintainers = list(maintainers)
        self._sources = list(sources)
        self._events = events or EventCollector()
        self._poll_interval = poll_interval
        self._state = ShutdownState.RUNNING
        self._requested = asyncio.Event()
        self._terminated = asyncio.Event()
        self._abandoned: list[OutstandingEntry] = []

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def abandoned(self) -> list[OutstandingEntry]:
        return list(self._abandoned)

    def request_shutdown(self) -> None:
        """Deliver the termination signal. Safe to call more than once."""
        if not self._requested.is_set():
            logger.info("Unregistering services, please wait...")
            self._requested.set()

    async def wait_for_signal(self) -> None:
        await self._requested.wait()

    def install_signal_handlers(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        signals: Iterable[signal.Signals] = TERMINATION_SIGNALS,
    ) -> None:
        """Route process termination signals to :meth:`request_shutdown`."""
        loop = loop or asyncio.get_running_loop()
        for sig in signals:
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.warning("Cannot handle signal", signal=sig.name, error=str(e))

    async def drain(self) -> list[OutstandingEntry]:
        """
        Run the drain protocol and return the abandoned requests.

        Calling it again after termination returns the same result; calls
        made while a drain is in progress wait for it to finish.
        """
        if self._state == ShutdownState.TERMINATED:
            return self.abandoned
        if self._state == ShutdownState.DRAINING:
            await self._terminated.wait()
            return self.abandoned

        self._state = ShutdownState.DRAINING
        self._requested.set()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.max_drain_seconds

        for maintainer in self._maintainers:
            await maintainer.stop()
        self._model.close()
        for source in self._sources:
            await source.close()

        try:
            await asyncio.wait_for(
                self._model.unpublish_all(), timeout=max(0.0, deadline - loop.time())
            )
        except TimeoutError:
            logger.warning("Timed out submitting withdrawals")
        except DispatcherClosedError:
            logger.warning("Dispatcher already closed, records were not withdrawn")

        while (outstanding := self._dispatcher.drain_count()) > 0:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            logger.info("Outstanding count", outstanding=outstanding)
            self._events.emit(EventKind.DRAIN_PROGRESS, outstanding=outstanding)
            await asyncio.sleep(min(self._poll_interval, remaining))

        self._abandoned = await self._dispatcher.shutdown(max(0.0, deadline - loop.time()))
        self._events.emit(EventKind.DRAIN_PROGRESS, outstanding=0, detail="terminated")
        self._state = ShutdownState.TERMINATED
        self._terminated.set()

        if self._abandoned:
            logger.warning("Shutdown abandoned unresolved updates", count=len(self._abandoned))
        else:
            logger.info("All records withdrawn")
        return self.abandoned
