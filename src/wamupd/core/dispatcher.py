# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Update dispatcher: Actions in, dynamic-update transactions out.

Every record change in the bridge goes through one dispatcher. Submitted
Actions are queued, turned into single-record update transactions by a
bounded pool of workers, and their responses are resolved into
``UpdateOutcome`` values delivered through per-submission handles.

Prerequisite violations that show the server already holds the desired
state (YXRRSET on ADD, NXRRSET on DELETE) are successes, not errors.
Transient failures are retried with capped exponential backoff.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

import dns.message
import dns.rcode
import dns.rdatatype
import dns.update
import structlog

from wamupd.backends.base import UpdateTransport
from wamupd.config import BridgeConfig
from wamupd.core.events import EventCollector, EventKind
from wamupd.core.models import (
    Action,
    ActionKind,
    DispatcherClosedError,
    FatalProtocolError,
    OutcomeStatus,
    RecordType,
    RetryableTransportError,
    UpdateOutcome,
)

logger = structlog.get_logger(__name__)

# Server errors worth another attempt
RETRYABLE_RCODES = frozenset({dns.rcode.SERVFAIL})

_MAX_REQUEST_ID = 0xFFFF


def build_update(action: Action, zone: str, request_id: int) -> dns.update.UpdateMessage:
    """
    Build the single-record update transaction for an Action.

    ADD:    prerequisite "RRset absent", then add the record.
    DELETE: prerequisite "RRset present", then delete the record value.

    PTR owners are shared by every instance of a service type, so PTR
    updates carry no prerequisite: adding an existing RR or deleting a
    missing one is a no-op at the server.
    """
    update = dns.update.UpdateMessage(zone, id=request_id)
    rdtype = dns.rdatatype.from_text(action.record_type.value)
    shared = action.record_type == RecordType.PTR

    if action.kind == ActionKind.ADD:
        if not shared:
            update.absent(action.target, rdtype)
        update.add(action.target, action.ttl, rdtype, action.value)
    else:
        if not shared:
            update.present(action.target, rdtype)
        update.delete(action.target, rdtype, action.value)
    return update


def classify_response(action: Action, response: dns.message.Message) -> OutcomeStatus | None:
    """
    Map a server response to an outcome.

    Returns None when the response is a transient failure that should be
    retried.
    """
    rcode = response.rcode()
    if rcode == dns.rcode.NOERROR:
        return OutcomeStatus.APPLIED
    if rcode == dns.rcode.YXRRSET and action.kind == ActionKind.ADD:
        return OutcomeStatus.CONFLICT_RESOLVED
    if rcode == dns.rcode.NXRRSET and action.kind == ActionKind.DELETE:
        return OutcomeStatus.CONFLICT_RESOLVED
    if rcode in RETRYABLE_RCODES:
        return None
    return OutcomeStatus.FATAL


class UpdateHandle:
    """
    Awaitable result of one submission.

    Awaiting the handle suspends only the awaiting task; the dispatcher keeps
    working regardless of whether anyone waits on it.
    """

    def __init__(self, request_id: int, action: Action, future: asyncio.Future[UpdateOutcome]):
        self.request_id = request_id
        self.action = action
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    def result(self) -> UpdateOutcome:
        """Return the outcome. Raises ``asyncio.InvalidStateError`` if pending."""
        return self._future.result()

    async def wait(self) -> UpdateOutcome:
        return await asyncio.shield(self._future)

    def add_done_callback(self, callback: Callable[[UpdateOutcome], Any]) -> None:
        self._future.add_done_callback(lambda fut: callback(fut.result()))

    def __await__(self) -> Generator[Any, None, UpdateOutcome]:
        return self.wait().__await__()

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"<UpdateHandle {self.request_id} {self.action.describe()} {state}>"


@dataclass
class OutstandingEntry:
    """A submitted request that has not been resolved yet."""

    request_id: int
    action: Action
    submitted_at: float
    attempt: int = 0
    sent_at: float | None = None
    handle: UpdateHandle | None = field(default=None, repr=False, compare=False)
    after: UpdateHandle | None = field(default=None, repr=False, compare=False)


class UpdateDispatcher:
    """
    Queue-based sender of dynamic updates.

    The dispatcher is the only writer of its outstanding-request table.
    Transactions for the same owner name and type go out strictly in
    submission order; everything else runs concurrently, up to
    ``config.max_in_flight`` transactions at a time.

    Usage::

        async with UpdateDispatcher(config, transport) as dispatcher:
            handle = await dispatcher.submit(action)
            outcome = await handle
    """

    def __init__(
        self,
        config: BridgeConfig,
        transport: UpdateTransport,
        *,
        events: EventCollector | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._events = events or EventCollector()
        self._queue: asyncio.Queue[OutstandingEntry] = asyncio.Queue(maxsize=config.queue_size)
        self._outstanding: dict[int, OutstandingEntry] = {}
        self._tails: dict[tuple[str, RecordType], UpdateHandle] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._idle = asyncio.Event()
        self._idle.set()
        self._accepting = True
        self._next_id = 1
        self._send_lock = None if transport.concurrent_safe else asyncio.Lock()

    async def __aenter__(self) -> UpdateDispatcher:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown(self._config.max_drain_seconds)

    @property
    def accepting(self) -> bool:
        return self._accepting

    @property
    def outstanding(self) -> list[OutstandingEntry]:
        """Snapshot of the outstanding-request table."""
        return [dataclasses.replace(e) for e in self._outstanding.values()]

    def drain_count(self) -> int:
        """Number of submitted requests that have not been resolved."""
        return len(self._outstanding)

    def start(self) -> None:
        """Start the worker pool. Must be called from a running event loop."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"wamupd-dispatch-{i}")
            for i in range(self._config.max_in_flight)
        ]
        logger.debug(
            "Dispatcher started",
            workers=len(self._workers),
            transport=self._transport.name,
        )

    async def submit(self, action: Action) -> UpdateHandle:
        """
        Queue an Action for transmission.

        Waits only while the outbound queue is full.

        Returns:
            A handle resolving to the request's UpdateOutcome.

        Raises:
            DispatcherClosedError: If shutdown has begun.
        """
        if not self._accepting:
            raise DispatcherClosedError(f"Dispatcher is shut down; dropped {action.describe()}")
        if not self._workers:
            self.start()

        request_id = self._allocate_id()
        future: asyncio.Future[UpdateOutcome] = asyncio.get_running_loop().create_future()
        handle = UpdateHandle(request_id, action, future)
        entry = OutstandingEntry(
            request_id=request_id,
            action=action,
            submitted_at=time.monotonic(),
            handle=handle,
            after=self._tails.get(action.key),
        )
        self._outstanding[request_id] = entry
        self._tails[action.key] = handle
        self._idle.clear()

        try:
            await self._queue.put(entry)
        except asyncio.CancelledError:
            self._resolve(
                entry,
                self._outcome(entry, OutcomeStatus.UNRESOLVED, error_message="submission cancelled"),
            )
            raise

        logger.debug("Update queued", request_id=request_id, action=action.describe())
        return handle

    async def shutdown(self, deadline: float) -> list[OutstandingEntry]:
        """
        Stop accepting work and wait up to ``deadline`` seconds for the
        outstanding table to empty.

        Requests still outstanding afterwards are abandoned: their handles
        resolve as UNRESOLVED and they are returned to the caller.
        """
        self._accepting = False
        if self._outstanding:
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=max(deadline, 0.0))
            except TimeoutError:
                pass

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        abandoned = list(self._outstanding.values())
        for entry in abandoned:
            logger.warning(
                "Abandoning unresolved update",
                request_id=entry.request_id,
                action=entry.action.describe(),
                attempt=entry.attempt,
            )
            self._events.emit(
                EventKind.REQUEST_ABANDONED,
                target=entry.action.target,
                record_type=entry.action.record_type,
                detail=entry.action.kind.value,
            )
            self._resolve(
                entry,
                self._outcome(entry, OutcomeStatus.UNRESOLVED, error_message="abandoned at shutdown"),
            )

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

        logger.info("Dispatcher stopped", abandoned=len(abandoned))
        return abandoned

    def _allocate_id(self) -> int:
        for _ in range(_MAX_REQUEST_ID):
            request_id = self._next_id
            self._next_id = request_id % _MAX_REQUEST_ID + 1
            if request_id not in self._outstanding:
                return request_id
        raise RuntimeError("No free request ids: too many outstanding updates")

    async def _worker(self, index: int) -> None:
        while True:
            entry = await self._queue.get()
            try:
                if entry.after is not None and not entry.after.done():
                    await asyncio.wait([entry.after._future])
                outcome = await self._execute(entry)
                self._resolve(entry, outcome)
            finally:
                self._queue.task_done()

    async def _execute(self, entry: OutstandingEntry) -> UpdateOutcome:
        action = entry.action
        timeout = self._config.transport_timeout
        while True:
            entry.attempt += 1
            entry.sent_at = time.monotonic()
            message = build_update(action, self._config.zone_fqdn, entry.request_id)

            try:
                response = await asyncio.wait_for(self._send(message, timeout), timeout=timeout)
            except FatalProtocolError as e:
                return self._outcome(
                    entry, OutcomeStatus.FATAL, error_type=type(e).__name__, error_message=str(e)
                )
            except (RetryableTransportError, TimeoutError, OSError) as e:
                error: Exception = e
                rcode = None
            except Exception as e:
                logger.exception("Unexpected transport failure", request_id=entry.request_id)
                return self._outcome(
                    entry, OutcomeStatus.FATAL, error_type=type(e).__name__, error_message=str(e)
                )
            else:
                rcode = dns.rcode.to_text(response.rcode())
                if response.id != message.id:
                    logger.warning(
                        "Got back an unexpected response",
                        request_id=entry.request_id,
                        response_id=response.id,
                    )
                    error = RetryableTransportError(f"response id {response.id} does not match")
                else:
                    status = classify_response(action, response)
                    if status is not None:
                        return self._outcome(entry, status, rcode=rcode)
                    error = RetryableTransportError(f"server answered {rcode}")

            if entry.attempt >= self._config.max_attempts:
                return self._outcome(
                    entry,
                    OutcomeStatus.FATAL,
                    rcode=rcode,
                    error_type=FatalProtocolError.__name__,
                    error_message=f"retries exhausted after {entry.attempt} attempts: {error}",
                )

            delay = self._backoff(entry.attempt)
            logger.warning(
                "Update failed, retrying",
                request_id=entry.request_id,
                action=action.describe(),
                attempt=entry.attempt,
                delay=delay,
                error=str(error) or type(error).__name__,
            )
            await asyncio.sleep(delay)

    async def _send(self, message: dns.message.Message, timeout: float) -> dns.message.Message:
        if self._send_lock is None:
            return await self._transport.send(message, timeout)
        async with self._send_lock:
            return await self._transport.send(message, timeout)

    def _backoff(self, attempt: int) -> float:
        return min(self._config.backoff_base * 2 ** (attempt - 1), self._config.backoff_max)

    def _outcome(
        self,
        entry: OutstandingEntry,
        status: OutcomeStatus,
        *,
        rcode: str | None = None,
        error_type: str | None = None,
        error_message: str | None = None,
    ) -> UpdateOutcome:
        return UpdateOutcome(
            request_id=entry.request_id,
            action=entry.action,
            status=status,
            attempts=entry.attempt,
            rcode=rcode,
            error_type=error_type,
            error_message=error_message,
        )

    def _resolve(self, entry: OutstandingEntry, outcome: UpdateOutcome) -> None:
        """Remove the entry from the outstanding table and deliver its outcome."""
        if self._outstanding.get(entry.request_id) is not entry:
            return
        del self._outstanding[entry.request_id]
        action = entry.action
        if self._tails.get(action.key) is entry.handle:
            del self._tails[action.key]

        if outcome.status == OutcomeStatus.APPLIED:
            logger.debug("Update applied", request_id=entry.request_id, action=action.describe())
        elif outcome.status == OutcomeStatus.CONFLICT_RESOLVED:
            message = (
                "Not adding record because it already exists"
                if action.kind == ActionKind.ADD
                else "Not removing record because it doesn't exist"
            )
            logger.info(
                message,
                request_id=entry.request_id,
                action=action.describe(),
                rcode=outcome.rcode,
            )
        elif outcome.status == OutcomeStatus.FATAL:
            logger.error(
                "Update failed",
                request_id=entry.request_id,
                action=action.describe(),
                rcode=outcome.rcode,
                error=outcome.error_message,
            )
            self._events.emit(
                EventKind.UPDATE_FAILED,
                target=action.target,
                record_type=action.record_type,
                detail=outcome.error_message or outcome.rcode,
            )

        if outcome.success:
            kind = (
                EventKind.RECORD_ADDED if action.kind == ActionKind.ADD else EventKind.RECORD_REMOVED
            )
            self._events.emit(
                kind, target=action.target, record_type=action.record_type, detail=action.value
            )

        if entry.handle is not None and not entry.handle.done():
            entry.handle._future.set_result(outcome)
        if not self._outstanding:
            self._idle.set()
