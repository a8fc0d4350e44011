# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Reconciliation model: what is published versus what is observed.

The model owns the Published Set, the services and host addresses confirmed
live at the server. It diffs newly observed state against that set, submits
the resulting Actions to the dispatcher, and updates the set only from
dispatcher outcomes: a service enters the set when none of its ADDs failed
fatally and leaves it when none of its DELETEs did.

While a change is in flight the diff is taken against the change that was
last submitted for that service, so a service that flaps before the server
has answered is not added or deleted twice. The intent is recorded before
the first Action is submitted, so withdrawal and renewal always see it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine, Iterable
from typing import Any

import structlog

from wamupd.config import BridgeConfig
from wamupd.core.actions import RecordClass, address_action, service_actions
from wamupd.core.dispatcher import UpdateDispatcher, UpdateHandle
from wamupd.core.models import (
    Action,
    ActionKind,
    RecordType,
    ServiceKey,
    ServiceRecord,
    UpdateOutcome,
)
from wamupd.discovery.base import DiscoveryEvent, DiscoveryEventKind

logger = structlog.get_logger(__name__)

ADDRESS_TYPES = (RecordType.A, RecordType.AAAA)


class ReconciliationModel:
    """
    Computes and submits the Actions that converge the server on the
    observed service set.

    Example::

        model = ReconciliationModel(config, dispatcher)
        await model.observe([printer, web_server])
        await model.settle()
        assert set(model.published) == {printer.key, web_server.key}
    """

    def __init__(self, config: BridgeConfig, dispatcher: UpdateDispatcher) -> None:
        self._config = config
        self._dispatcher = dispatcher
        self._published: dict[ServiceKey, ServiceRecord] = {}
        self._published_addresses: dict[RecordType, str] = {}
        # key -> (submission token, intended record or None for a pending delete)
        self._pending: dict[ServiceKey, tuple[object, ServiceRecord | None]] = {}
        self._pending_addresses: dict[RecordType, tuple[object, str | None]] = {}
        self._trackers: set[asyncio.Task[None]] = set()
        self._accepting = True

    @property
    def published(self) -> dict[ServiceKey, ServiceRecord]:
        """Copy of the Published Set."""
        return dict(self._published)

    @property
    def published_addresses(self) -> dict[RecordType, str]:
        return dict(self._published_addresses)

    @property
    def accepting(self) -> bool:
        return self._accepting

    def close(self) -> None:
        """
        Stop accepting discovery-driven changes. Withdrawal still works.

        A discovery-driven change already being submitted stops before its
        next Action.
        """
        self._accepting = False

    def adopt(
        self,
        services: Iterable[ServiceRecord] = (),
        addresses: dict[RecordType, str] | None = None,
    ) -> None:
        """
        Mark records as published without submitting anything.

        Used to withdraw records left by an earlier run: the DELETEs that
        follow resolve idempotently when the records are already gone.
        """
        for service in services:
            self._published[service.key] = service
        self._published_addresses.update(addresses or {})

    async def observe(self, services: Iterable[ServiceRecord]) -> list[Action]:
        """
        Reconcile the Published Set against a complete snapshot.

        New services are added, vanished services deleted, and services whose
        host, port or TXT data changed are deleted and re-added. All DELETEs
        are submitted before any ADD.

        Returns:
            The submitted Actions, in submission order.

        Raises:
            ValidationError: If a service cannot be encoded; nothing from the
                snapshot is submitted in that case.
        """
        if not self._accepting:
            logger.debug("Ignoring snapshot, model is closed")
            return []

        snapshot: dict[ServiceKey, ServiceRecord] = {}
        for service in services:
            snapshot[service.key] = service

        removals: list[ServiceRecord] = []
        additions: list[ServiceRecord] = []
        for key in dict.fromkeys([*self._published, *self._pending, *snapshot]):
            old = self._believed(key)
            new = snapshot.get(key)
            if old == new:
                continue
            if old is not None:
                removals.append(old)
            if new is not None:
                additions.append(new)

        logger.debug(
            "Reconciling snapshot",
            observed=len(snapshot),
            published=len(self._published),
            deletes=len(removals),
            adds=len(additions),
        )

        plan = [self._plan(service, ActionKind.DELETE) for service in removals]
        plan.extend(self._plan(service, ActionKind.ADD) for service in additions)

        submitted: list[Action] = []
        for service, kind, actions in plan:
            submitted.extend(await self._submit_service(service, kind, actions))
        return submitted

    async def observe_single(self, event: DiscoveryEvent) -> list[Action]:
        """
        Apply one discovery event.

        An appeared service is added unless it is already published with the
        same attributes; if its attributes changed it is deleted and
        re-added. A disappeared service is deleted if it is published.
        """
        if not self._accepting:
            logger.debug("Ignoring discovery event, model is closed", kind=event.kind.value)
            return []

        service = event.service
        current = self._believed(service.key)
        plan: list[tuple[ServiceRecord, ActionKind, list[Action]]] = []

        if event.kind == DiscoveryEventKind.APPEARED:
            if current == service:
                return []
            if current is not None:
                plan.append(self._plan(current, ActionKind.DELETE))
            plan.append(self._plan(service, ActionKind.ADD))
        elif current is not None:
            plan.append(self._plan(current, ActionKind.DELETE))
        else:
            logger.debug(
                "Disappeared service was not published", service=service.type_in_zone_with_name
            )

        actions: list[Action] = []
        for record, kind, planned in plan:
            actions.extend(await self._submit_service(record, kind, planned))
        return actions

    async def publish_addresses(self, addresses: Iterable[str]) -> list[Action]:
        """
        Reconcile the host's A/AAAA records against ``addresses``.

        Raises:
            ValidationError: If an address is not an IP literal; nothing is
                submitted in that case.
        """
        wanted: dict[RecordType, str] = {}
        for address in addresses:
            action = address_action(address, ActionKind.ADD, self._config)
            wanted[action.record_type] = action.value

        believed = self._believed_addresses()
        changes: list[Action] = []
        for record_type, old in believed.items():
            if wanted.get(record_type) != old:
                changes.append(address_action(old, ActionKind.DELETE, self._config))
        for record_type, new in wanted.items():
            if believed.get(record_type) != new:
                changes.append(address_action(new, ActionKind.ADD, self._config))

        for action in changes:
            await self._submit_address(action)
        return changes

    async def unpublish_all(self) -> list[Action]:
        """Submit a DELETE for every published service and host address."""
        submitted: list[Action] = []
        for key in dict.fromkeys([*self._published, *self._pending]):
            service = self._believed(key)
            if service is not None:
                _, kind, actions = self._plan(service, ActionKind.DELETE)
                submitted.extend(
                    await self._submit_service(service, kind, actions, discovery=False)
                )
        for address in list(self._believed_addresses().values()):
            action = address_action(address, ActionKind.DELETE, self._config)
            await self._submit_address(action)
            submitted.append(action)
        logger.info("Unpublishing all records", actions=len(submitted))
        return submitted

    def renewal_actions(self, record_class: RecordClass) -> list[Action]:
        """
        Current ADD Actions for everything believed published in a class.

        Services and addresses with a withdrawal in flight are skipped;
        those with an addition in flight are renewed with the new value.
        """
        if record_class == RecordClass.ADDRESSES:
            return [
                address_action(address, ActionKind.ADD, self._config)
                for address in self._believed_addresses().values()
            ]
        actions: list[Action] = []
        for key in dict.fromkeys([*self._published, *self._pending]):
            service = self._believed(key)
            if service is not None:
                actions.extend(service_actions(service, ActionKind.ADD, self._config))
        return actions

    def is_current(self, action: Action) -> bool:
        """Whether ``action`` still renews something believed published."""
        if action.kind != ActionKind.ADD:
            return False
        if action.record_type in ADDRESS_TYPES:
            return self._believed_addresses().get(action.record_type) == action.value
        return action in self.renewal_actions(RecordClass.SERVICES)

    async def settle(self) -> None:
        """Wait until every submitted change has been applied to the Published Set."""
        while self._trackers:
            await asyncio.gather(*list(self._trackers))

    def _believed(self, key: ServiceKey) -> ServiceRecord | None:
        if key in self._pending:
            return self._pending[key][1]
        return self._published.get(key)

    def _believed_addresses(self) -> dict[RecordType, str]:
        believed = dict(self._published_addresses)
        for record_type, (_, value) in self._pending_addresses.items():
            if value is None:
                believed.pop(record_type, None)
            else:
                believed[record_type] = value
        return believed

    def _plan(
        self, service: ServiceRecord, kind: ActionKind
    ) -> tuple[ServiceRecord, ActionKind, list[Action]]:
        return service, kind, service_actions(service, kind, self._config)

    async def _submit_service(
        self,
        service: ServiceRecord,
        kind: ActionKind,
        actions: list[Action],
        *,
        discovery: bool = True,
    ) -> list[Action]:
        if discovery and not self._accepting:
            return []

        token = object()
        self._pending[service.key] = (token, service if kind == ActionKind.ADD else None)
        handles: list[UpdateHandle] = []
        try:
            for action in actions:
                if discovery and not self._accepting:
                    logger.info(
                        "Model closed, not submitting the rest of the change",
                        service=service.type_in_zone_with_name,
                        submitted=len(handles),
                    )
                    break
                handles.append(await self._dispatcher.submit(action))
        finally:
            self._track(
                self._apply_service_outcome(
                    service, kind, handles, token, complete=len(handles) == len(actions)
                )
            )
        return [handle.action for handle in handles]

    async def _submit_address(self, action: Action) -> None:
        record_type = action.record_type
        previous = self._pending_addresses.get(record_type)
        token = object()
        self._pending_addresses[record_type] = (
            token,
            action.value if action.kind == ActionKind.ADD else None,
        )
        try:
            handle = await self._dispatcher.submit(action)
        except BaseException:
            if self._pending_addresses.get(record_type, (None, None))[0] is token:
                if previous is None:
                    del self._pending_addresses[record_type]
                else:
                    self._pending_addresses[record_type] = previous
            raise
        self._track(self._apply_address_outcome(handle, token))

    def _track(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._trackers.add(task)
        task.add_done_callback(self._trackers.discard)

    async def _apply_service_outcome(
        self,
        service: ServiceRecord,
        kind: ActionKind,
        handles: list[UpdateHandle],
        token: object,
        *,
        complete: bool,
    ) -> None:
        outcomes: list[UpdateOutcome] = [await handle for handle in handles]
        failed = [o for o in outcomes if not o.success]
        key = service.key
        if self._pending.get(key, (None, None))[0] is token:
            del self._pending[key]

        if failed:
            logger.error(
                "Service not published" if kind == ActionKind.ADD else "Service not unpublished",
                service=service.type_in_zone_with_name,
                failed=[f"{o.action.describe()} ({o.status.value})" for o in failed],
            )
            return
        if not outcomes:
            return

        if kind == ActionKind.ADD:
            # Partly added services stay in the set so they are withdrawn later
            self._published[key] = service
            if complete:
                logger.info("Added service", service=service.type_in_zone_with_name)
            else:
                logger.warning(
                    "Service partially published", service=service.type_in_zone_with_name
                )
        elif not complete:
            logger.warning("Service partially unpublished", service=service.type_in_zone_with_name)
        else:
            if self._published.get(key) == service:
                del self._published[key]
            logger.info("Deleted service", service=service.type_in_zone_with_name)

    async def _apply_address_outcome(self, handle: UpdateHandle, token: object) -> None:
        outcome = await handle
        action = outcome.action
        if self._pending_addresses.get(action.record_type, (None, None))[0] is token:
            del self._pending_addresses[action.record_type]
        if not outcome.success:
            return
        if action.kind == ActionKind.ADD:
            self._published_addresses[action.record_type] = action.value
        elif self._published_addresses.get(action.record_type) == action.value:
            del self._published_addresses[action.record_type]
