# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
The bridge daemon.

``Bridge`` wires the dispatcher, reconciliation model, lease maintainers and
shutdown coordinator around one transport and a set of discovery sources.
It runs either as a long-lived daemon (``run``) or as a one-shot publisher
(``publish_once`` / ``unpublish_once``).
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Iterable
from types import TracebackType

import structlog
from pydantic import BaseModel, Field

from wamupd.backends.base import UpdateTransport
from wamupd.config import BridgeConfig
from wamupd.core.actions import RecordClass
from wamupd.core.codec import validate_address
from wamupd.core.dispatcher import OutstandingEntry, UpdateDispatcher
from wamupd.core.events import EventCollector, EventKind, LifecycleEvent
from wamupd.core.lease import LeaseMaintainer
from wamupd.core.models import (
    DispatcherClosedError,
    RecordType,
    ServiceRecord,
    ValidationError,
)
from wamupd.core.reconciler import ReconciliationModel
from wamupd.core.shutdown import ShutdownCoordinator
from wamupd.discovery.base import DiscoverySource
from wamupd.discovery.static import StaticDiscoverySource
from wamupd.utils import netinfo

logger = structlog.get_logger(__name__)


class SyncResult(BaseModel):
    """Result of a one-shot publish or unpublish."""

    submitted: int = Field(default=0, description="Record updates submitted")
    services: list[str] = Field(
        default_factory=list, description="Services published (or still published)"
    )
    addresses: list[str] = Field(default_factory=list, description="Host addresses published")
    failed: list[str] = Field(default_factory=list, description="Record updates that failed")
    abandoned: list[str] = Field(
        default_factory=list, description="Record updates left unresolved at shutdown"
    )

    @property
    def success(self) -> bool:
        return not self.failed and not self.abandoned


class Bridge:
    """
    mDNS to wide-area DNS bridge.

    Example::

        config = BridgeConfig.from_yaml("/etc/wamupd.yaml")
        async with Bridge(config, DDNSTransport.from_config(config)) as bridge:
            await bridge.run()
    """

    def __init__(
        self,
        config: BridgeConfig,
        transport: UpdateTransport,
        *,
        sources: Iterable[DiscoverySource] | None = None,
        events: EventCollector | None = None,
        publish_addresses: bool = True,
    ) -> None:
        self.config = config
        self.transport = transport
        self.events = events or EventCollector()
        self.sources = list(sources) if sources is not None else default_sources(config)
        self._publish_addresses = publish_addresses

        self.dispatcher = UpdateDispatcher(config, transport, events=self.events)
        self.model = ReconciliationModel(config, self.dispatcher)
        self.maintainers = [
            LeaseMaintainer(self.model, self.dispatcher, record_class, config.effective_lease_interval)
            for record_class in (RecordClass.ADDRESSES, RecordClass.SERVICES)
        ]
        self.coordinator = ShutdownCoordinator(
            config,
            self.dispatcher,
            self.model,
            maintainers=self.maintainers,
            sources=self.sources,
            events=self.events,
        )
        self._closed = False

    async def __aenter__(self) -> Bridge:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def host_addresses(self) -> list[str]:
        if not self._publish_addresses:
            return []
        return host_addresses(self.config)

    async def run(self, *, install_signals: bool = True) -> list[OutstandingEntry]:
        """
        Run until the termination signal, then drain.

        Returns:
            The update requests abandoned by the drain.
        """
        self.dispatcher.start()
        if install_signals:
            self.coordinator.install_signal_handlers()

        logger.info(
            "Bridge starting",
            zone=self.config.zone_fqdn,
            target=self.config.target_fqdn,
            server=f"{self.config.server}:{self.config.port}",
            transport=self.transport.name,
            sources=[s.name for s in self.sources],
        )

        consumers: list[asyncio.Task[None]] = []
        try:
            addresses = self.host_addresses()
            if addresses:
                await self.model.publish_addresses(addresses)
            consumers = [
                asyncio.create_task(self._consume(source), name=f"wamupd-source-{source.name}")
                for source in self.sources
            ]
            for maintainer in self.maintainers:
                maintainer.start()
            await self.coordinator.wait_for_signal()
        finally:
            abandoned = await self.coordinator.drain()
            for task in consumers:
                task.cancel()
            await asyncio.gather(*consumers, return_exceptions=True)
            await self.close()
        return abandoned

    async def publish_once(self, services: Iterable[ServiceRecord] | None = None) -> SyncResult:
        """Publish host addresses and services, and wait for the outcomes."""
        services = list(self.config.services if services is None else services)

        async with self._collecting() as collected:
            submitted = 0
            addresses = self.host_addresses()
            if addresses:
                submitted += len(await self.model.publish_addresses(addresses))
            submitted += len(await self.model.observe(services))
            await self.model.settle()
        return self._result(submitted, collected)

    async def unpublish_once(self, services: Iterable[ServiceRecord] | None = None) -> SyncResult:
        """
        Withdraw host addresses and services, whether or not this process
        published them. Records already gone resolve as conflicts.
        """
        services = list(self.config.services if services is None else services)

        published: dict[RecordType, str] = {}
        for address in self.host_addresses():
            record_type, canonical = validate_address(address)
            published[record_type] = canonical
        self.model.adopt(services, published)

        async with self._collecting() as collected:
            submitted = len(await self.model.unpublish_all())
            await self.model.settle()
        return self._result(submitted, collected)

    async def close(self) -> None:
        """Stop the dispatcher and release the transport."""
        if self._closed:
            return
        self._closed = True
        abandoned = await self.dispatcher.shutdown(self.config.max_drain_seconds)
        if abandoned:
            logger.warning("Closed with unresolved updates", count=len(abandoned))
        await self.transport.close()

    async def _consume(self, source: DiscoverySource) -> None:
        try:
            async for event in source.events():
                try:
                    await self.model.observe_single(event)
                except ValidationError as e:
                    logger.warning(
                        "Skipping service",
                        service=event.service.type_in_zone_with_name,
                        error=str(e),
                    )
                except DispatcherClosedError:
                    break
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Discovery source failed", source=source.name)

    @contextlib.asynccontextmanager
    async def _collecting(self) -> AsyncIterator[list[LifecycleEvent]]:
        collected: list[LifecycleEvent] = []
        callback = collected.append
        self.events.subscribe(callback)
        try:
            yield collected
        finally:
            self.events.unsubscribe(callback)

    def _result(self, submitted: int, events: list[LifecycleEvent]) -> SyncResult:
        def described(kind: EventKind) -> list[str]:
            return [
                f"{e.target} {e.record_type.value if e.record_type else '?'}: {e.detail}"
                for e in events
                if e.kind == kind
            ]

        return SyncResult(
            submitted=submitted,
            services=[s.type_in_zone_with_name for s in self.model.published.values()],
            addresses=list(self.model.published_addresses.values()),
            failed=described(EventKind.UPDATE_FAILED),
            abandoned=described(EventKind.REQUEST_ABANDONED),
        )


def default_sources(config: BridgeConfig) -> list[DiscoverySource]:
    """Discovery sources implied by the configuration."""
    sources: list[DiscoverySource] = []
    if config.services:
        sources.append(StaticDiscoverySource(config.services))
    if config.browse_types:
        from wamupd.discovery.zeroconf import ZeroconfDiscoverySource

        sources.append(ZeroconfDiscoverySource(config.browse_types, config.zone))
    return sources


def host_addresses(config: BridgeConfig) -> list[str]:
    """Addresses to publish for the target host, detected where not configured."""
    addresses: list[str] = []
    if config.publish_ipv4:
        if ipv4 := config.ipv4 or netinfo.detect_ipv4():
            addresses.append(ipv4)
        else:
            logger.warning("No IPv4 address to publish", target=config.target_fqdn)
    if config.publish_ipv6:
        if ipv6 := config.ipv6 or netinfo.detect_ipv6():
            addresses.append(ipv6)
        else:
            logger.warning("No IPv6 address to publish", target=config.target_fqdn)
    return addresses
