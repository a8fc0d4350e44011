# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Live mDNS discovery via python-zeroconf.

Browses the configured service types on the local link. Added and updated
instances are resolved and reported as APPEARED, removed instances as
DISAPPEARED. Services are re-homed into the bridge's zone: an instance
``Printer._ipp._tcp.local.`` becomes ``Printer._ipp._tcp.<zone>``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
from collections.abc import AsyncIterator, Iterable

import pydantic
import structlog
from zeroconf import ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from wamupd.core.codec import split_txt_wire
from wamupd.core.models import ServiceRecord, ValidationError
from wamupd.discovery.base import DiscoveryEvent, DiscoverySource

logger = structlog.get_logger(__name__)

MDNS_DOMAIN = "local."


def to_mdns_type(service_type: str) -> str:
    """``_http._tcp`` -> ``_http._tcp.local.``"""
    service_type = service_type.rstrip(".")
    if service_type.endswith(".local"):
        return f"{service_type}."
    return f"{service_type}.{MDNS_DOMAIN}"


class ZeroconfDiscoverySource(DiscoverySource):
    """
    Discovery source backed by a zeroconf service browser.

    Example::

        source = ZeroconfDiscoverySource(["_ipp._tcp", "_http._tcp"], domain="example.com")
        async for event in source.events():
            ...
    """

    def __init__(
        self,
        service_types: Iterable[str],
        domain: str,
        *,
        zeroconf: AsyncZeroconf | None = None,
        resolve_timeout_ms: int = 3000,
    ) -> None:
        self._types = [to_mdns_type(t) for t in service_types]
        self._domain = domain
        self._aiozc = zeroconf
        self._owns_zeroconf = zeroconf is None
        self._resolve_timeout_ms = resolve_timeout_ms
        self._browser: AsyncServiceBrowser | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[DiscoveryEvent | None] = asyncio.Queue()
        self._known: dict[str, ServiceRecord] = {}

    @property
    def name(self) -> str:
        return "zeroconf"

    async def events(self) -> AsyncIterator[DiscoveryEvent]:
        await self._start()
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.async_cancel()
            self._browser = None
        if self._aiozc is not None and self._owns_zeroconf:
            await self._aiozc.async_close()
            self._aiozc = None
        self._queue.put_nowait(None)

    async def _start(self) -> None:
        if self._browser is not None:
            return
        self._loop = asyncio.get_running_loop()
        if self._aiozc is None:
            self._aiozc = AsyncZeroconf()
        self._browser = AsyncServiceBrowser(
            self._aiozc.zeroconf, self._types, handlers=[self._on_service_state_change]
        )
        logger.info("Browsing mDNS services", service_types=self._types)

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        # zeroconf may call handlers from its own thread
        if self._loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(
            self._handle_state_change(zeroconf, service_type, name, state_change), self._loop
        )
        future.add_done_callback(_log_handler_failure)

    async def _handle_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        if state_change is ServiceStateChange.Removed:
            record = self._known.pop(name, None)
            if record is not None:
                await self._queue.put(DiscoveryEvent.disappeared(record))
            return

        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, self._resolve_timeout_ms):
            logger.warning("Could not resolve mDNS service", name=name)
            return

        try:
            record = self.to_record(service_type, name, info)
        except (pydantic.ValidationError, ValidationError) as e:
            logger.warning("Skipping unpublishable mDNS service", name=name, error=str(e))
            return

        self._known[name] = record
        await self._queue.put(DiscoveryEvent.appeared(record))

    def to_record(self, service_type: str, name: str, info: AsyncServiceInfo) -> ServiceRecord:
        """Translate a resolved mDNS instance into a ServiceRecord in the bridge's zone."""
        instance = name[: -len(service_type) - 1] if name.endswith(service_type) else name
        return ServiceRecord(
            name=instance,
            service_type=service_type.removesuffix(f".{MDNS_DOMAIN}"),
            domain=self._domain,
            host=info.server,
            port=info.port or 0,
            txt_data=split_txt_wire(info.text),
        )


def _log_handler_failure(future: concurrent.futures.Future[None]) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error("mDNS event handling failed", error=str(error), error_type=type(error).__name__)
