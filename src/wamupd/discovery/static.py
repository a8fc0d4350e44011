# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""Services declared in the configuration, presented as a discovery source."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable

from wamupd.core.models import ServiceRecord
from wamupd.discovery.base import DiscoveryEvent, DiscoverySource


class StaticDiscoverySource(DiscoverySource):
    """Announces each configured service once, then idles until closed."""

    def __init__(self, services: Iterable[ServiceRecord]) -> None:
        self._services = tuple(services)
        self._closed = asyncio.Event()

    @property
    def name(self) -> str:
        return "static"

    @property
    def services(self) -> tuple[ServiceRecord, ...]:
        return self._services

    async def events(self) -> AsyncIterator[DiscoveryEvent]:
        for service in self._services:
            if self._closed.is_set():
                return
            yield DiscoveryEvent.appeared(service)
        await self._closed.wait()

    async def close(self) -> None:
        self._closed.set()
