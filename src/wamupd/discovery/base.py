# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Discovery source abstraction.

A discovery source reports services appearing and disappearing on the local
link. The bridge consumes each source in its own task and feeds the events
to the reconciliation model.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from wamupd.core.models import ServiceRecord


class DiscoveryEventKind(StrEnum):
    APPEARED = "appeared"
    DISAPPEARED = "disappeared"


class DiscoveryEvent(BaseModel):
    """A service appeared on or disappeared from the local link."""

    model_config = ConfigDict(frozen=True)

    kind: DiscoveryEventKind
    service: ServiceRecord

    @classmethod
    def appeared(cls, service: ServiceRecord) -> DiscoveryEvent:
        return cls(kind=DiscoveryEventKind.APPEARED, service=service)

    @classmethod
    def disappeared(cls, service: ServiceRecord) -> DiscoveryEvent:
        return cls(kind=DiscoveryEventKind.DISAPPEARED, service=service)


class DiscoverySource(ABC):
    """
    Abstract base class for discovery sources.

    Implementations:
    - StaticDiscoverySource: services listed in the configuration
    - ZeroconfDiscoverySource: live mDNS browsing
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name for logging."""
        ...

    @abstractmethod
    def events(self) -> AsyncIterator[DiscoveryEvent]:
        """
        Yield discovery events until the source is closed.

        The iterator ends after ``close()`` has been called.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Stop producing events."""
        ...
