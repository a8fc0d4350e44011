# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
wamupd: Wide-Area mDNS Update

Bridges services discovered on the local link (mDNS/DNS-SD) into a
wide-area DNS zone using RFC 2136 dynamic updates, so clients outside the
link can browse them with plain unicast DNS.

Example:
    >>> from wamupd import Bridge, BridgeConfig
    >>> from wamupd.backends.ddns import DDNSTransport
    >>>
    >>> config = BridgeConfig.from_yaml("/etc/wamupd.yaml")
    >>> async with Bridge(config, DDNSTransport.from_config(config)) as bridge:
    ...     result = await bridge.publish_once()
    ...     print(result.services)
"""

from __future__ import annotations

from wamupd.config import BridgeConfig
from wamupd.core.daemon import Bridge, SyncResult
from wamupd.core.dispatcher import UpdateDispatcher, UpdateHandle
from wamupd.core.events import EventCollector, EventKind, LifecycleEvent
from wamupd.core.models import (
    Action,
    ActionKind,
    DispatcherClosedError,
    FatalProtocolError,
    OutcomeStatus,
    RecordType,
    RetryableTransportError,
    ServiceRecord,
    UpdateOutcome,
    ValidationError,
    WamupdError,
)
from wamupd.core.reconciler import ReconciliationModel

__version__ = "0.3.0"
__all__ = [
    # Daemon
    "Bridge",
    "BridgeConfig",
    "SyncResult",
    # Components
    "UpdateDispatcher",
    "UpdateHandle",
    "ReconciliationModel",
    "EventCollector",
    # Models
    "Action",
    "ActionKind",
    "RecordType",
    "ServiceRecord",
    "UpdateOutcome",
    "OutcomeStatus",
    "LifecycleEvent",
    "EventKind",
    # Exceptions
    "WamupdError",
    "ValidationError",
    "RetryableTransportError",
    "FatalProtocolError",
    "DispatcherClosedError",
    # Version
    "__version__",
]
