# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""Update transports: the ways a dynamic update reaches the server."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from wamupd.backends.base import UpdateTransport

if TYPE_CHECKING:
    from wamupd.config import BridgeConfig

TRANSPORTS = ("ddns", "mock")

__all__ = ["TRANSPORTS", "UpdateTransport", "get_transport"]


def get_transport(name: str | None, config: BridgeConfig) -> UpdateTransport:
    """Build a transport by name.

    Falls back to the WAMUPD_BACKEND env var, then to ``ddns``.

    Raises:
        ValueError: If the name is not a known transport.
    """
    name = (name or os.environ.get("WAMUPD_BACKEND", "ddns")).lower()

    if name == "ddns":
        from wamupd.backends.ddns import DDNSTransport

        return DDNSTransport.from_config(config)
    elif name == "mock":
        from wamupd.backends.mock import MockTransport

        return MockTransport(config.zone_fqdn)
    raise ValueError(
        f"Unknown backend: '{name}'. Supported values: {', '.join(TRANSPORTS)}"
    )
