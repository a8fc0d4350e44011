# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Discovery sources feeding the bridge.

The zeroconf source lives in ``wamupd.discovery.zeroconf`` and is imported
only when mDNS browsing is configured.
"""

from wamupd.discovery.base import DiscoveryEvent, DiscoveryEventKind, DiscoverySource
from wamupd.discovery.static import StaticDiscoverySource

__all__ = ["DiscoveryEvent", "DiscoveryEventKind", "DiscoverySource", "StaticDiscoverySource"]
