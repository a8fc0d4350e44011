# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""Detection of this host's outbound addresses."""

from __future__ import annotations

import ipaddress
import socket

import structlog

logger = structlog.get_logger(__name__)

# Documentation prefixes: connecting a UDP socket sends no packets, it only
# selects the route and therefore the source address.
_ROUTE_V4 = ("192.0.2.1", 9)
_ROUTE_V6 = ("2001:db8::1", 9)


def _source_address(family: socket.AddressFamily, destination: tuple[str, int]) -> str | None:
    try:
        with socket.socket(family, socket.SOCK_DGRAM) as s:
            s.connect(destination)
            address = s.getsockname()[0]
    except OSError as e:
        logger.debug("No route for address family", family=family.name, error=str(e))
        return None

    ip = ipaddress.ip_address(address.split("%", 1)[0])
    if ip.is_loopback or ip.is_link_local or ip.is_unspecified:
        return None
    return str(ip)


def detect_ipv4() -> str | None:
    """Primary IPv4 address, or None when there is no IPv4 route."""
    return _source_address(socket.AF_INET, _ROUTE_V4)


def detect_ipv6() -> str | None:
    """Primary global IPv6 address, or None when there is none."""
    return _source_address(socket.AF_INET6, _ROUTE_V6)
