# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Abstract base class for update transports.

A transport carries one dynamic-update message to the authoritative server
and returns the server's response. Building the message and interpreting the
response is the dispatcher's job; transports only move bytes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import dns.message


class UpdateTransport(ABC):
    """
    Abstract base class for dynamic-update transports.

    Implementations:
    - DDNSTransport: RFC 2136 over UDP/TCP via dnspython
    - MockTransport: in-memory authoritative zone for testing
    """

    # When False the dispatcher sends one message at a time through this transport
    concurrent_safe: bool = True

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport name for logging."""
        ...

    @abstractmethod
    async def send(self, message: dns.message.Message, timeout: float) -> dns.message.Message:
        """
        Send an update message and wait for the response.

        Args:
            message: The update message, ready to be sent.
            timeout: Seconds to wait for the response.

        Returns:
            The parsed response message.

        Raises:
            RetryableTransportError: On timeouts and network failures.
            FatalProtocolError: When the message cannot be sent at all
                (e.g., it cannot be signed or rendered).
        """
        ...

    async def close(self) -> None:  # noqa: B027
        """Release any resources held by the transport."""
