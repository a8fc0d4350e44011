# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
RFC 2136 dynamic-update transport.

Sends update messages to an authoritative server with dnspython, over TCP
(the default) or UDP, optionally signed with a TSIG key (RFC 8945).
"""

from __future__ import annotations

import binascii
from typing import TYPE_CHECKING

import dns.asyncquery
import dns.exception
import dns.message
import dns.name
import dns.query
import dns.tsig
import structlog

from wamupd.backends.base import UpdateTransport
from wamupd.core.models import FatalProtocolError, RetryableTransportError

if TYPE_CHECKING:
    from wamupd.config import BridgeConfig

logger = structlog.get_logger(__name__)


class DDNSTransport(UpdateTransport):
    """
    Dynamic-update transport for BIND, Knot, PowerDNS and any other server
    that accepts RFC 2136 updates.

    Example:
        >>> transport = DDNSTransport(
        ...     server="192.0.2.53",
        ...     tsig_key_name="wamupd-key",
        ...     tsig_secret="c2VjcmV0IGtleQ==",
        ... )
        >>> response = await transport.send(update, timeout=5.0)
    """

    def __init__(
        self,
        server: str = "127.0.0.1",
        port: int = 53,
        *,
        use_tcp: bool = True,
        tsig_key_name: str | None = None,
        tsig_secret: str | None = None,
        tsig_algorithm: str = "hmac-sha256",
    ):
        self._server = server
        self._port = port
        self._use_tcp = use_tcp
        self._key: dns.tsig.Key | None = None

        if tsig_secret:
            if not tsig_key_name:
                raise ValueError("tsig_secret requires tsig_key_name")
            try:
                self._key = dns.tsig.Key(
                    dns.name.from_text(tsig_key_name),
                    tsig_secret,
                    dns.name.from_text(tsig_algorithm),
                )
            except (binascii.Error, dns.exception.DNSException) as e:
                raise ValueError(f"Invalid TSIG key '{tsig_key_name}': {e}") from e

    @classmethod
    def from_config(cls, config: BridgeConfig) -> DDNSTransport:
        return cls(
            server=config.server,
            port=config.port,
            use_tcp=config.use_tcp,
            tsig_key_name=config.tsig_key_name,
            tsig_secret=config.tsig_secret,
            tsig_algorithm=config.tsig_algorithm,
        )

    @property
    def name(self) -> str:
        return "ddns"

    @property
    def server(self) -> str:
        return f"{self._server}:{self._port}"

    @property
    def signed(self) -> bool:
        return self._key is not None

    async def send(self, message: dns.message.Message, timeout: float) -> dns.message.Message:
        if self._key is not None:
            message.use_tsig(self._key)

        try:
            if self._use_tcp:
                response = await dns.asyncquery.tcp(
                    message, self._server, timeout=timeout, port=self._port
                )
            else:
                response = await dns.asyncquery.udp(
                    message, self._server, timeout=timeout, port=self._port
                )
        except dns.exception.Timeout as e:
            raise RetryableTransportError(f"No response from {self.server} within {timeout}s") from e
        except (dns.query.BadResponse, dns.query.UnexpectedSource) as e:
            raise RetryableTransportError(f"Bad response from {self.server}: {e}") from e
        except (OSError, EOFError) as e:
            raise RetryableTransportError(f"Cannot reach {self.server}: {e}") from e
        except dns.tsig.PeerError as e:
            # The server rejected our signature; resending will not help
            raise FatalProtocolError(f"TSIG rejected by {self.server}: {e}") from e
        except dns.exception.DNSException as e:
            raise FatalProtocolError(f"Update to {self.server} failed: {e}") from e

        logger.debug(
            "Update response",
            server=self.server,
            request_id=message.id,
            rcode=response.rcode(),
        )
        return response
