# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Data models for wamupd.

These models describe the services observed on the local link, the record
changes derived from them, and the outcomes reported by the update
dispatcher once the authoritative server has answered.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

# DNS character-string limit (RFC 1035 section 3.3)
MAX_TXT_STRING_LENGTH = 255


class WamupdError(Exception):
    """Base class for wamupd errors."""


class ValidationError(WamupdError, ValueError):
    """Raised when an input record is malformed.

    Validation happens before any Action is built, so a record that fails
    here never reaches the dispatcher.
    """


class RetryableTransportError(WamupdError):
    """Network, timeout or transient server failure. Retried with backoff."""


class FatalProtocolError(WamupdError):
    """Update rejected by the server, or retries exhausted. Never retried."""


class DispatcherClosedError(WamupdError):
    """Raised by ``UpdateDispatcher.submit`` once shutdown has begun."""


class RecordType(StrEnum):
    """Record types managed by the bridge."""

    A = "A"
    AAAA = "AAAA"
    SRV = "SRV"
    PTR = "PTR"
    TXT = "TXT"


class ActionKind(StrEnum):
    """Direction of a record change."""

    ADD = "add"
    DELETE = "delete"


class Action(BaseModel):
    """
    One desired record change.

    An Action fully determines one dynamic-update transaction: the owner name
    (``target``), the record type and the record value in DNS presentation
    form. ``ttl`` is only meaningful for ADD.

    Example:
        >>> Action(
        ...     kind=ActionKind.ADD,
        ...     target="host.example.com.",
        ...     record_type=RecordType.A,
        ...     value="192.0.2.10",
        ...     ttl=3600,
        ... )
    """

    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    target: str = Field(..., min_length=1, description="Fully-qualified owner name")
    record_type: RecordType
    value: str = Field(..., description="Record data in presentation form")
    ttl: int = Field(default=0, ge=0)

    @property
    def key(self) -> tuple[str, RecordType]:
        """Owner name and type; transactions sharing a key are serialized."""
        return (self.target.lower(), self.record_type)

    def inverse(self) -> Action:
        """The opposite change for the same record."""
        kind = ActionKind.DELETE if self.kind == ActionKind.ADD else ActionKind.ADD
        return self.model_copy(update={"kind": kind})

    def describe(self) -> str:
        return f"{self.kind.value} {self.target} {self.record_type.value} {self.value}"


class ServiceKey(NamedTuple):
    """Identity of a service: two records are the same service iff keys match."""

    name: str
    service_type: str
    domain: str


class ServiceRecord(BaseModel):
    """
    A service announced on the local link.

    Maps to PTR + SRV + TXT records in the wide-area zone:
    - PTR: {service_type}.{zone} -> {name}.{service_type}.{zone}
    - SRV: {name}.{service_type}.{zone} -> 0 0 {port} {host}
    - TXT: {name}.{service_type}.{zone} -> txt_data

    Example:
        >>> svc = ServiceRecord(
        ...     name="Office Printer",
        ...     service_type="_ipp._tcp",
        ...     domain="example.com",
        ...     port=631,
        ...     txt_data=[b"txtvers=1", b"rp=printers/office"],
        ... )
        >>> svc.key
        ServiceKey(name='Office Printer', service_type='_ipp._tcp', domain='example.com')
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=63, description="Instance name")
    service_type: str = Field(
        ...,
        pattern=r"^_[A-Za-z0-9-]+\._(tcp|udp)$",
        description="DNS-SD service type (e.g., '_http._tcp')",
    )
    domain: str = Field(..., min_length=1, description="Domain the service is announced in")
    host: str | None = Field(
        default=None, description="Host providing the service; None means the bridge's target"
    )
    port: int = Field(..., ge=0, le=65535)
    txt_data: tuple[bytes, ...] = Field(
        default=(), description="Ordered TXT character-strings, each at most 255 bytes"
    )

    @field_validator("domain")
    @classmethod
    def _normalize_domain(cls, v: str) -> str:
        return v.rstrip(".").lower()

    @field_validator("txt_data", mode="before")
    @classmethod
    def _coerce_txt(cls, v: object) -> object:
        if isinstance(v, (list, tuple)):
            return tuple(s.encode("utf-8") if isinstance(s, str) else bytes(s) for s in v)
        return v

    @field_validator("txt_data")
    @classmethod
    def _check_txt_lengths(cls, v: tuple[bytes, ...]) -> tuple[bytes, ...]:
        for s in v:
            if len(s) > MAX_TXT_STRING_LENGTH:
                raise ValueError(
                    f"TXT string exceeds {MAX_TXT_STRING_LENGTH} bytes ({len(s)} bytes)"
                )
        return v

    @property
    def key(self) -> ServiceKey:
        return ServiceKey(self.name, self.service_type, self.domain)

    @property
    def type_in_zone_with_name(self) -> str:
        """Human-readable instance label, e.g. ``Office Printer._ipp._tcp.example.com``."""
        return f"{self.name}.{self.service_type}.{self.domain}"


class OutcomeStatus(StrEnum):
    """How an update request was resolved."""

    APPLIED = "applied"
    CONFLICT_RESOLVED = "conflict_resolved"  # prerequisite said the target state already holds
    FATAL = "fatal"
    UNRESOLVED = "unresolved"  # abandoned at shutdown


class UpdateOutcome(BaseModel):
    """Final result of one submitted Action."""

    model_config = ConfigDict(frozen=True)

    request_id: int
    action: Action
    status: OutcomeStatus
    attempts: int = 0
    rcode: str | None = None
    error_type: str | None = None
    error_message: str | None = None
    resolved_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def success(self) -> bool:
        return self.status in (OutcomeStatus.APPLIED, OutcomeStatus.CONFLICT_RESOLVED)
