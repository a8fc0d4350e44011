# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Mock transport for testing.

Plays the authoritative server: holds one zone in memory and applies update
messages to it with RFC 2136 prerequisite semantics. Faults (rcodes,
exceptions, mismatched response ids) and per-name latency can be injected
to exercise the dispatcher's retry and ordering behavior.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from enum import StrEnum

import dns.message
import dns.name
import dns.opcode
import dns.rcode
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.update
import structlog

from wamupd.backends.base import UpdateTransport
from wamupd.core.models import FatalProtocolError, RecordType

logger = structlog.get_logger(__name__)

RRKey = tuple[dns.name.Name, int]


class Fault(StrEnum):
    """Scripted misbehavior other than an rcode or an exception."""

    # Answer with a response whose id does not match the request
    WRONG_ID = "wrong-id"


ScriptItem = int | BaseException | Fault


class MockTransport(UpdateTransport):
    """
    In-memory authoritative server for one zone.

    Example:
        >>> transport = MockTransport("example.com")
        >>> transport.fail("printer._ipp._tcp.example.com.", dns.rcode.SERVFAIL)
        >>> ...
        >>> transport.has_record("printer._ipp._tcp.example.com.", "SRV")
        True
    """

    def __init__(self, zone: str = "example.com", *, latency: float = 0.0):
        self._zone = dns.name.from_text(zone)
        self._latency = latency
        self._name_latency: dict[dns.name.Name, float] = {}
        self._script: deque[ScriptItem] = deque()
        self._name_script: dict[dns.name.Name, deque[ScriptItem]] = defaultdict(deque)
        self.records: dict[RRKey, set[dns.rdata.Rdata]] = {}
        self.sent: list[dns.update.UpdateMessage] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    @property
    def name(self) -> str:
        return "mock"

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def enqueue(self, *items: ScriptItem) -> None:
        """Answer the next requests (whatever their target) with these items, in order."""
        self._script.extend(items)

    def fail(self, target: str, *items: ScriptItem) -> None:
        """Answer the next requests for ``target`` with these items, in order."""
        self._name_script[dns.name.from_text(target)].extend(items)

    def set_latency(self, target: str, seconds: float) -> None:
        """Delay responses to updates of ``target``."""
        self._name_latency[dns.name.from_text(target)] = seconds

    # ------------------------------------------------------------------
    # Zone inspection
    # ------------------------------------------------------------------

    def has_record(self, target: str, record_type: str | RecordType, value: str | None = None) -> bool:
        rdtype = dns.rdatatype.from_text(str(record_type))
        rdatas = self.records.get((dns.name.from_text(target), rdtype), set())
        if value is None:
            return bool(rdatas)
        return dns.rdata.from_text(dns.rdataclass.IN, rdtype, value, origin=self._zone) in rdatas

    def values(self, target: str, record_type: str | RecordType) -> list[str]:
        rdtype = dns.rdatatype.from_text(str(record_type))
        rdatas = self.records.get((dns.name.from_text(target), rdtype), set())
        return sorted(rd.to_text() for rd in rdatas)

    def seed(self, target: str, record_type: str | RecordType, value: str) -> None:
        """Put a record into the zone directly, as if left by an earlier run."""
        rdtype = dns.rdatatype.from_text(str(record_type))
        rd = dns.rdata.from_text(dns.rdataclass.IN, rdtype, value, origin=self._zone)
        self.records.setdefault((dns.name.from_text(target), rdtype), set()).add(rd)

    @property
    def record_count(self) -> int:
        return sum(len(rdatas) for rdatas in self.records.values())

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def send(self, message: dns.message.Message, timeout: float) -> dns.message.Message:
        # Round-trip through wire format like a real server would see it
        update = dns.message.from_wire(message.to_wire())
        if not isinstance(update, dns.update.UpdateMessage):
            opcode = dns.opcode.to_text(update.opcode())
            raise FatalProtocolError(f"Not an update message: opcode {opcode}")
        self.sent.append(update)

        owner = self._owner(update)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self._name_latency.get(owner, self._latency) if owner else self._latency
            if delay:
                await asyncio.sleep(delay)

            item = self._next_item(owner)
            if isinstance(item, BaseException):
                raise item
            if item is Fault.WRONG_ID:
                response = dns.message.make_response(update)
                response.id = (update.id + 1) % 0x10000
                return response
            if isinstance(item, int):
                return self._respond(update, item)

            return self._respond(update, self._apply(update))
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True

    def _owner(self, update: dns.update.UpdateMessage) -> dns.name.Name | None:
        for rrset in update.update:
            return rrset.name
        return None

    def _next_item(self, owner: dns.name.Name | None) -> ScriptItem | None:
        if owner is not None and self._name_script.get(owner):
            return self._name_script[owner].popleft()
        if self._script:
            return self._script.popleft()
        return None

    def _respond(self, update: dns.update.UpdateMessage, rcode: int) -> dns.message.Message:
        response = dns.message.make_response(update)
        response.set_rcode(rcode)
        return response

    def _apply(self, update: dns.update.UpdateMessage) -> int:
        """Check prerequisites and apply the update section. Returns the rcode."""
        zone = update.zone[0].name if update.zone else None
        if zone != self._zone:
            return dns.rcode.NOTAUTH

        for rrset in update.prerequisite:
            if not rrset.name.is_subdomain(self._zone):
                return dns.rcode.NOTZONE
            current = self.records.get((rrset.name, rrset.rdtype), set())
            rdclass = _effective_class(rrset)
            if rdclass == dns.rdataclass.NONE and current:
                return dns.rcode.YXRRSET
            if rdclass == dns.rdataclass.ANY and not current:
                return dns.rcode.NXRRSET
            if rdclass == dns.rdataclass.IN and set(rrset) != current:
                return dns.rcode.NXRRSET

        for rrset in update.update:
            if not rrset.name.is_subdomain(self._zone):
                return dns.rcode.NOTZONE

        for rrset in update.update:
            key = (rrset.name, rrset.rdtype)
            rdclass = _effective_class(rrset)
            if rdclass == dns.rdataclass.ANY:
                self.records.pop(key, None)
            elif rdclass == dns.rdataclass.NONE:
                remaining = self.records.get(key, set()) - set(rrset)
                if remaining:
                    self.records[key] = remaining
                else:
                    self.records.pop(key, None)
            else:
                self.records.setdefault(key, set()).update(rrset)

        logger.debug("Mock zone updated", request_id=update.id, records=self.record_count)
        return dns.rcode.NOERROR


def _effective_class(rrset) -> int:
    # Parsed updates carry the NONE/ANY class in ``deleting``
    return rrset.deleting if rrset.deleting is not None else rrset.rdclass
