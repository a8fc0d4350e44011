# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""Tests for the in-memory update server."""

from __future__ import annotations

import dns.message
import dns.rcode
import dns.update
import pytest

from wamupd.backends.mock import Fault, MockTransport
from wamupd.core.dispatcher import build_update
from wamupd.core.models import Action, ActionKind, FatalProtocolError, RecordType

ZONE = "example.com."


def _action(kind=ActionKind.ADD, record_type=RecordType.A, value="192.0.2.10"):
    return Action(
        kind=kind, target="gateway.example.com.", record_type=record_type, value=value, ttl=60
    )


class TestApply:
    """Tests for prerequisite checks and zone changes."""

    @pytest.mark.asyncio
    async def test_add_then_delete(self, mock_transport):
        response = await mock_transport.send(build_update(_action(), ZONE, 1), timeout=1.0)
        assert response.rcode() == dns.rcode.NOERROR
        assert mock_transport.values("gateway.example.com.", "A") == ["192.0.2.10"]

        delete = build_update(_action(ActionKind.DELETE), ZONE, 2)
        response = await mock_transport.send(delete, timeout=1.0)
        assert response.rcode() == dns.rcode.NOERROR
        assert mock_transport.record_count == 0

    @pytest.mark.asyncio
    async def test_add_existing_rrset(self, mock_transport):
        mock_transport.seed("gateway.example.com.", "A", "192.0.2.99")
        response = await mock_transport.send(build_update(_action(), ZONE, 1), timeout=1.0)
        assert response.rcode() == dns.rcode.YXRRSET
        assert mock_transport.values("gateway.example.com.", "A") == ["192.0.2.99"]

    @pytest.mark.asyncio
    async def test_delete_missing_rrset(self, mock_transport):
        delete = build_update(_action(ActionKind.DELETE), ZONE, 1)
        response = await mock_transport.send(delete, timeout=1.0)
        assert response.rcode() == dns.rcode.NXRRSET

    @pytest.mark.asyncio
    async def test_shared_ptr_owner(self, mock_transport):
        for request_id, instance in enumerate(["a._http._tcp.example.com.", "b._http._tcp.example.com."]):
            action = Action(
                kind=ActionKind.ADD,
                target="_http._tcp.example.com.",
                record_type=RecordType.PTR,
                value=instance,
                ttl=60,
            )
            response = await mock_transport.send(build_update(action, ZONE, request_id), timeout=1.0)
            assert response.rcode() == dns.rcode.NOERROR

        assert mock_transport.values("_http._tcp.example.com.", "PTR") == [
            "a._http._tcp.example.com.",
            "b._http._tcp.example.com.",
        ]

    @pytest.mark.asyncio
    async def test_wrong_zone(self):
        transport = MockTransport("example.org.")
        response = await transport.send(build_update(_action(), ZONE, 1), timeout=1.0)
        assert response.rcode() == dns.rcode.NOTAUTH

    @pytest.mark.asyncio
    async def test_name_outside_zone(self, mock_transport):
        update = dns.update.UpdateMessage(ZONE, id=1)
        update.add("host.example.org.", 60, "A", "192.0.2.1")
        response = await mock_transport.send(update, timeout=1.0)
        assert response.rcode() == dns.rcode.NOTZONE
        assert mock_transport.record_count == 0

    @pytest.mark.asyncio
    async def test_response_echoes_id(self, mock_transport):
        response = await mock_transport.send(build_update(_action(), ZONE, 4242), timeout=1.0)
        assert response.id == 4242
        assert mock_transport.sent[0].id == 4242


class TestFaults:
    """Tests for scripted responses."""

    @pytest.mark.asyncio
    async def test_enqueued_rcode(self, mock_transport):
        mock_transport.enqueue(dns.rcode.SERVFAIL)
        first = await mock_transport.send(build_update(_action(), ZONE, 1), timeout=1.0)
        second = await mock_transport.send(build_update(_action(), ZONE, 2), timeout=1.0)
        assert first.rcode() == dns.rcode.SERVFAIL
        assert second.rcode() == dns.rcode.NOERROR

    @pytest.mark.asyncio
    async def test_enqueued_exception(self, mock_transport):
        mock_transport.enqueue(ConnectionResetError("reset"))
        with pytest.raises(ConnectionResetError):
            await mock_transport.send(build_update(_action(), ZONE, 1), timeout=1.0)
        assert mock_transport.record_count == 0

    @pytest.mark.asyncio
    async def test_wrong_id(self, mock_transport):
        mock_transport.enqueue(Fault.WRONG_ID)
        response = await mock_transport.send(build_update(_action(), ZONE, 7), timeout=1.0)
        assert response.id == 8

    @pytest.mark.asyncio
    async def test_per_target_fault(self, mock_transport):
        mock_transport.fail("other.example.com.", dns.rcode.REFUSED)
        response = await mock_transport.send(build_update(_action(), ZONE, 1), timeout=1.0)
        assert response.rcode() == dns.rcode.NOERROR

    @pytest.mark.asyncio
    async def test_close(self, mock_transport):
        await mock_transport.close()
        assert mock_transport.closed

    @pytest.mark.asyncio
    async def test_rejects_non_update_message(self, mock_transport):
        query = dns.message.make_query("gateway.example.com.", "A")
        with pytest.raises(FatalProtocolError, match="Not an update message"):
            await mock_transport.send(query, timeout=1.0)
        assert mock_transport.sent == []
