# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""Tests for the bridge daemon."""

import asyncio
from unittest.mock import patch

import dns.rcode
import pytest

from wamupd.backends.mock import MockTransport
from wamupd.core.codec import instance_name
from wamupd.core.daemon import Bridge, SyncResult, default_sources, host_addresses
from wamupd.core.events import EventCollector, EventKind
from wamupd.core.models import ServiceRecord
from wamupd.discovery.base import DiscoveryEvent, DiscoverySource
from wamupd.discovery.static import StaticDiscoverySource

PRINTER = {
    "name": "Office Printer",
    "service_type": "_ipp._tcp",
    "port": 631,
    "txt_data": ["txtvers=1"],
}
PRINTER_OWNER = instance_name("Office Printer", "_ipp._tcp", "example.com.")


class ListSource(DiscoverySource):
    """Yields a fixed list of events, then idles until closed."""

    def __init__(self, events):
        self._events = list(events)
        self._closed = asyncio.Event()

    @property
    def name(self) -> str:
        return "list"

    async def events(self):
        for event in self._events:
            yield event
        await self._closed.wait()

    async def close(self) -> None:
        self._closed.set()


async def _wait_for(condition, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not condition():
            await asyncio.sleep(0.01)


class TestHostAddresses:
    """Tests for host address selection."""

    def test_configured_addresses(self, config):
        assert host_addresses(config) == ["192.0.2.10", "2001:db8::10"]

    def test_detected_addresses(self, config_factory):
        config = config_factory(ipv4=None, ipv6=None)
        with (
            patch("wamupd.utils.netinfo.detect_ipv4", return_value="198.51.100.7"),
            patch("wamupd.utils.netinfo.detect_ipv6", return_value=None),
        ):
            assert host_addresses(config) == ["198.51.100.7"]

    def test_disabled_families(self, config_factory):
        config = config_factory(publish_ipv4=False, publish_ipv6=False)
        assert host_addresses(config) == []

    def test_bridge_without_addresses(self, config, mock_transport):
        bridge = Bridge(config, mock_transport, sources=[], publish_addresses=False)
        assert bridge.host_addresses() == []


class TestDefaultSources:
    """Tests for sources implied by the configuration."""

    def test_static_services(self, config_factory):
        sources = default_sources(config_factory(services=[PRINTER]))
        assert len(sources) == 1
        assert isinstance(sources[0], StaticDiscoverySource)

    def test_browse_types(self, config_factory):
        sources = default_sources(config_factory(browse_types=["_ipp._tcp"]))
        assert [s.name for s in sources] == ["zeroconf"]

    def test_nothing_configured(self, config):
        assert default_sources(config) == []


class TestPublishOnce:
    """Tests for one-shot publishing."""

    @pytest.mark.asyncio
    async def test_publish_once(self, config_factory, mock_transport):
        config = config_factory(services=[PRINTER])

        async with Bridge(config, mock_transport) as bridge:
            result = await bridge.publish_once()

        assert isinstance(result, SyncResult)
        assert result.success
        assert result.submitted == 5
        assert result.services == ["Office Printer._ipp._tcp.example.com"]
        assert sorted(result.addresses) == ["192.0.2.10", "2001:db8::10"]
        assert mock_transport.has_record("gateway.example.com.", "A", "192.0.2.10")
        assert mock_transport.has_record(PRINTER_OWNER, "SRV", "0 0 631 gateway.example.com.")
        assert mock_transport.closed

    @pytest.mark.asyncio
    async def test_publish_once_twice(self, config_factory, mock_transport):
        config = config_factory(services=[PRINTER])

        async with Bridge(config, mock_transport) as bridge:
            await bridge.publish_once()
            again = await bridge.publish_once()

        assert again.submitted == 0
        assert again.success

    @pytest.mark.asyncio
    async def test_publish_explicit_services(self, config, mock_transport, web_server):
        async with Bridge(config, mock_transport, publish_addresses=False) as bridge:
            result = await bridge.publish_once([web_server])

        assert result.submitted == 3
        assert result.addresses == []
        assert result.services == [web_server.type_in_zone_with_name]

    @pytest.mark.asyncio
    async def test_publish_failure_reported(self, config_factory, mock_transport):
        config = config_factory(services=[PRINTER])
        mock_transport.fail(PRINTER_OWNER, dns.rcode.REFUSED)

        async with Bridge(config, mock_transport, publish_addresses=False) as bridge:
            result = await bridge.publish_once()

        assert not result.success
        assert result.services == []
        assert len(result.failed) == 1
        assert PRINTER_OWNER in result.failed[0]

    @pytest.mark.asyncio
    async def test_result_survives_event_trimming(self, config_factory, mock_transport):
        config = config_factory(services=[PRINTER])
        events = EventCollector(max_events=1)
        events.emit(EventKind.DRAIN_PROGRESS, outstanding=0)
        mock_transport.fail(PRINTER_OWNER, dns.rcode.REFUSED)

        async with Bridge(config, mock_transport, events=events) as bridge:
            result = await bridge.publish_once()

        assert len(result.failed) == 1
        assert PRINTER_OWNER in result.failed[0]
        assert len(events.events) == 1


class TestUnpublishOnce:
    """Tests for one-shot withdrawal."""

    @pytest.mark.asyncio
    async def test_unpublish_after_publish(self, config_factory, mock_transport):
        config = config_factory(services=[PRINTER])

        async with Bridge(config, mock_transport) as bridge:
            await bridge.publish_once()
        assert mock_transport.record_count == 5

        async with Bridge(config, mock_transport) as bridge:
            result = await bridge.unpublish_once()

        assert result.success
        assert result.submitted == 5
        assert result.services == []
        assert mock_transport.record_count == 0

    @pytest.mark.asyncio
    async def test_unpublish_nothing_there(self, config_factory, mock_transport):
        config = config_factory(services=[PRINTER])

        async with Bridge(config, mock_transport) as bridge:
            result = await bridge.unpublish_once()

        assert result.success
        assert mock_transport.record_count == 0


class TestRun:
    """Tests for the long-running daemon."""

    @pytest.mark.asyncio
    async def test_run_publishes_and_withdraws(self, config_factory, mock_transport):
        config = config_factory(services=[PRINTER])
        bridge = Bridge(config, mock_transport)

        task = asyncio.create_task(bridge.run(install_signals=False))
        printer_key = config.services[0].key
        await _wait_for(lambda: printer_key in bridge.model.published)
        assert mock_transport.has_record("gateway.example.com.", "AAAA")
        assert all(m.running for m in bridge.maintainers)

        bridge.coordinator.request_shutdown()
        abandoned = await asyncio.wait_for(task, timeout=5)

        assert abandoned == []
        assert mock_transport.record_count == 0
        assert mock_transport.closed

    @pytest.mark.asyncio
    async def test_run_follows_discovery_events(self, config, mock_transport, printer, web_server):
        source = ListSource(
            [
                DiscoveryEvent.appeared(printer),
                DiscoveryEvent.appeared(web_server),
                DiscoveryEvent.disappeared(printer),
            ]
        )
        bridge = Bridge(config, mock_transport, sources=[source], publish_addresses=False)

        task = asyncio.create_task(bridge.run(install_signals=False))
        await _wait_for(
            lambda: set(bridge.model.published) == {web_server.key}
            and not mock_transport.has_record(PRINTER_OWNER, "SRV")
        )

        bridge.coordinator.request_shutdown()
        assert await asyncio.wait_for(task, timeout=5) == []
        assert mock_transport.record_count == 0

    @pytest.mark.asyncio
    async def test_run_skips_unpublishable_services(self, config, mock_transport, printer):
        bad = ServiceRecord(
            name="bad", service_type="_http._tcp", domain="example.com", port=80, txt_data=[b'a"b']
        )
        source = ListSource([DiscoveryEvent.appeared(bad), DiscoveryEvent.appeared(printer)])
        bridge = Bridge(config, mock_transport, sources=[source], publish_addresses=False)

        task = asyncio.create_task(bridge.run(install_signals=False))
        await _wait_for(lambda: printer.key in bridge.model.published)

        bridge.coordinator.request_shutdown()
        await asyncio.wait_for(task, timeout=5)
        assert bad.key not in bridge.model.published

    @pytest.mark.asyncio
    async def test_run_reports_abandoned(self, config_factory):
        config = config_factory(max_drain_seconds=0.2, transport_timeout=10.0)
        transport = MockTransport("example.com.")
        bridge = Bridge(config, transport, sources=[])

        task = asyncio.create_task(bridge.run(install_signals=False))
        await _wait_for(lambda: len(bridge.model.published_addresses) == 2)
        transport.set_latency("gateway.example.com.", 5.0)

        bridge.coordinator.request_shutdown()
        abandoned = await asyncio.wait_for(task, timeout=5)

        assert len(abandoned) == 2
