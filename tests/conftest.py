# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures for wamupd tests."""

from __future__ import annotations

import pytest

from wamupd.backends.mock import MockTransport
from wamupd.config import BridgeConfig
from wamupd.core.events import EventCollector
from wamupd.core.models import ServiceRecord


def make_config(**overrides) -> BridgeConfig:
    """Test configuration with fast retries and short drains."""
    settings = {
        "zone": "example.com",
        "target": "gateway",
        "ttl": 3600,
        "ipv4": "192.0.2.10",
        "ipv6": "2001:db8::10",
        "transport_timeout": 1.0,
        "max_attempts": 3,
        "backoff_base": 0.0,
        "backoff_max": 0.0,
        "max_in_flight": 4,
        "max_drain_seconds": 2.0,
    }
    settings.update(overrides)
    return BridgeConfig(**settings)


@pytest.fixture
def config() -> BridgeConfig:
    return make_config()


@pytest.fixture
def mock_transport() -> MockTransport:
    """In-memory authoritative server for example.com."""
    return MockTransport("example.com.")


@pytest.fixture
def events() -> EventCollector:
    return EventCollector()


@pytest.fixture
def printer() -> ServiceRecord:
    return ServiceRecord(
        name="Office Printer",
        service_type="_ipp._tcp",
        domain="example.com",
        port=631,
        txt_data=[b"txtvers=1", b"rp=printers/office"],
    )


@pytest.fixture
def web_server() -> ServiceRecord:
    return ServiceRecord(
        name="intranet",
        service_type="_http._tcp",
        domain="example.com",
        host="www.example.com.",
        port=80,
        txt_data=[b"path=/"],
    )


@pytest.fixture
def config_factory():
    """Build a test configuration with overrides, e.g. ``config_factory(max_attempts=1)``."""
    return make_config
