# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""Tests for service and address expansion into Actions."""

import pytest

from wamupd.core.actions import EMPTY_TXT, address_action, service_actions, service_target
from wamupd.core.models import ActionKind, RecordType, ServiceRecord, ValidationError


class TestServiceActions:
    """Tests for service_actions."""

    def test_ptr_srv_txt(self, config, printer):
        ptr, srv, txt = service_actions(printer, ActionKind.ADD, config)

        assert ptr.record_type == RecordType.PTR
        assert ptr.target == "_ipp._tcp.example.com."
        assert ptr.value == "Office\\032Printer._ipp._tcp.example.com."

        assert srv.record_type == RecordType.SRV
        assert srv.target == "Office\\032Printer._ipp._tcp.example.com."
        assert srv.value == "0 0 631 gateway.example.com."

        assert txt.record_type == RecordType.TXT
        assert txt.target == srv.target
        assert txt.value == '"txtvers=1" "rp=printers/office"'

    def test_all_use_kind_and_ttl(self, config, printer):
        actions = service_actions(printer, ActionKind.DELETE, config)
        assert {a.kind for a in actions} == {ActionKind.DELETE}
        assert {a.ttl for a in actions} == {3600}

    def test_empty_txt(self, config):
        service = ServiceRecord(name="bare", service_type="_ssh._tcp", domain="example.com", port=22)
        txt = service_actions(service, ActionKind.ADD, config)[2]
        assert txt.value == EMPTY_TXT

    def test_explicit_host(self, config, web_server):
        srv = service_actions(web_server, ActionKind.ADD, config)[1]
        assert srv.value == "0 0 80 www.example.com."

    def test_bad_txt_raises_before_anything_is_built(self, config):
        service = ServiceRecord(
            name="bad", service_type="_http._tcp", domain="example.com", port=80, txt_data=[b'a"b']
        )
        with pytest.raises(ValidationError):
            service_actions(service, ActionKind.ADD, config)


class TestServiceTarget:
    """Tests for service_target."""

    @pytest.mark.parametrize("host", [None, "", "printer.local", "printer.local."])
    def test_local_hosts_map_to_target(self, config, printer, host):
        service = printer.model_copy(update={"host": host})
        assert service_target(service, config) == "gateway.example.com."

    def test_relative_host_qualified_with_zone(self, config, printer):
        service = printer.model_copy(update={"host": "nas"})
        assert service_target(service, config) == "nas.example.com."


class TestAddressAction:
    """Tests for address_action."""

    def test_ipv4(self, config):
        action = address_action("192.0.2.10", ActionKind.ADD, config)
        assert action.record_type == RecordType.A
        assert action.target == "gateway.example.com."
        assert action.value == "192.0.2.10"
        assert action.ttl == 3600

    def test_ipv6(self, config):
        action = address_action("2001:DB8::10", ActionKind.DELETE, config)
        assert action.record_type == RecordType.AAAA
        assert action.value == "2001:db8::10"
        assert action.kind == ActionKind.DELETE

    def test_invalid(self, config):
        with pytest.raises(ValidationError):
            address_action("gateway", ActionKind.ADD, config)
