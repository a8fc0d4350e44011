# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""Tests for BridgeConfig."""

import pydantic
import pytest

from wamupd.config import BridgeConfig


class TestBridgeConfig:
    """Tests for the configuration model."""

    def test_defaults(self):
        config = BridgeConfig(zone="example.com", target="gateway")
        assert config.ttl == 3600
        assert config.port == 53
        assert config.use_tcp is True
        assert config.max_in_flight == 8
        assert config.queue_size == 256
        assert config.max_drain_seconds == 10.0

    def test_zone_normalized(self):
        config = BridgeConfig(zone="Example.COM.", target="gateway")
        assert config.zone == "example.com"
        assert config.zone_fqdn == "example.com."

    def test_target_relative_to_zone(self):
        assert BridgeConfig(zone="example.com", target="gateway").target_fqdn == "gateway.example.com."

    def test_target_absolute(self):
        config = BridgeConfig(zone="example.com", target="host.example.org.")
        assert config.target_fqdn == "host.example.org."

    def test_lease_interval_defaults_to_half_ttl(self):
        assert BridgeConfig(zone="example.com", target="gw", ttl=600).effective_lease_interval == 300

    def test_lease_interval_explicit(self):
        config = BridgeConfig(zone="example.com", target="gw", ttl=600, lease_interval=120)
        assert config.effective_lease_interval == 120

    def test_lease_interval_must_be_below_ttl(self):
        with pytest.raises(pydantic.ValidationError, match="lease_interval"):
            BridgeConfig(zone="example.com", target="gw", ttl=600, lease_interval=600)

    def test_tsig_secret_requires_key_name(self):
        with pytest.raises(pydantic.ValidationError, match="tsig_key_name"):
            BridgeConfig(zone="example.com", target="gw", tsig_secret="c2VjcmV0")

    def test_missing_zone(self):
        with pytest.raises(pydantic.ValidationError):
            BridgeConfig(target="gw")

    def test_frozen(self):
        config = BridgeConfig(zone="example.com", target="gw")
        with pytest.raises(pydantic.ValidationError):
            config.ttl = 60

    def test_addresses_canonicalized(self):
        config = BridgeConfig(
            zone="example.com", target="gw", ipv4=" 192.0.2.10", ipv6="2001:DB8:0::10"
        )
        assert config.ipv4 == "192.0.2.10"
        assert config.ipv6 == "2001:db8::10"

    def test_invalid_address_rejected_at_load(self):
        with pytest.raises(pydantic.ValidationError, match="Invalid IP address"):
            BridgeConfig(zone="example.com", target="gw", ipv4="not-an-ip")

    def test_address_family_must_match(self):
        with pytest.raises(pydantic.ValidationError, match="ipv4 must be an A address"):
            BridgeConfig(zone="example.com", target="gw", ipv4="2001:db8::10")

    def test_services_default_to_zone(self):
        config = BridgeConfig(
            zone="example.com",
            target="gw",
            services=[{"name": "web", "service_type": "_http._tcp", "port": 80}],
        )
        assert config.services[0].domain == "example.com"


class TestFromYaml:
    """Tests for BridgeConfig.from_yaml."""

    def test_load(self, tmp_path):
        path = tmp_path / "wamupd.yaml"
        path.write_text(
            "zone: example.com\n"
            "target: gateway\n"
            "server: 192.0.2.53\n"
            "ttl: 7200\n"
            "services:\n"
            "  - name: Office Printer\n"
            "    service_type: _ipp._tcp\n"
            "    port: 631\n"
            "    txt_data: [txtvers=1, rp=printers/office]\n"
        )

        config = BridgeConfig.from_yaml(path)

        assert config.server == "192.0.2.53"
        assert config.ttl == 7200
        assert len(config.services) == 1
        service = config.services[0]
        assert service.name == "Office Printer"
        assert service.domain == "example.com"
        assert service.txt_data == (b"txtvers=1", b"rp=printers/office")

    def test_overrides(self, tmp_path):
        path = tmp_path / "wamupd.yaml"
        path.write_text("zone: example.com\ntarget: gateway\n")

        config = BridgeConfig.from_yaml(path, browse_types=("_ipp._tcp",), server=None)

        assert config.browse_types == ("_ipp._tcp",)
        assert config.server == "127.0.0.1"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            BridgeConfig.from_yaml(tmp_path / "missing.yaml")

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "wamupd.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            BridgeConfig.from_yaml(path)


class TestFromEnv:
    """Tests for BridgeConfig.from_env."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("WAMUPD_ZONE", "example.com")
        monkeypatch.setenv("WAMUPD_TARGET", "gateway")
        monkeypatch.setenv("WAMUPD_TTL", "600")
        monkeypatch.setenv("WAMUPD_USE_TCP", "false")
        monkeypatch.setenv("WAMUPD_PUBLISH_IPV6", "no")
        monkeypatch.setenv("WAMUPD_LEASE_INTERVAL", "200")
        monkeypatch.setenv("WAMUPD_BROWSE_TYPES", "_ipp._tcp, _http._tcp")

        config = BridgeConfig.from_env()

        assert config.zone == "example.com"
        assert config.ttl == 600
        assert config.use_tcp is False
        assert config.publish_ipv6 is False
        assert config.effective_lease_interval == 200
        assert config.browse_types == ("_ipp._tcp", "_http._tcp")

    def test_from_env_requires_zone(self, monkeypatch):
        monkeypatch.delenv("WAMUPD_ZONE", raising=False)
        monkeypatch.setenv("WAMUPD_TARGET", "gateway")
        with pytest.raises(pydantic.ValidationError):
            BridgeConfig.from_env()
