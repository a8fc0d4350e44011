# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Bridge configuration.

The configuration is read once at startup and handed to every component's
constructor. It is frozen: nothing in the core may change it afterwards.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from wamupd.core.codec import absolute_name, validate_address
from wamupd.core.models import RecordType, ServiceRecord

DEFAULT_CONFIG_FILE = "/etc/wamupd.yaml"


class BridgeConfig(BaseModel):
    """Zone, server and timing settings for the bridge."""

    model_config = ConfigDict(frozen=True)

    # Zone
    zone: str = Field(..., min_length=1, description="Zone receiving the updates")
    target: str = Field(
        ..., min_length=1, description="Host name of this machine (relative to zone or absolute)"
    )
    ttl: int = Field(default=3600, ge=1, le=86400, description="TTL of published records")

    # Authoritative server
    server: str = Field(default="127.0.0.1", description="Server accepting dynamic updates")
    port: int = Field(default=53, ge=1, le=65535)
    use_tcp: bool = Field(default=True, description="Send updates over TCP instead of UDP")
    tsig_key_name: str | None = Field(default=None, description="TSIG key name")
    tsig_secret: str | None = Field(default=None, description="Base64 TSIG secret")
    tsig_algorithm: str = Field(default="hmac-sha256")

    # Host addresses
    publish_ipv4: bool = Field(default=True, description="Publish an A record for target")
    publish_ipv6: bool = Field(default=True, description="Publish an AAAA record for target")
    ipv4: str | None = Field(default=None, description="IPv4 address; detected when unset")
    ipv6: str | None = Field(default=None, description="IPv6 address; detected when unset")

    # Dispatcher
    transport_timeout: float = Field(default=5.0, gt=0, description="Per-request timeout")
    max_attempts: int = Field(default=4, ge=1, description="Attempts before a request is fatal")
    backoff_base: float = Field(default=0.5, ge=0, description="First retry delay in seconds")
    backoff_max: float = Field(default=8.0, ge=0, description="Retry delay cap in seconds")
    max_in_flight: int = Field(default=8, ge=1, description="Concurrent transactions")
    queue_size: int = Field(default=256, ge=1, description="Outbound queue capacity")

    # Leases and shutdown
    lease_interval: float | None = Field(
        default=None, gt=0, description="Renewal period in seconds (default: ttl / 2)"
    )
    max_drain_seconds: float = Field(
        default=10.0, ge=0, description="Longest wait for outstanding updates at shutdown"
    )

    # Services
    services: tuple[ServiceRecord, ...] = Field(
        default=(), description="Statically configured services"
    )
    browse_types: tuple[str, ...] = Field(
        default=(), description="mDNS service types to browse (e.g., '_http._tcp')"
    )

    @field_validator("zone")
    @classmethod
    def _normalize_zone(cls, v: str) -> str:
        return v.strip().rstrip(".").lower()

    @field_validator("ipv4", "ipv6")
    @classmethod
    def _check_address(cls, v: str | None, info: ValidationInfo) -> str | None:
        if not v:
            return None
        record_type, canonical = validate_address(v)
        expected = RecordType.A if info.field_name == "ipv4" else RecordType.AAAA
        if record_type != expected:
            raise ValueError(f"{info.field_name} must be an {expected.value} address, got {v!r}")
        return canonical

    @field_validator("services", mode="before")
    @classmethod
    def _default_service_domain(cls, v: Any, info: ValidationInfo) -> Any:
        # Services declared without a domain belong to the configured zone
        zone = (info.data or {}).get("zone")
        if isinstance(v, (list, tuple)) and zone:
            return tuple(
                {**item, "domain": item.get("domain", zone)} if isinstance(item, dict) else item
                for item in v
            )
        return v

    @model_validator(mode="after")
    def _check_lease_interval(self) -> BridgeConfig:
        if self.lease_interval is not None and self.lease_interval >= self.ttl:
            raise ValueError(
                f"lease_interval ({self.lease_interval}s) must be shorter than ttl ({self.ttl}s)"
            )
        if self.tsig_secret and not self.tsig_key_name:
            raise ValueError("tsig_secret requires tsig_key_name")
        return self

    @property
    def zone_fqdn(self) -> str:
        return f"{self.zone}."

    @property
    def target_fqdn(self) -> str:
        return absolute_name(self.target, self.zone_fqdn)

    @property
    def effective_lease_interval(self) -> float:
        return self.lease_interval if self.lease_interval is not None else self.ttl / 2

    @classmethod
    def from_yaml(cls, path: str | Path = DEFAULT_CONFIG_FILE, **overrides: Any) -> BridgeConfig:
        """
        Load configuration from a YAML file.

        Example file::

            zone: example.com
            target: gateway
            server: 192.0.2.53
            ttl: 7200
            services:
              - name: Office Printer
                service_type: _ipp._tcp
                port: 631
                txt_data: ["txtvers=1", "rp=printers/office"]

        Raises:
            FileNotFoundError: If the file does not exist.
            pydantic.ValidationError: If the settings are invalid.
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Build config from WAMUPD_* environment variables."""
        env: dict[str, Any] = {
            "zone": os.getenv("WAMUPD_ZONE", ""),
            "target": os.getenv("WAMUPD_TARGET", ""),
            "ttl": int(os.getenv("WAMUPD_TTL", "3600")),
            "server": os.getenv("WAMUPD_SERVER", "127.0.0.1"),
            "port": int(os.getenv("WAMUPD_PORT", "53")),
            "use_tcp": os.getenv("WAMUPD_USE_TCP", "true").lower() in ("1", "true", "yes"),
            "tsig_key_name": os.getenv("WAMUPD_TSIG_KEY_NAME"),
            "tsig_secret": os.getenv("WAMUPD_TSIG_SECRET"),
            "tsig_algorithm": os.getenv("WAMUPD_TSIG_ALGORITHM", "hmac-sha256"),
            "publish_ipv4": os.getenv("WAMUPD_PUBLISH_IPV4", "true").lower() in ("1", "true", "yes"),
            "publish_ipv6": os.getenv("WAMUPD_PUBLISH_IPV6", "true").lower() in ("1", "true", "yes"),
            "ipv4": os.getenv("WAMUPD_IPV4"),
            "ipv6": os.getenv("WAMUPD_IPV6"),
            "max_drain_seconds": float(os.getenv("WAMUPD_MAX_DRAIN_SECONDS", "10")),
        }
        if lease := os.getenv("WAMUPD_LEASE_INTERVAL"):
            env["lease_interval"] = float(lease)
        if browse := os.getenv("WAMUPD_BROWSE_TYPES"):
            env["browse_types"] = tuple(t.strip() for t in browse.split(",") if t.strip())
        return cls.model_validate(env)
