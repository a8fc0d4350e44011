# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Expansion of services and host addresses into record Actions.

A service becomes three records (PTR, SRV, TXT); each host address becomes
one A or AAAA record on the target name. Every record is its own Action and
therefore its own update transaction.
"""

from __future__ import annotations

from enum import StrEnum

from wamupd.config import BridgeConfig
from wamupd.core.codec import (
    absolute_name,
    instance_name,
    pack_txt,
    service_type_name,
    validate_address,
)
from wamupd.core.models import Action, ActionKind, RecordType, ServiceRecord

# Presentation form of a TXT record holding one empty string
EMPTY_TXT = '""'


class RecordClass(StrEnum):
    """Groups of records renewed together."""

    ADDRESSES = "addresses"
    SERVICES = "services"


def service_target(service: ServiceRecord, config: BridgeConfig) -> str:
    """SRV target for a service: its own host, or the bridge's target."""
    host = (service.host or "").rstrip(".")
    if not host or host.lower().endswith(".local"):
        return config.target_fqdn
    return absolute_name(service.host, config.zone_fqdn)


def service_actions(
    service: ServiceRecord, kind: ActionKind, config: BridgeConfig
) -> list[Action]:
    """
    Build the PTR, SRV and TXT Actions for a service.

    Raises:
        ValidationError: If a name or TXT string cannot be encoded.
    """
    ptr_owner = service_type_name(service.service_type, config.zone_fqdn)
    owner = instance_name(service.name, service.service_type, config.zone_fqdn)
    txt = pack_txt(service.txt_data) or EMPTY_TXT
    srv = f"0 0 {service.port} {service_target(service, config)}"

    return [
        Action(kind=kind, target=ptr_owner, record_type=RecordType.PTR, value=owner, ttl=config.ttl),
        Action(kind=kind, target=owner, record_type=RecordType.SRV, value=srv, ttl=config.ttl),
        Action(kind=kind, target=owner, record_type=RecordType.TXT, value=txt, ttl=config.ttl),
    ]


def address_action(address: str, kind: ActionKind, config: BridgeConfig) -> Action:
    """
    Build the A or AAAA Action for one host address.

    Raises:
        ValidationError: If ``address`` is not an IP literal.
    """
    record_type, canonical = validate_address(address)
    return Action(
        kind=kind,
        target=config.target_fqdn,
        record_type=record_type,
        value=canonical,
        ttl=config.ttl,
    )
