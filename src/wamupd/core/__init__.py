# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""Core bridge functionality: models, codec, dispatcher, reconciliation, leases, shutdown."""

from wamupd.core.codec import pack_txt, split_txt_wire, unpack_txt, validate_address
from wamupd.core.models import (
    Action,
    ActionKind,
    DispatcherClosedError,
    FatalProtocolError,
    OutcomeStatus,
    RecordType,
    RetryableTransportError,
    ServiceKey,
    ServiceRecord,
    UpdateOutcome,
    ValidationError,
    WamupdError,
)

__all__ = [
    "Action",
    "ActionKind",
    "DispatcherClosedError",
    "FatalProtocolError",
    "OutcomeStatus",
    "RecordType",
    "RetryableTransportError",
    "ServiceKey",
    "ServiceRecord",
    "UpdateOutcome",
    "ValidationError",
    "WamupdError",
    "pack_txt",
    "split_txt_wire",
    "unpack_txt",
    "validate_address",
]
