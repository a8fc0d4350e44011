# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
Record codec: service attributes to record-ready values.

Everything here is deterministic and side-effect free. Values produced by
this module are DNS presentation format, ready to be handed to dnspython
when the update message is built.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable, Sequence

import dns.exception
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype

from wamupd.core.models import MAX_TXT_STRING_LENGTH, RecordType, ValidationError

# Characters that cannot appear inside a quoted character-string unescaped
_UNSAFE = frozenset(b'"\\')


def _as_bytes(item: bytes | bytearray | str | Sequence[int]) -> bytes:
    if isinstance(item, (bytes, bytearray)):
        return bytes(item)
    if isinstance(item, str):
        return item.encode("utf-8")
    try:
        return bytes(item)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Not a byte string: {item!r}") from e


def pack_txt(strings: Iterable[bytes | bytearray | str | Sequence[int]]) -> str:
    """
    Pack an ordered sequence of byte strings into TXT presentation text.

    Each string is wrapped in double quotes and the results are joined with
    single spaces, preserving order and content:

        >>> pack_txt([[102, 97, 99, 101], [99, 97, 98]])
        '"face" "cab"'

    Bytes outside printable ASCII are written as ``\\DDD`` escapes so the
    text parses back to the same octets. Strings must be quote-safe.

    Raises:
        ValidationError: If a string exceeds 255 bytes or contains a
            double quote or backslash.
    """
    parts = []
    for item in strings:
        raw = _as_bytes(item)
        if len(raw) > MAX_TXT_STRING_LENGTH:
            raise ValidationError(
                f"TXT string exceeds {MAX_TXT_STRING_LENGTH} bytes ({len(raw)} bytes)"
            )
        if _UNSAFE.intersection(raw):
            raise ValidationError(f"TXT string is not quote-safe: {raw!r}")
        text = "".join(chr(b) if 0x20 <= b < 0x7F else f"\\{b:03d}" for b in raw)
        parts.append(f'"{text}"')
    return " ".join(parts)


def unpack_txt(text: str) -> list[bytes]:
    """Inverse of :func:`pack_txt`."""
    if not text.strip():
        return []
    try:
        rdata = dns.rdata.from_text(dns.rdataclass.IN, dns.rdatatype.TXT, text)
    except dns.exception.DNSException as e:
        raise ValidationError(f"Malformed TXT text: {text!r}") from e
    return list(rdata.strings)


def split_txt_wire(data: bytes | None) -> list[bytes]:
    """Split raw TXT RDATA (length-prefixed strings) into its strings.

    mDNS announces an empty TXT record as a single zero-length string, which
    is dropped here.
    """
    if not data:
        return []
    strings = []
    pos = 0
    while pos < len(data):
        length = data[pos]
        end = pos + 1 + length
        if end > len(data):
            raise ValidationError("Truncated TXT record data")
        strings.append(data[pos + 1 : end])
        pos = end
    return [s for s in strings if s]


def validate_address(address: str) -> tuple[RecordType, str]:
    """
    Check that ``address`` is an IPv4 or IPv6 literal.

    Returns:
        The matching record type (A or AAAA) and the address in canonical form.

    Raises:
        ValidationError: If the string is not a valid address literal.
    """
    try:
        ip = ipaddress.ip_address(address.strip())
    except ValueError as e:
        raise ValidationError(f"Invalid IP address: {address!r}") from e
    if ip.version == 4:
        return RecordType.A, str(ip)
    return RecordType.AAAA, str(ip)


def absolute_name(name: str, zone: str) -> str:
    """Return ``name`` as an absolute name, qualifying relative names with ``zone``."""
    try:
        if name.endswith("."):
            return dns.name.from_text(name).to_text()
        return dns.name.from_text(name, origin=dns.name.from_text(zone)).to_text()
    except dns.exception.DNSException as e:
        raise ValidationError(f"Invalid DNS name: {name!r}") from e


def service_type_name(service_type: str, zone: str) -> str:
    """Owner of the browse PTR records, e.g. ``_http._tcp.example.com.``."""
    return absolute_name(service_type, zone)


def instance_name(name: str, service_type: str, zone: str) -> str:
    """
    Owner of an instance's SRV/TXT records.

    The instance name is a single label even when it contains dots or
    spaces, so it is added as a raw label and escaped by dnspython.
    """
    try:
        label = name.encode("utf-8")
        parent = dns.name.from_text(service_type_name(service_type, zone))
        return dns.name.Name((label, *parent.labels)).to_text()
    except (dns.exception.DNSException, UnicodeError) as e:
        raise ValidationError(f"Invalid service instance name: {name!r}") from e
