"""
Attempt key derivation.

The attempt key is the client's apparent address: the first X-Forwarded-For
entry, else X-Real-IP, else the socket peer. Extraction is best effort and
never rejects a request; garbage in a header just moves on to the next
source, and "unknown" is the last resort.
"""

import ipaddress
from typing import Optional

from starlette.requests import Request

from loginguard.utils.errors import InvalidKey

UNKNOWN_KEY = "unknown"
_MAX_HEADER_LENGTH = 256


def normalize_address(raw: Optional[str]) -> str:
    """Normalize one address string into an attempt key.

    Strips whitespace, ports ("1.2.3.4:5678", "[::1]:443") and zone ids, and
    collapses IPv4-mapped IPv6 to plain IPv4.

    Raises:
        InvalidKey: if the value is not an IP address
    """
    if raw is None:
        raise InvalidKey("empty address")
    value = raw.strip()[:_MAX_HEADER_LENGTH]
    if not value:
        raise InvalidKey("empty address")

    if value.startswith('['):
        end = value.find(']')
        if end == -1:
            raise InvalidKey(f"unterminated IPv6 literal: {value!r}")
        value = value[1:end]
    elif value.count(':') == 1:
        # IPv4 with port
        value = value.split(':', 1)[0]

    value = value.split('%', 1)[0]

    try:
        address = ipaddress.ip_address(value)
    except ValueError as e:
        raise InvalidKey(f"not an IP address: {value!r}") from e

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return address.compressed


def extract_client_key(request: Request, trust_proxy_headers: bool = True) -> str:
    """Derive the attempt key for a request. Never raises."""
    candidates = []
    if trust_proxy_headers:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            candidates.append(forwarded_for.split(",")[0])
        candidates.append(request.headers.get("X-Real-IP"))
    if request.client:
        candidates.append(request.client.host)

    for candidate in candidates:
        if not candidate:
            continue
        try:
            return normalize_address(candidate)
        except InvalidKey:
            continue
    return UNKNOWN_KEY
