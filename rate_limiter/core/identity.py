"""Client identity resolution from the connection address and proxy headers.

The resolved address is the client identity used in rate limit tags. Only
headers named by the operator are trusted; for a multi-hop chain the leftmost
(client-closest) entry wins.
"""

from __future__ import annotations

import ipaddress
from typing import Iterable, Mapping

from rate_limiter.core.config import DEFAULT_TRUSTED_HEADER_NAMES


def is_valid_ip_address(value: str | None) -> bool:
    """Return True if ``value`` parses as an IPv4 or IPv6 address.

    IPv6 zone ids (``fe80::1%eth0``) are rejected: the zone is free text and
    would end up verbatim in the rate limit tag.
    """

    if not value:
        return False
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.scope_id is not None:
        return False
    return True


def _header_line(headers: Mapping[str, str], name: str) -> str | None:
    """Return all values of a header joined with ", ", or None if absent.

    Starlette ``Headers`` are case-insensitive and expose ``getlist`` for
    repeated fields; plain mappings are searched case-insensitively.
    """

    getlist = getattr(headers, "getlist", None)
    if getlist is not None:
        values = getlist(name)
        return ", ".join(values) if values else None

    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def resolve_client_address(
    connection_address: str | None,
    headers: Mapping[str, str],
    trusted_header_names: Iterable[str] = DEFAULT_TRUSTED_HEADER_NAMES,
) -> str | None:
    """Determine the client's IP address.

    The connection address is the starting candidate when it is a valid IP.
    The first trusted header (in the given order) whose leftmost
    comma-separated token is a valid IP overrides it.

    Args:
        connection_address: Transport-level peer address.
        headers: Request headers.
        trusted_header_names: Proxy headers to inspect, highest priority first.

    Returns:
        The validated address, or None when no source yields one.
    """

    address = connection_address if is_valid_ip_address(connection_address) else None

    for name in trusted_header_names:
        line = _header_line(headers, name)
        if line is None:
            continue
        candidate = line.split(",", 1)[0].strip()
        if is_valid_ip_address(candidate):
            address = candidate
            break

    return address
