"""Utility functions for RECONMESH.

Helpers for cleaning scraped names, building per-domain subdomain regexes,
deduplication, and address formatting used by the DNS-based sources.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Iterable, List, Optional, TypeVar

T = TypeVar("T")

# Matches one or more DNS labels followed by a dot
SUBDOMAIN_PATTERN = r"(([a-zA-Z0-9]{1}|[_a-zA-Z0-9]{1}[_a-zA-Z0-9-]{0,61}[a-zA-Z0-9]{1})[.]{1})+"

_ANY_NAME_RE = re.compile(SUBDOMAIN_PATTERN + r"[a-zA-Z]{2,61}")

# URL-encoded leftovers (space, %, +, /, =, :, @) glued to the front of scraped names
_NAME_STRIP_RE = re.compile(r"^((20)|(25)|(2b)|(2f)|(3d)|(3a)|(40))+")

def deduplicate(items: Iterable[T]) -> List[T]:
    """Return a list with duplicates removed while preserving insertion order.

    Args:
        items: Any iterable of hashable items.

    Returns:
        Ordered unique list.
    """
    seen: set = set()
    result: List[T] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def subdomain_regex(domain: str) -> Optional[re.Pattern[str]]:
    """Build the regex matching *domain* and every name beneath it.

    Args:
        domain: Root domain such as ``example.com``.

    Returns:
        Compiled case-insensitive pattern, or ``None`` for an empty domain.
    """
    domain = domain.strip().lower().rstrip(".")
    if not domain:
        return None
    return re.compile(
        r"(?<![a-zA-Z0-9_])(?:" + SUBDOMAIN_PATTERN + r")?" + re.escape(domain) + r"(?![a-zA-Z0-9\-])",
        re.IGNORECASE,
    )


def clean_name(name: str) -> str:
    """Clean up a DNS name scraped from a web page or API response.

    Lowercases, strips wildcard and URL-encoding debris, and trims leading or
    trailing dots and hyphens.

    Args:
        name: Raw scraped name.

    Returns:
        Cleaned name (may be empty).
    """
    name = name.strip().lower()
    match = _ANY_NAME_RE.search(name)
    if match:
        name = match.group(0)

    while True:
        name = name.strip("-.")
        match = _NAME_STRIP_RE.match(name)
        if not match or not match.group(0):
            break
        name = name[match.end():]
    return name


def remove_asterisk_label(name: str) -> str:
    """Strip a leading ``*.`` wildcard label from *name*."""
    name = name.strip()
    while name.startswith("*."):
        name = name[2:]
    return name


def is_valid_ip(address: str) -> bool:
    """Return ``True`` if *address* is a valid IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(address)
        return True
    except ValueError:
        return False


def reverse_ip(address: str) -> str:
    """Return the dotted octets of an IPv4 address in reverse order.

    >>> reverse_ip("192.0.2.10")
    '10.2.0.192'
    """
    return ".".join(reversed(address.split(".")))


def ipv6_nibble_format(address: str) -> str:
    """Return the reversed nibble form of an IPv6 address (no ``ip6.arpa`` suffix)."""
    exploded = ipaddress.IPv6Address(address).exploded.replace(":", "")
    return ".".join(reversed(exploded))
