"""Bus topics and the fact payloads published under them.

Producers and consumers agree on the topic string and payload shape out of
band: each topic carries exactly one payload type.  Payloads are frozen
dataclasses, so every subscriber can safely receive the same object.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from reconmesh.utils.helpers import is_valid_ip

# Source tags
NONE = "none"
ALT = "alt"
GUESS = "guess"
ARCHIVE = "archive"
API = "api"
AXFR = "axfr"
BRUTE = "brute"
CERT = "cert"
DNS = "dns"
RIR = "rir"
EXTERNAL = "ext"
SCRAPE = "scrape"

# Pub/Sub topics
DNS_REQUEST_TOPIC = "reconmesh:dnsreq"
NEW_NAME_TOPIC = "reconmesh:newname"
NAME_RESOLVED_TOPIC = "reconmesh:resolved"
NEW_ADDR_TOPIC = "reconmesh:newaddr"
IP_TO_ASN_TOPIC = "reconmesh:asnreq"
NEW_ASN_TOPIC = "reconmesh:newasn"
WHOIS_REQUEST_TOPIC = "reconmesh:whoisreq"
NEW_WHOIS_TOPIC = "reconmesh:whoisinfo"
LOG_TOPIC = "reconmesh:log"

_LABEL_RE = re.compile(r"^[_a-zA-Z0-9]([_a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?$")


def _is_domain_name(name: str) -> bool:
    if not name or len(name) > 253:
        return False
    labels = name.rstrip(".").split(".")
    return all(_LABEL_RE.match(label) for label in labels)


def _is_subdomain(parent: str, child: str) -> bool:
    parent = parent.lower().rstrip(".")
    child = child.lower().rstrip(".")
    return child == parent or child.endswith("." + parent)


@dataclass(frozen=True)
class DNSAnswer:
    """A single DNS resource record returned by the resolver pool."""

    name: str
    type: int
    ttl: int
    data: str


@dataclass(frozen=True)
class DNSRequest:
    """A DNS name discovered for (or to be investigated under) *domain*.

    Attributes:
        name: Fully qualified DNS name.
        domain: The in-scope root domain the name belongs to.
        records: Answers already known for the name.
        tag: Source tag (e.g. :data:`CERT`, :data:`ARCHIVE`).
        source: Name of the producing service.
    """

    name: str
    domain: str
    records: Tuple[DNSAnswer, ...] = ()
    tag: str = NONE
    source: str = ""

    def valid(self) -> bool:
        """Return ``True`` if *name* is a well-formed name under *domain*."""
        if not _is_domain_name(self.name) or not _is_domain_name(self.domain):
            return False
        return _is_subdomain(self.domain, self.name)


@dataclass(frozen=True)
class AddrRequest:
    """An IP address discovered in relation to *domain*."""

    address: str
    domain: str = ""
    tag: str = NONE
    source: str = ""

    def valid(self) -> bool:
        """Return ``True`` if *address* parses as IPv4 or IPv6."""
        return is_valid_ip(self.address)


@dataclass(frozen=True)
class ASNRequest:
    """Autonomous system details, or a request for them when only *address* is set."""

    address: str = ""
    asn: int = 0
    prefix: str = ""
    cc: str = ""
    registry: str = ""
    allocation_date: Optional[datetime] = None
    description: str = ""
    netblocks: Tuple[str, ...] = ()
    tag: str = NONE
    source: str = ""


@dataclass(frozen=True)
class WhoisRequest:
    """WHOIS information for *domain*, including newly related domains."""

    domain: str
    company: str = ""
    email: str = ""
    new_domains: Tuple[str, ...] = field(default_factory=tuple)
    tag: str = NONE
    source: str = ""


@dataclass(frozen=True)
class LogMessage:
    """A log line published on :data:`LOG_TOPIC`."""

    source: str
    message: str
    level: str = "info"
