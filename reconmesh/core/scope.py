"""Enumeration scope for RECONMESH.

Tracks the root domains an enumeration is authorised to investigate, their
subdomain regexes, optional address/CIDR restrictions, and blacklist and
exclusion rules.
"""

from __future__ import annotations

import ipaddress
import re
import threading
from typing import Dict, List, Optional, Union

from reconmesh.utils.helpers import subdomain_regex

_Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class ScopeManager:
    """Determines whether discovered names and addresses are in scope.

    Example::

        scope = ScopeManager()
        scope.add_domain("example.com")
        scope.add_blacklist("staging.example.com")
        assert scope.is_domain_in_scope("api.example.com")
        assert not scope.is_domain_in_scope("www.staging.example.com")
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._domains: List[str] = []
        self._regexps: Dict[str, re.Pattern[str]] = {}
        self._addresses: List[str] = []
        self._cidrs: List[_Network] = []
        self._blacklist: List[str] = []
        self._exclude_patterns: List[re.Pattern[str]] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_domain(self, domain: str) -> bool:
        """Add a root domain to scope.

        The domain must have at least two non-empty labels.

        Args:
            domain: Root domain such as ``example.com``.

        Returns:
            ``True`` if the domain was accepted.
        """
        d = domain.strip().lower().rstrip(".")
        labels = d.split(".")
        if not d or len(labels) < 2 or any(not label for label in labels):
            return False

        regex = subdomain_regex(d)
        if regex is None:
            return False

        with self._lock:
            self._regexps[d] = regex
            if d not in self._domains:
                self._domains.append(d)
        return True

    def add_address(self, target: str) -> None:
        """Restrict address scope to *target* (an IP address or CIDR).

        Raises:
            ValueError: If *target* is neither.
        """
        net = ipaddress.ip_network(target.strip(), strict=False)
        with self._lock:
            if net.num_addresses == 1:
                self._addresses.append(str(net.network_address))
            else:
                self._cidrs.append(net)

    def add_blacklist(self, name: str) -> None:
        """Exclude *name* and every name ending with it."""
        name = name.strip().lower()
        if name:
            with self._lock:
                self._blacklist.append(name)

    def add_exclude(self, pattern: str) -> None:
        """Exclude names matching the regex *pattern*."""
        with self._lock:
            self._exclude_patterns.append(re.compile(pattern, re.IGNORECASE))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def domains(self) -> List[str]:
        """Registered root domains in insertion order."""
        with self._lock:
            return list(self._domains)

    def domain_regex(self, domain: str) -> Optional[re.Pattern[str]]:
        """Return the subdomain regex for *domain*, or ``None`` if not registered."""
        with self._lock:
            return self._regexps.get(domain.strip().lower())

    def which_domain(self, name: str) -> str:
        """Return the registered root domain *name* falls under, or ``""``."""
        n = name.strip().lower().rstrip(".")
        for d in self.domains:
            if n == d or n.endswith("." + d):
                return d
        return ""

    def is_domain_in_scope(self, name: str) -> bool:
        """Return ``True`` if *name* is a registered domain or lies beneath one."""
        if not name or self.blacklisted(name):
            return False
        return self.which_domain(name) != ""

    def is_address_in_scope(self, address: str) -> bool:
        """Return ``True`` if *address* parses and matches the address scope.

        With no address or CIDR restriction configured every valid address
        is in scope.
        """
        try:
            ip = ipaddress.ip_address(address.strip())
        except ValueError:
            return False

        with self._lock:
            if not self._addresses and not self._cidrs:
                return True
            if str(ip) in self._addresses:
                return True
            return any(ip in cidr for cidr in self._cidrs)

    def blacklisted(self, name: str) -> bool:
        """Return ``True`` if *name* hits a blacklist entry or exclusion pattern."""
        n = name.strip().lower()
        with self._lock:
            if any(n == bl or n.endswith("." + bl) for bl in self._blacklist):
                return True
            return any(pat.search(n) for pat in self._exclude_patterns)

    def __len__(self) -> int:
        return len(self._domains) + len(self._addresses) + len(self._cidrs)

    def __repr__(self) -> str:
        return f"ScopeManager(domains={len(self._domains)})"
