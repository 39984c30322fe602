"""Exception hierarchy for RECONMESH.

Errors raised by a single data source never cross into other sources or the
orchestrator; these types exist so callers can tell setup failures apart from
transport or lookup failures when they do choose to handle them.
"""

from __future__ import annotations


class ReconMeshError(Exception):
    """Base class for every RECONMESH-specific error."""


class ConfigError(ReconMeshError):
    """Raised when configuration values are invalid or cannot be loaded."""


class ServiceError(ReconMeshError):
    """Base class for service lifecycle errors."""


class ServiceStateError(ServiceError):
    """Raised on an illegal lifecycle transition (e.g. starting a stopped service)."""


class ServiceSetupError(ServiceError):
    """Raised by ``on_start`` when a service cannot run at all."""


class CrawlerError(ReconMeshError):
    """Raised when an archive crawl cannot be attempted."""


class ResolveError(ReconMeshError):
    """Raised by the resolver pool when a DNS query fails."""
