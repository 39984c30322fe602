"""RECONMESH: event-driven subdomain and OSINT reconnaissance."""

__version__ = "0.1.0"
