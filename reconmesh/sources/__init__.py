"""Bundled data sources."""

from reconmesh.sources.alienvault import AlienVault
from reconmesh.sources.archive import ArchiveService, ArchiveToday, UKGovArchive, Wayback
from reconmesh.sources.crtsh import CrtSh
from reconmesh.sources.hackertarget import HackerTarget
from reconmesh.sources.shodan import Shodan
from reconmesh.sources.teamcymru import TeamCymru
from reconmesh.sources.threatcrowd import ThreatCrowd

__all__ = [
    "AlienVault",
    "ArchiveService",
    "ArchiveToday",
    "CrtSh",
    "HackerTarget",
    "Shodan",
    "TeamCymru",
    "ThreatCrowd",
    "UKGovArchive",
    "Wayback",
]
