"""Team Cymru IP-to-ASN data source."""

from __future__ import annotations

import ipaddress
from datetime import datetime
from typing import List, Optional

from reconmesh.core import requests
from reconmesh.core.errors import ResolveError, ServiceSetupError
from reconmesh.core.requests import ASNRequest
from reconmesh.core.service import BaseService
from reconmesh.utils.dns_resolver import PRIORITY_HIGH
from reconmesh.utils.helpers import ipv6_nibble_format, reverse_ip

_ORIGIN_V4 = ".origin.asn.cymru.com"
_ORIGIN_V6 = ".origin6.asn.cymru.com"
_ASN_SUFFIX = ".asn.cymru.com"


class TeamCymru(BaseService):
    """Map addresses to their origin AS using Team Cymru's DNS TXT service.

    Needs the shared resolver pool; without one the service refuses to start.
    """

    name = "TeamCymru"
    description = "Team Cymru IP-to-ASN mapping over DNS"
    source_type = requests.RIR
    rate_limit = 0.5

    async def on_start(self) -> None:
        if self.pool is None:
            raise ServiceSetupError(f"{self.name} requires a resolver pool")

    async def on_asn_request(self, req: ASNRequest) -> None:
        """Look up the origin AS of ``req.address`` and publish it on
        :data:`~reconmesh.core.requests.NEW_ASN_TOPIC`.
        """
        if not req.address or req.asn:
            return

        origin = await self._origin(req.address)
        if origin is None:
            return
        asn, prefix, cc, registry, allocated = origin

        description = await self._description(asn)
        self.publish(
            requests.NEW_ASN_TOPIC,
            ASNRequest(
                address=req.address,
                asn=asn,
                prefix=prefix,
                cc=cc,
                registry=registry,
                allocation_date=allocated,
                description=description,
                netblocks=(prefix,),
                tag=self.source_type,
                source=self.name,
            ),
        )

    async def _origin(self, address: str) -> Optional[tuple]:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            return None
        if ip.version == 4:
            query = reverse_ip(str(ip)) + _ORIGIN_V4
        else:
            query = ipv6_nibble_format(str(ip)) + _ORIGIN_V6

        fields = await self._txt_fields(query)
        if len(fields) < 5:
            return None
        try:
            asn = int(fields[0].split()[0])
        except (ValueError, IndexError):
            return None
        return asn, fields[1], fields[2], fields[3], _parse_date(fields[4])

    async def _description(self, asn: int) -> str:
        fields = await self._txt_fields(f"AS{asn}{_ASN_SUFFIX}")
        return fields[4] if len(fields) >= 5 else ""

    async def _txt_fields(self, query: str) -> List[str]:
        if self.pool is None:
            return []
        try:
            answers = await self.pool.resolve(query, "TXT", PRIORITY_HIGH)
        except ResolveError as exc:
            self.logger.debug("%s: TXT lookup for %s failed: %s", self.name, query, exc)
            return []
        if not answers:
            return []
        return [f.strip() for f in answers[0].data.strip('"').split("|")]


def _parse_date(value: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d")
    except ValueError:
        return None
