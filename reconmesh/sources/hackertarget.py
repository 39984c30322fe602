"""HackerTarget host search data source."""

from __future__ import annotations

from typing import List, Optional

from reconmesh.core import requests
from reconmesh.core.requests import DNSRequest
from reconmesh.core.service import BaseService


class HackerTarget(BaseService):
    """Discover names and addresses via the HackerTarget hostsearch API.

    Returns plain-text ``host,ip`` pairs; no API key required.
    """

    name = "HackerTarget"
    description = "HackerTarget hostsearch API"
    source_type = requests.API
    rate_limit = 1.0

    async def on_dns_request(self, req: DNSRequest) -> Optional[List[str]]:
        if req.name != req.domain:
            return None

        resp = await self.http_get(f"https://api.hackertarget.com/hostsearch/?q={req.domain}")
        if resp["status"] != 200:
            return []

        body = resp["body"]
        # Errors and quota notices come back as a short plain-text line
        if "," not in body:
            if body.strip():
                self.log(f"{self.name}: {body.strip()[:200]}", level="warning")
            return []

        names: List[str] = []
        for line in body.splitlines():
            host, _, address = line.partition(",")
            if not host.strip():
                continue
            names.append(host)
            if address.strip():
                self.new_address(address, domain=req.domain)
        return names
