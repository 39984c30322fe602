"""ThreatCrowd data source."""

from __future__ import annotations

import json
from typing import List, Optional

from reconmesh.core import requests
from reconmesh.core.requests import DNSRequest
from reconmesh.core.service import BaseService


class ThreatCrowd(BaseService):
    """Discover names and resolutions via the ThreatCrowd domain report API."""

    name = "ThreatCrowd"
    description = "ThreatCrowd domain search API"
    source_type = requests.API
    rate_limit = 10.0

    async def on_dns_request(self, req: DNSRequest) -> Optional[List[str]]:
        if req.name != req.domain:
            return None

        url = f"https://www.threatcrowd.org/searchApi/v2/domain/report/?domain={req.domain}"
        resp = await self.http_get(url)
        if resp["status"] != 200:
            return []

        data = json.loads(resp["body"])
        if str(data.get("response_code", "")) != "1":
            return []

        for resolution in data.get("resolutions") or []:
            address = resolution.get("ip_address", "")
            if address:
                self.new_address(address, domain=req.domain)
        return list(data.get("subdomains") or [])
