"""Shodan DNS data source."""

from __future__ import annotations

import json
from typing import List, Optional

from reconmesh.core import requests
from reconmesh.core.requests import DNSRequest
from reconmesh.core.service import BaseService


class Shodan(BaseService):
    """Discover names via the Shodan DNS API.

    Requires an API key configured as ``api_keys.shodan``; without one the
    source stays idle.
    """

    name = "Shodan"
    description = "Shodan DNS domain lookup API"
    source_type = requests.API
    rate_limit = 1.0
    requires_api_key = True
    api_key_name = "shodan"

    async def on_dns_request(self, req: DNSRequest) -> Optional[List[str]]:
        if self.api_key_missing or req.name != req.domain:
            return None

        url = f"https://api.shodan.io/dns/domain/{req.domain}?key={self.api_key.key}"
        resp = await self.http_get(url)
        if resp["status"] != 200:
            return []

        data = json.loads(resp["body"])
        return [f"{sub}.{req.domain}" for sub in data.get("subdomains", []) if sub]
