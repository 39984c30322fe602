"""crt.sh certificate transparency data source."""

from __future__ import annotations

import json
from typing import List, Optional

from reconmesh.core import requests
from reconmesh.core.requests import DNSRequest
from reconmesh.core.service import BaseService
from reconmesh.utils.helpers import remove_asterisk_label


class CrtSh(BaseService):
    """Fetch names from crt.sh certificate transparency logs.

    Uses the public JSON API; no API key required.
    """

    name = "Crtsh"
    description = "Certificate Transparency logs via crt.sh"
    source_type = requests.CERT
    rate_limit = 2.0

    async def on_dns_request(self, req: DNSRequest) -> Optional[List[str]]:
        """Query crt.sh for certificates issued under ``req.domain``.

        Args:
            req: Request naming the root domain.

        Returns:
            Names found in the certificate entries.
        """
        if req.name != req.domain:
            return None

        resp = await self.http_get(f"https://crt.sh/?q=%25.{req.domain}&output=json")
        if resp["status"] != 200:
            return []

        names: List[str] = []
        for entry in json.loads(resp["body"]):
            for value in (entry.get("name_value", ""), entry.get("common_name", "")):
                for line in value.splitlines():
                    names.append(remove_asterisk_label(line))
        return names
