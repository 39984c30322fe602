"""AlienVault OTX data source."""

from __future__ import annotations

import json
from typing import Dict, List, Optional
from urllib.parse import quote

from reconmesh.core import requests
from reconmesh.core.requests import DNSRequest, WhoisRequest
from reconmesh.core.service import BaseService
from reconmesh.utils.helpers import deduplicate

_API_URL = "https://otx.alienvault.com/api/v1/indicators/domain"
_OTXAPI_URL = "https://otx.alienvault.com/otxapi/indicator"


class AlienVault(BaseService):
    """Passive DNS and reverse WHOIS via AlienVault OTX.

    The public endpoints answer without a key; a configured
    ``api_keys.alienvault`` key is sent as ``X-OTX-API-KEY`` for higher quotas.
    """

    name = "AlienVault"
    description = "AlienVault OTX passive DNS and reverse WHOIS"
    source_type = requests.API
    rate_limit = 1.0

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key is not None and self.api_key.key:
            headers["X-OTX-API-KEY"] = self.api_key.key
        return headers

    async def on_dns_request(self, req: DNSRequest) -> Optional[List[str]]:
        """Query the OTX passive DNS records of ``req.domain``.

        Args:
            req: Request naming the root domain.

        Returns:
            Hostnames seen in passive DNS.
        """
        if req.name != req.domain:
            return None

        resp = await self.http_get(f"{_API_URL}/{req.domain}/passive_dns", self._headers())
        if resp["status"] != 200:
            return []

        names: List[str] = []
        for entry in json.loads(resp["body"]).get("passive_dns", []):
            hostname = entry.get("hostname", "")
            if hostname:
                names.append(hostname)
            address = entry.get("address", "")
            if address and entry.get("record_type") in ("A", "AAAA"):
                self.new_address(address, domain=req.domain)
        return names

    async def on_whois_request(self, req: WhoisRequest) -> None:
        """Find other domains registered with the same e-mail addresses.

        Publishes a :class:`WhoisRequest` listing them on
        :data:`~reconmesh.core.requests.NEW_WHOIS_TOPIC`.
        """
        emails = await self._registrant_emails(req.domain)
        new_domains: List[str] = []
        for email in emails:
            self.set_active()
            await self.limiter.acquire()
            new_domains.extend(await self._domains_for_email(email))

        new_domains = [d for d in deduplicate(new_domains) if d != req.domain]
        if not new_domains:
            return

        self.publish(
            requests.NEW_WHOIS_TOPIC,
            WhoisRequest(
                domain=req.domain,
                email=emails[0] if emails else "",
                new_domains=tuple(new_domains),
                tag=self.source_type,
                source=self.name,
            ),
        )

    async def _registrant_emails(self, domain: str) -> List[str]:
        resp = await self.http_get(f"{_OTXAPI_URL}/domain/whois/{domain}", self._headers())
        if resp["status"] != 200:
            return []

        emails: List[str] = []
        for entry in json.loads(resp["body"]).get("data", []):
            if entry.get("key") != "emails":
                continue
            value = entry.get("value", "")
            if value and "@" in value:
                emails.append(value.strip().lower())
        return deduplicate(emails)

    async def _domains_for_email(self, email: str) -> List[str]:
        resp = await self.http_get(f"{_OTXAPI_URL}/email/whois/{quote(email)}", self._headers())
        if resp["status"] != 200:
            return []
        return [
            entry["domain"].strip().lower()
            for entry in json.loads(resp["body"])
            if entry.get("domain")
        ]
