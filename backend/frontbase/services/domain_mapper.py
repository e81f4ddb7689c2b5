"""
Subdomain -> storage prefix mapping in Cloudflare Workers KV.

The edge worker serving *.PUBLIC_DOMAIN looks up the visitor's subdomain
in this namespace to find which storage prefix to serve files from.
"""

import logging

import httpx

from frontbase.config import CF_ACCOUNT_ID, CF_API_KEY, CF_EMAIL, CF_KV_NAMESPACE_ID
from frontbase.errors import UpstreamUnavailableError
from frontbase.services.github_service import raise_for_upstream

logger = logging.getLogger(__name__)

CF_API_URL = "https://api.cloudflare.com/client/v4"


def subdomain_for(owner: str, repo: str) -> str:
    return f"{owner}-{repo}".lower()


def storage_prefix_for(owner: str, repo: str) -> str:
    return f"{owner}/{repo}"


class DomainMapper:
    def __init__(
        self,
        http: httpx.AsyncClient,
        account_id: str = CF_ACCOUNT_ID,
        namespace_id: str = CF_KV_NAMESPACE_ID,
        email: str = CF_EMAIL,
        api_key: str = CF_API_KEY,
        base_url: str = CF_API_URL,
    ):
        self.http = http
        self.account_id = account_id
        self.namespace_id = namespace_id
        self.email = email
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _value_url(self, key: str) -> str:
        return (
            f"{self.base_url}/accounts/{self.account_id}"
            f"/storage/kv/namespaces/{self.namespace_id}/values/{key}"
        )

    async def publish(self, subdomain: str, storage_prefix: str) -> None:
        """Point `subdomain` at `storage_prefix`. Writing the same pair twice is harmless."""
        if not (self.email and self.api_key):
            raise UpstreamUnavailableError("Cloudflare", "Missing Cloudflare credentials")

        try:
            resp = await self.http.put(
                self._value_url(subdomain),
                content=storage_prefix.encode("utf-8"),
                headers={
                    "Content-Type": "text/plain",
                    "X-Auth-Email": self.email,
                    "X-Auth-Key": self.api_key,
                },
            )
        except httpx.TransportError as exc:
            logger.error("KV mapping %s failed: %s", subdomain, exc)
            raise UpstreamUnavailableError("Cloudflare", str(exc)) from exc
        raise_for_upstream(resp, service="Cloudflare")
        logger.info("Mapped %s -> %s", subdomain, storage_prefix)
