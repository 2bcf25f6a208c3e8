"""DNS provider abstractions for Porkbun and Cloudflare."""

import logging
from typing import Protocol

import httpx

from .domains import NSLookup, detect_provider
from .errors import NotFoundError, ProviderAPIError
from .types import Config, DNSProviderName, DNSRecord
from .utils import request_json

logger = logging.getLogger("arnor.dns")

PORKBUN_API = "https://api.porkbun.com/api/json/v3"
CLOUDFLARE_API = "https://api.cloudflare.com/client/v4"
HTTP_TIMEOUT = 30.0


class DNSProvider(Protocol):
    name: DNSProviderName

    def create_record(
        self, root: str, name: str, type: str, content: str, ttl: str = ""
    ) -> str: ...

    def delete_record(self, root: str, record_id: str) -> None: ...

    def list_records(self, root: str) -> list[DNSRecord]: ...


class PorkbunProvider:
    """Porkbun JSON API v3. Every call is a POST carrying the key pair in the body."""

    def __init__(self, api_key: str, secret_key: str, transport: httpx.BaseTransport | None = None):
        self.name: DNSProviderName = "porkbun"
        self._auth = {"apikey": api_key, "secretapikey": secret_key}
        self._client = httpx.Client(
            base_url=PORKBUN_API, timeout=HTTP_TIMEOUT, transport=transport
        )

    @classmethod
    def from_store(cls, store, transport: httpx.BaseTransport | None = None) -> "PorkbunProvider":
        return cls(
            store.get_credential("porkbun", "default", "api_key"),
            store.get_credential("porkbun", "default", "secret_key"),
            transport=transport,
        )

    def _post(self, path: str, **fields) -> dict:
        data = request_json(
            self._client, "porkbun", "POST", path, json={**self._auth, **fields}
        )
        if data.get("status") != "SUCCESS":
            raise ProviderAPIError("porkbun", f"{path}: {data.get('message', 'unknown error')}")
        return data

    def ping(self) -> str:
        """:return: The caller's IP as seen by Porkbun"""
        return self._post("/ping").get("yourIp", "")

    def create_record(
        self, root: str, name: str, type: str, content: str, ttl: str = ""
    ) -> str:
        fields = {"name": name, "type": type, "content": content}
        if ttl:
            fields["ttl"] = ttl
        data = self._post(f"/dns/create/{root}", **fields)
        return str(data.get("id", ""))

    def delete_record(self, root: str, record_id: str) -> None:
        self._post(f"/dns/delete/{root}/{record_id}")

    def list_records(self, root: str) -> list[DNSRecord]:
        data = self._post(f"/dns/retrieve/{root}")
        return [
            DNSRecord(
                id=str(r["id"]),
                name=r.get("name", ""),
                type=r.get("type", ""),
                content=r.get("content", ""),
                ttl=str(r.get("ttl", "")),
            )
            for r in data.get("records", [])
        ]


def _is_subdomain_of(name: str, domain: str) -> bool:
    return len(name) > len(domain) and name.endswith("." + domain)


class CloudflareProvider:
    """Cloudflare v4 API. Record names are fully qualified; zone ids are cached."""

    def __init__(self, api_token: str, transport: httpx.BaseTransport | None = None):
        self.name: DNSProviderName = "cloudflare"
        self._zone_ids: dict[str, str] = {}
        self._client = httpx.Client(
            base_url=CLOUDFLARE_API,
            timeout=HTTP_TIMEOUT,
            headers={"Authorization": f"Bearer {api_token}"},
            transport=transport,
        )

    @classmethod
    def from_store(cls, store, transport: httpx.BaseTransport | None = None) -> "CloudflareProvider":
        return cls(store.get_credential("cloudflare", "default", "api_token"), transport=transport)

    def _call(self, method: str, path: str, **kwargs) -> dict:
        data = request_json(self._client, "cloudflare", method, path, **kwargs)
        if not data.get("success", False):
            messages = "; ".join(e.get("message", "") for e in data.get("errors", []))
            raise ProviderAPIError("cloudflare", f"{method} {path}: {messages or 'request failed'}")
        return data

    def verify_token(self, account_id: str = "") -> str:
        """Check the token, against the account-scoped endpoint when ``account_id`` is set.

        :return: Token status, ``active`` for a usable token
        :raises ProviderAPIError: If Cloudflare rejects the token
        """
        path = f"/accounts/{account_id}/tokens/verify" if account_id else "/user/tokens/verify"
        return self._call("GET", path)["result"].get("status", "")

    def zone_id(self, root: str) -> str:
        if root not in self._zone_ids:
            zones = self._call("GET", "/zones", params={"name": root})["result"]
            if not zones:
                raise NotFoundError(f"cloudflare zone not found for {root}")
            self._zone_ids[root] = zones[0]["id"]
        return self._zone_ids[root]

    def create_record(
        self, root: str, name: str, type: str, content: str, ttl: str = ""
    ) -> str:
        if not name:
            fqdn = root
        elif name == root or _is_subdomain_of(name, root):
            fqdn = name
        else:
            fqdn = f"{name}.{root}"
        # 1 means automatic TTL
        ttl_value = int(ttl) if ttl.isdigit() else 1
        data = self._call(
            "POST",
            f"/zones/{self.zone_id(root)}/dns_records",
            json={"type": type, "name": fqdn, "content": content, "ttl": ttl_value},
        )
        return data["result"]["id"]

    def delete_record(self, root: str, record_id: str) -> None:
        self._call("DELETE", f"/zones/{self.zone_id(root)}/dns_records/{record_id}")

    def list_records(self, root: str) -> list[DNSRecord]:
        zone = self.zone_id(root)
        records = []
        page = 1
        while True:
            data = self._call(
                "GET", f"/zones/{zone}/dns_records", params={"page": page, "per_page": 100}
            )
            records.extend(
                DNSRecord(
                    id=r["id"],
                    name=r.get("name", ""),
                    type=r.get("type", ""),
                    content=r.get("content", ""),
                    ttl=str(r.get("ttl", "")),
                )
                for r in data["result"]
            )
            total_pages = (data.get("result_info") or {}).get("total_pages", 1)
            if page >= total_pages:
                return records
            page += 1


def new_dns_provider(name: str, store) -> DNSProvider:
    """Create a DNS provider by name with credentials from the store.

    :raises NotFoundError: If the provider is unknown or its credentials are missing
    """
    if name == "porkbun":
        return PorkbunProvider.from_store(store)
    if name == "cloudflare":
        return CloudflareProvider.from_store(store)
    raise NotFoundError(f"unknown DNS provider: {name}")


def provider_name_for_domain(
    domain: str, config: Config | None, lookup: NSLookup | None = None
) -> str:
    """Known environment with this exact domain first, nameserver detection second."""
    if config is not None:
        for project in config.projects:
            for env in project.environments.values():
                if env.domain == domain and env.dns_provider:
                    return env.dns_provider
    return detect_provider(domain, lookup)


def provider_for_domain(
    domain: str, config: Config | None, store, lookup: NSLookup | None = None
) -> DNSProvider:
    name = provider_name_for_domain(domain, config, lookup)
    logger.debug("DNS provider for %s: %s", domain, name)
    return new_dns_provider(name, store)
