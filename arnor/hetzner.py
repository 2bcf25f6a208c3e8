"""Hetzner Cloud API client and multi-project manager."""

import logging

import httpx

from .errors import NotFoundError, ProviderAPIError
from .types import CloudServer, SSHKey
from .utils import request_json

logger = logging.getLogger("arnor.hetzner")

HETZNER_API = "https://api.hetzner.cloud/v1"
HTTP_TIMEOUT = 30.0


def _to_cloud_server(data: dict, project: str = "") -> CloudServer:
    public_net = data.get("public_net") or {}
    datacenter = data.get("datacenter") or {}
    return CloudServer(
        id=data["id"],
        name=data["name"],
        ip=((public_net.get("ipv4") or {}).get("ip", "")),
        status=data.get("status", ""),
        server_type=(data.get("server_type") or {}).get("name", ""),
        datacenter=datacenter.get("name", ""),
        location=(datacenter.get("location") or {}).get("name", ""),
        created=data.get("created", ""),
        project=project,
    )


def _to_ssh_key(data: dict, project: str = "") -> SSHKey:
    return SSHKey(
        id=data["id"],
        name=data["name"],
        fingerprint=data.get("fingerprint", ""),
        public_key=data.get("public_key", ""),
        project=project,
    )


class HetznerClient:
    """Client for one Hetzner Cloud project (one API token)."""

    def __init__(self, token: str, project: str = "", transport: httpx.BaseTransport | None = None):
        self.project = project
        self._client = httpx.Client(
            base_url=HETZNER_API,
            timeout=HTTP_TIMEOUT,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    def _get_all(self, path: str, key: str, params: dict | None = None) -> list[dict]:
        items = []
        page = 1
        while page:
            data = request_json(
                self._client,
                "hetzner",
                "GET",
                path,
                params={**(params or {}), "page": page, "per_page": 50},
            )
            items.extend(data.get(key, []))
            page = (((data.get("meta") or {}).get("pagination") or {}).get("next_page"))
        return items

    def ping(self) -> None:
        """Validate the token with a minimal request.

        :raises ProviderAPIError: If the token is rejected
        """
        request_json(self._client, "hetzner", "GET", "/servers", params={"per_page": 1})

    def list_servers(self) -> list[CloudServer]:
        return [_to_cloud_server(s, self.project) for s in self._get_all("/servers", "servers")]

    def get_server(self, name: str) -> CloudServer:
        """:raises NotFoundError: If no server has that name"""
        servers = self._get_all("/servers", "servers", {"name": name})
        match = next((s for s in servers if s["name"] == name), None)
        if match is None:
            raise NotFoundError(f"server not found: {name}")
        return _to_cloud_server(match, self.project)

    def list_ssh_keys(self) -> list[SSHKey]:
        return [_to_ssh_key(k, self.project) for k in self._get_all("/ssh_keys", "ssh_keys")]

    def add_ssh_key(self, name: str, public_key: str) -> SSHKey:
        data = request_json(
            self._client,
            "hetzner",
            "POST",
            "/ssh_keys",
            json={"name": name, "public_key": public_key},
        )
        return _to_ssh_key(data["ssh_key"], self.project)


class HetznerManager:
    """One client per provider project alias."""

    def __init__(self, clients: dict[str, HetznerClient]):
        self.clients = clients

    @classmethod
    def from_store(cls, store) -> "HetznerManager":
        """Build clients for every alias with a stored ``hetzner/<alias>/api_token``.

        :raises NotFoundError: If no provider project is configured
        """
        aliases = store.list_provider_projects()
        if not aliases:
            raise NotFoundError("no Hetzner projects configured (arnor config add hetzner)")
        return cls(
            {
                alias: HetznerClient(
                    store.get_credential("hetzner", alias, "api_token"), project=alias
                )
                for alias in aliases
            }
        )

    def client(self, alias: str) -> HetznerClient:
        if alias not in self.clients:
            raise NotFoundError(f"unknown Hetzner project: {alias}")
        return self.clients[alias]

    def list_servers(self) -> list[CloudServer]:
        servers = []
        for alias, client in self.clients.items():
            try:
                servers.extend(client.list_servers())
            except ProviderAPIError as e:
                raise ProviderAPIError("hetzner", f"listing servers for {alias}: {e}") from e
        return servers

    def get_server(self, name: str) -> CloudServer:
        """Search every project for a server by name.

        :raises NotFoundError: If no project has the server
        """
        for alias, client in self.clients.items():
            try:
                return client.get_server(name)
            except (NotFoundError, ProviderAPIError) as e:
                logger.debug("Server '%s' not in Hetzner project '%s': %s", name, alias, e)
        raise NotFoundError(f"server not found: {name}")

    def list_ssh_keys(self) -> list[SSHKey]:
        keys = []
        for alias, client in self.clients.items():
            try:
                keys.extend(client.list_ssh_keys())
            except ProviderAPIError as e:
                raise ProviderAPIError("hetzner", f"listing SSH keys for {alias}: {e}") from e
        return keys
