"""Collaborators and step actions shared by the project and service workflows."""

import logging
from dataclasses import dataclass, field
from typing import Callable

from . import caddy
from .config import DNS_TTL
from .dns_providers import DNSProvider, new_dns_provider, provider_name_for_domain
from .dockerhub import DockerHubClient
from .domains import NSLookup, matching_records, root_domain, split_domain, www_name
from .errors import NotFoundError
from .github import GitHubCLI
from .hetzner import HetznerManager
from .pipeline import best_effort
from .remote import RemoteSession, open_session
from .types import CloudServer, Config, Server

logger = logging.getLogger("arnor.steps")


@dataclass
class Collaborators:
    """External systems a workflow talks to.

    Factories are called lazily so a run only touches what it needs.
    """

    find_cloud_server: Callable[[str], CloudServer]
    dns_provider: Callable[[str], DNSProvider]
    registry: Callable[[], DockerHubClient]
    github: GitHubCLI
    open_session: Callable[..., RemoteSession] = open_session
    lookup_ns: NSLookup | None = None

    @classmethod
    def from_store(cls, store) -> "Collaborators":
        return cls(
            find_cloud_server=lambda name: HetznerManager.from_store(store).get_server(name),
            dns_provider=lambda name: new_dns_provider(name, store),
            registry=lambda: DockerHubClient.from_store(store),
            github=GitHubCLI(),
        )


@dataclass
class WorkflowRun:
    """State shared by the steps of one workflow run."""

    store: object
    config: Config
    collaborators: Collaborators
    server_name: str = ""
    domain: str = ""
    port: int = 0
    peon_key: str = ""
    prompt: object = None
    server: Server | None = None
    provider: DNSProvider | None = None
    session: RemoteSession | None = None
    warnings: list[str] = field(default_factory=list)

    def close(self) -> None:
        if self.session is not None:
            self.session.close()
            self.session = None


def resolve_server(run: WorkflowRun) -> None:
    """Use the inventory entry, or look the server up in the cloud and record it."""
    server = run.config.find_server(run.server_name)
    if server is None:
        try:
            cloud = run.collaborators.find_cloud_server(run.server_name)
        except NotFoundError as e:
            raise NotFoundError(
                f"server {run.server_name!r} not found in config or Hetzner: {e}"
            ) from e
        server = run.config.upsert_server(
            Server(
                name=cloud.name,
                ip=cloud.ip,
                provider_project=cloud.project,
                provider_id=cloud.id,
            )
        )
        run.store.save_config(run.config)
        logger.info("Added server '%s' (%s) to inventory", server.name, server.ip)
    run.server = server


def resolve_dns_provider(run: WorkflowRun) -> None:
    name = provider_name_for_domain(run.domain, run.config, run.collaborators.lookup_ns)
    run.provider = run.collaborators.dns_provider(name)


def open_peon_session(run: WorkflowRun) -> None:
    """Open the peon session reused by every remote step of the run.

    :raises NotFoundError: If no key was given and the host was never bootstrapped
    """
    key = run.peon_key
    if not key:
        try:
            key = run.store.get_peon_key(run.server.ip)
        except NotFoundError as e:
            raise NotFoundError(f"{e} (run 'arnor server init {run.server.name}' first)") from e
    run.session = run.collaborators.open_session(run.server.ip, key, prompt=run.prompt)


def write_caddy_config(run: WorkflowRun) -> None:
    content = caddy.render_site(run.domain, run.port, run.provider.name)
    caddy.deploy_site(run.session, run.domain, content)


def sync_dns(
    provider: DNSProvider,
    domain: str,
    ip: str,
    *,
    lookup: NSLookup | None = None,
    warnings: list[str] | None = None,
) -> str:
    """Point ``domain`` at ``ip``: drop matching records, create an A record, then
    a best-effort ``www`` CNAME.

    :return: The A record id
    """
    root = root_domain(domain, lookup)
    subname = split_domain(domain, root)
    for record in matching_records(provider.list_records(root), domain):
        logger.info("Deleting %s record %s -> %s", record.type, record.name, record.content)
        provider.delete_record(root, record.id)
    record_id = provider.create_record(root, subname, "A", ip, DNS_TTL)
    best_effort(
        "creating www CNAME",
        provider.create_record,
        root,
        www_name(subname),
        "CNAME",
        domain,
        DNS_TTL,
        warnings=warnings,
    )
    return record_id


def create_dns_records(run: WorkflowRun) -> None:
    sync_dns(
        run.provider,
        run.domain,
        run.server.ip,
        lookup=run.collaborators.lookup_ns,
        warnings=run.warnings,
    )
