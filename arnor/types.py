"""Type definitions for arnor."""

from dataclasses import dataclass, field
from typing import Literal

DNSProviderName = Literal["porkbun", "cloudflare"]
EnvName = Literal["dev", "prod"]
CheckStatus = Literal["PASS", "FAIL", "WARN", "SKIP"]


@dataclass
class Credential:
    service: str
    name: str
    key: str
    value: str


@dataclass
class Server:
    """Server known to the local inventory."""

    name: str
    ip: str
    provider_project: str = ""
    provider_id: int = 0


@dataclass
class Environment:
    """Deployment target of a project (e.g. dev or prod)."""

    domain: str
    dns_provider: str
    branch: str = ""
    deploy_path: str = ""
    deploy_user: str = ""
    port: int = 0


@dataclass
class Project:
    name: str
    repo: str
    server: str
    environments: dict[str, Environment] = field(default_factory=dict)


@dataclass
class Config:
    """Snapshot of servers and projects loaded from the store.

    Mutate a loaded snapshot in place and save it back; the store only ever
    upserts, so a freshly built subset would leave other rows untouched.
    """

    provider_projects: list[str] = field(default_factory=list)
    servers: list[Server] = field(default_factory=list)
    projects: list[Project] = field(default_factory=list)

    def find_server(self, name: str) -> Server | None:
        return next((s for s in self.servers if s.name == name), None)

    def find_project(self, name: str) -> Project | None:
        return next((p for p in self.projects if p.name == name), None)

    def upsert_server(self, server: Server) -> Server:
        existing = self.find_server(server.name)
        if existing is None:
            self.servers.append(server)
            return server
        existing.ip = server.ip
        existing.provider_project = server.provider_project
        existing.provider_id = server.provider_id
        return existing

    def upsert_environment(
        self,
        project_name: str,
        env_name: str,
        env: Environment,
        *,
        repo: str = "",
        server: str = "",
    ) -> Project:
        """Set one environment of a project, creating the project if needed.

        Other environments of an existing project are left untouched.

        :param project_name: Project name
        :param env_name: Environment name (dev, prod)
        :param env: Environment to store
        :param repo: Repository used when the project is created
        :param server: Server name used when the project is created
        :return: The created or updated project
        """
        project = self.find_project(project_name)
        if project is None:
            project = Project(name=project_name, repo=repo, server=server)
            self.projects.append(project)
        project.environments[env_name] = env
        return project


@dataclass
class DNSRecord:
    """DNS record as returned by any DNS provider."""

    id: str
    name: str
    type: str
    content: str
    ttl: str = ""


@dataclass
class CloudServer:
    """Server as reported by the cloud provider."""

    id: int
    name: str
    ip: str
    status: str = ""
    server_type: str = ""
    datacenter: str = ""
    location: str = ""
    created: str = ""
    project: str = ""


@dataclass
class SSHKey:
    id: int
    name: str
    fingerprint: str
    public_key: str = ""
    project: str = ""
