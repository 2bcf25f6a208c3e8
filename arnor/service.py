"""Service deploy: a docker-compose service behind Caddy with DNS."""

import logging
from dataclasses import dataclass
from pathlib import Path

from .errors import ValidationError
from .pipeline import Pipeline, ProgressFunc, RunResult, Step
from .steps import (
    Collaborators,
    WorkflowRun,
    create_dns_records,
    open_peon_session,
    resolve_dns_provider,
    resolve_server,
    write_caddy_config,
)
from .types import Environment

logger = logging.getLogger("arnor.service")

SERVICE_USER = "peon"
SERVICE_ENV = "prod"


@dataclass
class DeployParams:
    service: str
    server: str
    domain: str
    port: int
    compose_file: str
    peon_key: str = ""


@dataclass
class DeployRun(WorkflowRun):
    service: str = ""
    compose: str = ""

    @property
    def deploy_path(self) -> str:
        return f"/opt/{self.service}"


def _create_deploy_dir(run: DeployRun) -> None:
    run.session.run(f"sudo mkdir -p {run.deploy_path}")
    run.session.run(f"sudo chown {SERVICE_USER}:{SERVICE_USER} {run.deploy_path}")


def _upload_compose(run: DeployRun) -> None:
    path = f"{run.deploy_path}/docker-compose.yml"
    run.session.write_file(path, run.compose)
    run.session.run(f"sudo chown {SERVICE_USER}:{SERVICE_USER} {path}")


def _compose_up(run: DeployRun) -> None:
    run.session.run(f"cd {run.deploy_path} && docker compose up -d")


def _save_environment(run: DeployRun) -> None:
    env = Environment(
        domain=run.domain,
        dns_provider=run.provider.name,
        deploy_path=run.deploy_path,
        deploy_user=SERVICE_USER,
        port=run.port,
    )
    run.config.upsert_environment(
        run.service, SERVICE_ENV, env, repo="", server=run.server.name
    )
    run.store.save_config(run.config)


def _connect_and_create_dir(run: DeployRun) -> None:
    open_peon_session(run)
    _create_deploy_dir(run)


def deploy_pipeline() -> Pipeline:
    return Pipeline(
        [
            Step("Server found", resolve_server, context="looking up server"),
            Step("DNS provider detected", resolve_dns_provider, context="detecting DNS provider"),
            Step("Deploy directory created", _connect_and_create_dir, context="creating deploy dir"),
            Step("docker-compose.yml uploaded", _upload_compose, context="uploading compose file"),
            Step("Containers started", _compose_up, context="running docker compose up"),
            Step("Caddy config written", write_caddy_config, context="writing Caddy config"),
            Step("DNS records created", create_dns_records, context="creating DNS records"),
            Step("Config updated", _save_environment, context="saving config"),
        ]
    )


def deploy(
    params: DeployParams,
    store,
    collaborators: Collaborators | None = None,
    on_progress: ProgressFunc | None = None,
    prompt=None,
) -> RunResult:
    """Deploy a third-party compose service to ``/opt/<service>`` on a server.

    The service is recorded as a project with a single ``prod`` environment
    deployed by the peon user.

    :param params: Service name, server, domain, port and local compose file
    :param store: Credential/config store
    :param collaborators: External systems, built from the store by default
    :param on_progress: Called as ``(step, 8, message)`` after each step
    :raises ValidationError: If the compose file cannot be read
    :raises StepError: On the first failing step
    """
    try:
        compose = Path(params.compose_file).read_text()
    except OSError as e:
        raise ValidationError(f"reading compose file {params.compose_file}: {e}") from e

    run = DeployRun(
        store=store,
        config=store.load_config(),
        collaborators=collaborators or Collaborators.from_store(store),
        server_name=params.server,
        domain=params.domain,
        port=params.port,
        peon_key=params.peon_key,
        prompt=prompt,
        service=params.service,
        compose=compose,
    )
    try:
        result = deploy_pipeline().run(run, on_progress)
    finally:
        run.close()
    result.warnings.extend(run.warnings)
    return result
