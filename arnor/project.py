"""Project setup: one environment of a containerised GitHub project on a server."""

import logging
from dataclasses import dataclass

from .dockerhub import ci_token
from .github import repo_slug
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

logger = logging.getLogger("arnor.project")

TOTAL_STEPS = 9


@dataclass
class SetupParams:
    project: str
    repo: str
    server: str
    env_name: str
    domain: str
    port: int
    peon_key: str = ""


def deploy_user_name(project: str, env_name: str) -> str:
    return f"{project}-dev-deploy" if env_name == "dev" else f"{project}-deploy"


def deploy_path(project: str, env_name: str) -> str:
    return f"/opt/{project}-dev" if env_name == "dev" else f"/opt/{project}"


def branch_for(env_name: str) -> str:
    return "main" if env_name == "prod" else "dev"


def ssh_setup_commands(user: str, path: str) -> list[str]:
    """Idempotent commands creating the deploy user, its directory and keypair."""
    ssh_dir = f"/home/{user}/.ssh"
    return [
        f"sudo useradd -m -s /bin/bash {user} 2>/dev/null || true",
        f"sudo usermod -aG docker {user} 2>/dev/null || true",
        f"sudo mkdir -p {path}",
        f"sudo chown {user}:{user} {path}",
        f"sudo mkdir -p {ssh_dir}",
        f"sudo ssh-keygen -t ed25519 -f {ssh_dir}/id_ed25519 -N '' -q <<< y 2>/dev/null || true",
        f"sudo cp {ssh_dir}/id_ed25519.pub {ssh_dir}/authorized_keys",
        f"sudo chown -R {user}:{user} {ssh_dir}",
        f"sudo chmod 700 {ssh_dir}",
        f"sudo chmod 600 {ssh_dir}/authorized_keys",
    ]


@dataclass
class SetupRun(WorkflowRun):
    params: SetupParams | None = None
    image: str = ""
    deploy_user: str = ""
    deploy_path: str = ""
    deploy_key: str = ""


def _ensure_registry_repo(run: SetupRun) -> None:
    username = run.store.get_credential("dockerhub", "default", "username")
    run.collaborators.registry().ensure_repo(username, run.params.project)
    run.image = f"{username}/{run.params.project}"


def _setup_deploy_user(run: SetupRun) -> None:
    for cmd in ssh_setup_commands(run.deploy_user, run.deploy_path):
        run.session.run(cmd)
    run.deploy_key = run.session.output(
        f"sudo cat /home/{run.deploy_user}/.ssh/id_ed25519"
    ).strip()


def _configure_github(run: SetupRun) -> None:
    repo = repo_slug(run.params.repo)
    github = run.collaborators.github
    github.set_environment_secrets(
        repo,
        run.params.env_name,
        deploy_user=run.deploy_user,
        deploy_path=run.deploy_path,
        ssh_key=run.deploy_key,
        port=run.port,
        host=run.server.ip,
        dockerhub_username=run.store.get_credential("dockerhub", "default", "username"),
        dockerhub_token=ci_token(run.store),
    )
    status = github.ensure_workflow(repo, run.params.env_name, run.image)
    logger.info("Workflow %s: %s", repo, status)


def _save_environment(run: SetupRun) -> None:
    env = Environment(
        domain=run.domain,
        dns_provider=run.provider.name,
        branch=branch_for(run.params.env_name),
        deploy_path=run.deploy_path,
        deploy_user=run.deploy_user,
        port=run.port,
    )
    run.config.upsert_environment(
        run.params.project,
        run.params.env_name,
        env,
        repo=run.params.repo,
        server=run.server.name,
    )
    run.store.save_config(run.config)


def setup_pipeline() -> Pipeline:
    return Pipeline(
        [
            Step("Server found", resolve_server, context="looking up server"),
            Step("DNS provider detected", resolve_dns_provider, context="detecting DNS provider"),
            Step("DockerHub repo ready", _ensure_registry_repo, context="creating DockerHub repo"),
            Step("Connected as peon", open_peon_session, context="peon key"),
            Step("Deploy user set up", _setup_deploy_user, context="SSH setup"),
            Step("Caddy config written", write_caddy_config, context="writing Caddy config"),
            Step("DNS records created", create_dns_records, context="creating DNS records"),
            Step("GitHub secrets and workflow set", _configure_github, context="setting GitHub secrets"),
            Step("Config updated", _save_environment, context="saving config"),
        ]
    )


def new_run(
    params: SetupParams,
    store,
    collaborators: Collaborators | None = None,
    prompt=None,
) -> SetupRun:
    return SetupRun(
        store=store,
        config=store.load_config(),
        collaborators=collaborators or Collaborators.from_store(store),
        server_name=params.server,
        domain=params.domain,
        port=params.port,
        peon_key=params.peon_key,
        prompt=prompt,
        params=params,
        deploy_user=deploy_user_name(params.project, params.env_name),
        deploy_path=deploy_path(params.project, params.env_name),
    )


def setup(
    params: SetupParams,
    store,
    collaborators: Collaborators | None = None,
    on_progress: ProgressFunc | None = None,
    prompt=None,
) -> RunResult:
    """Create or update one environment of a project.

    Every step is safe to repeat; re-running after a failure picks up where
    the previous run stopped.

    :param params: Project, repository, server, environment, domain and port
    :param store: Credential/config store
    :param collaborators: External systems, built from the store by default
    :param on_progress: Called as ``(step, 9, message)`` after each step
    :param prompt: InputRequest used for key passphrases
    :raises StepError: On the first failing step
    """
    run = new_run(params, store, collaborators, prompt)
    try:
        result = setup_pipeline().run(run, on_progress)
    finally:
        run.close()
    result.warnings.extend(run.warnings)
    return result
