"""GitHub operations through the ``gh`` CLI: secrets, workflow files, dispatch."""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Callable

from .errors import ConfigurationError, ProviderAPIError
from .utils import run_cmd

logger = logging.getLogger("arnor.github")

Runner = Callable[..., str]

DEV_WORKFLOW = """\
name: Deploy Dev

on:
  workflow_dispatch:
  push:
    branches: [dev]

env:
  IMAGE_NAME: %(image)s

jobs:
  deploy:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v4

      - name: Login to DockerHub
        uses: docker/login-action@v3
        with:
          username: ${{ secrets.DOCKERHUB_USERNAME }}
          password: ${{ secrets.DOCKERHUB_TOKEN }}

      - name: Build and push
        uses: docker/build-push-action@v6
        with:
          context: .
          push: true
          tags: ${{ env.IMAGE_NAME }}:dev-${{ github.sha }}

      - name: Copy config files to VPS
        uses: appleboy/scp-action@v0.1.7
        with:
          host: ${{ secrets.VPS_HOST }}
          username: ${{ secrets.DEV_VPS_USER }}
          key: ${{ secrets.DEV_VPS_SSH_KEY }}
          source: "docker-compose.yml,.env"
          target: ${{ secrets.DEV_VPS_DEPLOY_PATH }}
          overwrite: true

      - name: Deploy to VPS
        uses: appleboy/ssh-action@v1
        with:
          host: ${{ secrets.VPS_HOST }}
          username: ${{ secrets.DEV_VPS_USER }}
          key: ${{ secrets.DEV_VPS_SSH_KEY }}
          script: |
            cd ${{ secrets.DEV_VPS_DEPLOY_PATH }}
            docker pull ${{ env.IMAGE_NAME }}:dev-${{ github.sha }}
            docker compose down || true
            export IMAGE_TAG=dev-${{ github.sha }}
            docker compose up -d
"""

PROD_WORKFLOW = """\
name: Deploy Prod

on:
  workflow_dispatch:
  push:
    tags: ["v*"]
    branches: [main]

env:
  IMAGE_NAME: %(image)s

jobs:
  deploy:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v4

      - name: Get version from tag
        id: version
        run: echo "tag=${GITHUB_REF#refs/tags/}" >> "$GITHUB_OUTPUT"

      - name: Login to DockerHub
        uses: docker/login-action@v3
        with:
          username: ${{ secrets.DOCKERHUB_USERNAME }}
          password: ${{ secrets.DOCKERHUB_TOKEN }}

      - name: Build and push
        uses: docker/build-push-action@v6
        with:
          context: .
          push: true
          tags: |
            ${{ env.IMAGE_NAME }}:${{ steps.version.outputs.tag }}
            ${{ env.IMAGE_NAME }}:latest

      - name: Copy config files to VPS
        uses: appleboy/scp-action@v0.1.7
        with:
          host: ${{ secrets.VPS_HOST }}
          username: ${{ secrets.PROD_VPS_USER }}
          key: ${{ secrets.PROD_VPS_SSH_KEY }}
          source: "docker-compose.yml,.env"
          target: ${{ secrets.PROD_VPS_DEPLOY_PATH }}
          overwrite: true

      - name: Deploy to VPS
        uses: appleboy/ssh-action@v1
        with:
          host: ${{ secrets.VPS_HOST }}
          username: ${{ secrets.PROD_VPS_USER }}
          key: ${{ secrets.PROD_VPS_SSH_KEY }}
          script: |
            cd ${{ secrets.PROD_VPS_DEPLOY_PATH }}
            docker pull ${{ env.IMAGE_NAME }}:${{ steps.version.outputs.tag }}
            docker compose down || true
            export IMAGE_TAG=${{ steps.version.outputs.tag }}
            docker compose up -d
"""

WORKFLOW_TEMPLATES = {"dev": DEV_WORKFLOW, "prod": PROD_WORKFLOW}


def repo_slug(repo: str) -> str:
    """``https://github.com/owner/name(.git)`` or ``github.com/owner/name`` to ``owner/name``."""
    slug = repo.strip().removeprefix("https://").removeprefix("http://")
    slug = slug.removeprefix("github.com/").removesuffix(".git")
    return slug.strip("/")


def workflow_file(env_name: str) -> str:
    return f"deploy-{env_name}.yml"


def workflow_path(env_name: str) -> str:
    return f".github/workflows/{workflow_file(env_name)}"


def generate_workflow(env_name: str, image: str) -> str:
    """Render the deploy workflow for an environment.

    :param env_name: ``dev`` or ``prod``
    :param image: Docker image name, e.g. ``user/project``
    :raises ConfigurationError: If there is no template for the environment
    """
    template = WORKFLOW_TEMPLATES.get(env_name)
    if template is None:
        raise ConfigurationError(f"unknown environment: {env_name}")
    return template % {"image": image}


def workflow_signature(env_name: str, image: str) -> list[str]:
    """Markers a deploy workflow must contain to be left as is."""
    prefix = env_name.upper()
    return [
        "workflow_dispatch",
        f"IMAGE_NAME: {image}",
        f"secrets.{prefix}_VPS_SSH_KEY",
        f"secrets.{prefix}_VPS_DEPLOY_PATH",
        "docker compose up -d",
    ]


def add_workflow_dispatch(content: str, filename: str) -> str:
    """Insert a ``workflow_dispatch`` trigger under the ``on:`` block.

    :raises ConfigurationError: If the ``on:`` block is not in the expected format
    """
    if "workflow_dispatch" in content:
        return content
    updated = content.replace("on:\n", "on:\n  workflow_dispatch:\n", 1)
    if updated == content:
        raise ConfigurationError(f"could not patch {filename}: unexpected on: block format")
    return updated


@dataclass
class Repo:
    name: str
    name_with_owner: str


class GitHubCLI:
    """Adapter over the authenticated ``gh`` CLI.

    :param runner: Command runner with the ``run_cmd`` signature
    """

    def __init__(self, runner: Runner = run_cmd):
        self._run = runner

    def list_repos(self, limit: int = 50) -> list[Repo]:
        output = self._run(
            "gh", "repo", "list", "--json", "name,nameWithOwner",
            "--limit", str(limit), "--no-archived",
        )
        return [Repo(r["name"], r["nameWithOwner"]) for r in json.loads(output or "[]")]

    def set_secret(self, repo: str, name: str, value: str) -> None:
        self._run("gh", "secret", "set", name, "--repo", repo, "--body", value)

    def list_secrets(self, repo: str) -> list[str]:
        output = self._run("gh", "secret", "list", "--repo", repo, "--json", "name")
        return [s["name"] for s in json.loads(output or "[]")]

    def set_environment_secrets(
        self,
        repo: str,
        env_name: str,
        *,
        deploy_user: str,
        deploy_path: str,
        ssh_key: str,
        port: int,
        host: str,
        dockerhub_username: str,
        dockerhub_token: str,
    ) -> None:
        """Set per-environment and shared deploy secrets on a repository."""
        prefix = env_name.upper()
        secrets = {
            f"{prefix}_VPS_USER": deploy_user,
            f"{prefix}_VPS_DEPLOY_PATH": deploy_path,
            f"{prefix}_VPS_SSH_KEY": ssh_key,
            f"{prefix}_PORT": str(port),
            "VPS_HOST": host,
            "DOCKERHUB_USERNAME": dockerhub_username,
            "DOCKERHUB_TOKEN": dockerhub_token,
        }
        for name, value in secrets.items():
            try:
                self.set_secret(repo, name, value)
            except ProviderAPIError as e:
                raise ProviderAPIError("gh", f"setting secret {name}: {e}") from e

    def default_branch(self, repo: str) -> str:
        return self._run("gh", "api", f"repos/{repo}", "--jq", ".default_branch")

    def branch_exists(self, repo: str, branch: str) -> bool:
        try:
            self._run("gh", "api", f"repos/{repo}/branches/{branch}", "--silent")
        except ProviderAPIError:
            return False
        return True

    def get_file(self, repo: str, path: str, ref: str | None = None) -> str | None:
        """:return: Decoded file content, or None if the file does not exist"""
        endpoint = f"repos/{repo}/contents/{path}"
        if ref:
            endpoint += f"?ref={ref}"
        try:
            encoded = self._run("gh", "api", endpoint, "--jq", ".content")
        except ProviderAPIError:
            return None
        return base64.b64decode(encoded.replace("\n", "").strip()).decode()

    def _file_sha(self, repo: str, path: str, branch: str) -> str:
        try:
            return self._run(
                "gh", "api", f"repos/{repo}/contents/{path}?ref={branch}", "--jq", ".sha"
            )
        except ProviderAPIError:
            return ""

    def push_file(self, repo: str, path: str, content: str, branch: str, message: str) -> None:
        """Create or update a file through the contents API."""
        encoded = base64.b64encode(content.encode()).decode()
        args = [
            "gh", "api", "-X", "PUT", f"repos/{repo}/contents/{path}",
            "-f", f"message={message}",
            "-f", f"content={encoded}",
            "-f", f"branch={branch}",
        ]
        sha = self._file_sha(repo, path, branch)
        if sha:
            args += ["-f", f"sha={sha}"]
        self._run(*args)

    def ensure_workflow(
        self, repo: str, env_name: str, image: str, branch: str | None = None
    ) -> str:
        """Push the deploy workflow unless an up-to-date copy is already present.

        A file that exists but lacks any of the workflow signature markers is
        regenerated in place.

        :return: ``created``, ``updated`` or ``unchanged``
        """
        branch = branch or self.default_branch(repo)
        path = workflow_path(env_name)
        existing = self.get_file(repo, path, branch)
        if existing is not None and all(
            marker in existing for marker in workflow_signature(env_name, image)
        ):
            return "unchanged"
        content = generate_workflow(env_name, image)
        if existing is None:
            self.push_file(repo, path, content, branch, f"Add {env_name} deploy workflow")
            return "created"
        self.push_file(repo, path, content, branch, f"Regenerate {env_name} deploy workflow")
        return "updated"

    def ensure_workflow_dispatch(self, repo: str, env_name: str, image: str) -> str:
        """Make sure the deploy workflow on the default branch can be dispatched.

        :return: ``created``, ``patched`` or ``unchanged``
        :raises ConfigurationError: If the existing file cannot be patched
        """
        branch = self.default_branch(repo)
        path = workflow_path(env_name)
        existing = self.get_file(repo, path, branch)
        if existing is None:
            self.push_file(
                repo,
                path,
                generate_workflow(env_name, image),
                branch,
                f"Add {env_name} deploy workflow with workflow_dispatch",
            )
            return "created"
        updated = add_workflow_dispatch(existing, workflow_file(env_name))
        if updated == existing:
            return "unchanged"
        self.push_file(
            repo, path, updated, branch, f"Add workflow_dispatch trigger to {workflow_file(env_name)}"
        )
        return "patched"

    def trigger_workflow(self, repo: str, file: str, ref: str) -> str:
        """Dispatch a workflow, falling back to the default branch if ``ref`` is missing.

        :return: The ref the workflow was dispatched on
        """
        if not self.branch_exists(repo, ref):
            fallback = self.default_branch(repo)
            logger.info("Branch '%s' not found in %s, using '%s'", ref, repo, fallback)
            ref = fallback
        self._run("gh", "workflow", "run", file, "--repo", repo, "--ref", ref)
        return ref

    def list_runs(self, repo: str, workflow: str, limit: int = 5) -> list[dict]:
        output = self._run(
            "gh", "run", "list", "--repo", repo, "--workflow", workflow,
            "--limit", str(limit),
            "--json", "databaseId,status,conclusion,headBranch,createdAt,url",
        )
        return json.loads(output or "[]")
