"""Service deploy workflow against fake collaborators."""

import pytest

from arnor.errors import StepError, ValidationError
from arnor.service import DeployParams, deploy
from arnor.types import Environment, Server

from .conftest import PEON_KEY, SERVER_IP

COMPOSE = """\
services:
  uptime-kuma:
    image: louislam/uptime-kuma:1
    ports:
      - "3005:3001"
"""


@pytest.fixture
def compose_file(tmp_path):
    path = tmp_path / "docker-compose.yml"
    path.write_text(COMPOSE)
    return path


def _params(compose_file, **overrides) -> DeployParams:
    values = dict(
        service="uptime-kuma",
        server="web-1",
        domain="status.example.com",
        port=3005,
        compose_file=str(compose_file),
        peon_key=PEON_KEY,
    )
    values.update(overrides)
    return DeployParams(**values)


def test_deploy_end_to_end(store, collaborators, session, dns_provider, compose_file):
    progress = []
    result = deploy(
        _params(compose_file), store, collaborators, on_progress=lambda *args: progress.append(args)
    )

    assert result.completed == 8
    assert [p[:2] for p in progress] == [(i, 8) for i in range(1, 9)]
    assert session.files["/opt/uptime-kuma/docker-compose.yml"] == COMPOSE
    assert "cd /opt/uptime-kuma && docker compose up -d" in session.commands
    assert session.commands.index("sudo mkdir -p /opt/uptime-kuma") < session.commands.index(
        "write /opt/uptime-kuma/docker-compose.yml"
    )
    assert "reverse_proxy localhost:3005" in session.files["/etc/caddy/conf.d/status.example.com.caddy"]
    assert ("example.com", "status", "A", SERVER_IP, "600") in dns_provider.created
    assert session.closed

    config = store.load_config()
    assert config.find_server("web-1") == Server("web-1", SERVER_IP, "default", 42)
    project = config.find_project("uptime-kuma")
    assert project.repo == ""
    assert project.environments == {
        "prod": Environment(
            domain="status.example.com",
            dns_provider="porkbun",
            deploy_path="/opt/uptime-kuma",
            deploy_user="peon",
            port=3005,
        )
    }


def test_deploy_uses_stored_peon_key(store, collaborators, compose_file):
    store.set_peon_key(SERVER_IP, "STORED", "/tmp/k")
    deploy(_params(compose_file, peon_key=""), store, collaborators)
    assert collaborators.opened == [(SERVER_IP, "STORED")]


def test_missing_compose_file(store, collaborators, tmp_path):
    with pytest.raises(ValidationError, match="compose file"):
        deploy(_params(tmp_path / "missing.yml"), store, collaborators)


def test_compose_failure_stops_before_caddy(store, collaborators, session, dns_provider, compose_file):
    session.fail_on = ["docker compose up"]
    with pytest.raises(StepError) as exc_info:
        deploy(_params(compose_file), store, collaborators)
    assert exc_info.value.step == 5
    assert not any(path.startswith("/etc/caddy") for path in session.files)
    assert dns_provider.created == []
    assert session.closed
