"""Caddy site rendering, deploy and install."""

import pytest

from arnor import caddy
from arnor.errors import RemoteExecutionError, StepError

from .conftest import FakeSession


def test_render_prod_site_has_www_redirect():
    content = caddy.render_site("example.com", 3000, "porkbun", dev_suffix="angmar.dev")
    assert content.startswith("example.com {\n\treverse_proxy localhost:3000\n}\n")
    assert "www.example.com {\n\tredir https://example.com{uri} permanent\n}" in content
    assert "tls" not in content


def test_render_dev_site_has_no_redirect():
    content = caddy.render_site("myapp.angmar.dev", 3001, "porkbun", dev_suffix="angmar.dev")
    assert content == "myapp.angmar.dev {\n\treverse_proxy localhost:3001\n}\n"


def test_render_cloudflare_site_uses_dns_challenge():
    content = caddy.render_site("example.com", 3000, "cloudflare", dev_suffix="angmar.dev")
    assert content.count("dns cloudflare {env.CF_API_TOKEN}") == 2


def test_dev_suffix_itself_is_not_dev():
    assert not caddy.is_dev_domain("angmar.dev", "angmar.dev")
    assert caddy.is_dev_domain("x.angmar.dev", "angmar.dev")


def test_deploy_site_writes_validates_reloads():
    session = FakeSession()
    caddy.deploy_site(session, "example.com", "example.com {}\n")
    assert session.files == {"/etc/caddy/conf.d/example.com.caddy": "example.com {}\n"}
    assert session.commands[-2].startswith("sudo caddy validate")
    assert session.commands[-1] == "sudo systemctl reload caddy"


def test_deploy_site_validation_failure():
    session = FakeSession(fail_on=["caddy validate"])
    with pytest.raises(RemoteExecutionError, match="validation failed"):
        caddy.deploy_site(session, "example.com", "broken")
    assert "sudo systemctl reload caddy" not in session.commands


def test_deploy_site_reload_failure_includes_journal():
    session = FakeSession(
        outputs={"journalctl": "caddy[1]: address already in use\n"},
        fail_on=["systemctl reload"],
    )
    with pytest.raises(RemoteExecutionError) as exc_info:
        caddy.deploy_site(session, "example.com", "example.com {}\n")
    assert "address already in use" in str(exc_info.value)


def test_install_reports_eight_steps_and_writes_override():
    session = FakeSession()
    progress = []
    caddy.install(session, "cf-token", on_progress=lambda *args: progress.append(args))
    assert [p[0] for p in progress] == list(range(1, 9))
    assert {p[1] for p in progress} == {8}
    assert session.files[caddy.CADDYFILE] == caddy.ROOT_CADDYFILE
    assert 'CF_API_TOKEN=cf-token' in session.files[
        "/etc/systemd/system/caddy.service.d/cloudflare.conf"
    ]
    # unit file exists on the fake host
    assert "/etc/systemd/system/caddy.service" not in session.files


def test_install_writes_unit_when_missing_and_skips_override():
    session = FakeSession(fail_on=["test -f /etc/systemd/system/caddy.service"])
    caddy.install(session)
    assert session.files["/etc/systemd/system/caddy.service"] == caddy.SERVICE_UNIT
    assert not any("cloudflare.conf" in path for path in session.files)


def test_install_keeps_existing_caddyfile():
    session = FakeSession(outputs={"cat /etc/caddy/Caddyfile": "import conf.d/*\n"})
    caddy.install(session)
    assert caddy.CADDYFILE not in session.files


def test_install_failure_names_step():
    session = FakeSession(fail_on=["curl -fsSL"])
    with pytest.raises(StepError) as exc_info:
        caddy.install(session)
    assert exc_info.value.step == 1
    assert str(exc_info.value).startswith("downloading caddy:")
