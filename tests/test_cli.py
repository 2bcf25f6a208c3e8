"""Command line entry points, run through the launcher against a temporary store."""

import pytest

from arnor import cli
from arnor.dns_providers import CloudflareProvider, PorkbunProvider
from arnor.errors import ProviderAPIError, ValidationError
from arnor.github import GitHubCLI, workflow_file
from arnor.store import SQLiteStore
from arnor.types import Environment


def run_cli(*tokens):
    try:
        cli.app.meta(list(tokens))
    except SystemExit as e:
        assert not e.code


@pytest.fixture(autouse=True)
def log_levels(monkeypatch):
    levels = []
    monkeypatch.setattr(cli, "setup_logging", levels.append)
    return levels


@pytest.fixture
def db(tmp_path, monkeypatch):
    path = tmp_path / "arnor.db"
    monkeypatch.setenv("ARNOR_DB", str(path))
    return path


def test_config_add_stores_credential(db, capsys):
    run_cli("config", "add", "porkbun", "default", "api_key", "pk1_abc")
    out = capsys.readouterr().out
    assert "Stored porkbun/default/api_key" in out
    assert "verified" not in out
    with SQLiteStore(db) as store:
        assert store.get_credential("porkbun", "default", "api_key") == "pk1_abc"


def test_verbose_flag_is_global(db, log_levels, monkeypatch):
    monkeypatch.delenv("ARNOR_LOG_LEVEL", raising=False)
    run_cli("config", "list", "--verbose")
    run_cli("config", "list")
    assert log_levels == ["DEBUG", "INFO"]


def test_config_add_verifies_complete_set(db, monkeypatch, capsys):
    pings = []
    monkeypatch.setattr(PorkbunProvider, "ping", lambda self: pings.append(self._auth) or "198.51.100.7")

    run_cli("config", "add", "porkbun", "default", "api_key", "pk1_abc")
    assert pings == []
    run_cli("config", "add", "porkbun", "default", "secret_key", "sk1_abc")
    assert pings == [{"apikey": "pk1_abc", "secretapikey": "sk1_abc"}]
    assert "porkbun/default credentials verified" in capsys.readouterr().out


def test_config_add_rejected_credentials(db, monkeypatch):
    def reject(self):
        raise ProviderAPIError("porkbun", "Invalid API key", 400)

    monkeypatch.setattr(PorkbunProvider, "ping", reject)
    run_cli("config", "add", "porkbun", "default", "api_key", "pk1_abc")
    with pytest.raises(ValidationError, match="porkbun/default credentials rejected"):
        run_cli("config", "add", "porkbun", "default", "secret_key", "wrong")


def test_cloudflare_check_uses_account(db, monkeypatch):
    seen = []

    def verify(self, account_id=""):
        seen.append(account_id)
        return "active"

    monkeypatch.setattr(CloudflareProvider, "verify_token", verify)
    run_cli("config", "add", "cloudflare", "default", "api_token", "cf-token")
    assert seen == []
    run_cli("config", "add", "cloudflare", "default", "account_id", "acct1")
    assert seen == ["acct1"]


def test_deploy_dispatches_and_shows_latest_run(db, gh, monkeypatch, capsys):
    with SQLiteStore(db) as store:
        store.set_credential("dockerhub", "default", "username", "hubuser")
        config = store.load_config()
        config.upsert_environment(
            "myapp",
            "dev",
            Environment(domain="myapp.angmar.dev", dns_provider="porkbun", branch="dev", port=3001),
            repo="github.com/acme/myapp",
            server="web-1",
        )
        store.save_config(config)
    gh.runs = [
        {
            "databaseId": 7,
            "status": "queued",
            "conclusion": "",
            "headBranch": "dev",
            "url": "https://github.com/acme/myapp/actions/runs/7",
        }
    ]
    monkeypatch.setattr(cli, "GitHubCLI", lambda: GitHubCLI(runner=gh))

    run_cli("deploy", "myapp", "--env", "dev")

    assert gh.dispatches == [("acme/myapp", workflow_file("dev"), "dev")]
    assert ("gh", "run", "list") in [c[:3] for c in gh.calls]
    out = capsys.readouterr().out
    assert "Latest run on dev: queued" in out
    assert "actions/runs/7" in out
