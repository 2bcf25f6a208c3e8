"""Process configuration: environment files, paths and defaults."""

import os
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_DEV_DOMAIN = "angmar.dev"
DNS_TTL = "600"
SSH_CONNECT_TIMEOUT = 10
PORT_FLOOR = 3000

# Credential services and the keys each one stores under the "default" name.
CREDENTIAL_FIELDS = {
    "porkbun": ["api_key", "secret_key"],
    "cloudflare": ["account_id", "api_token"],
    "dockerhub": ["username", "password", "token"],
    "hetzner": ["api_token"],
}


def load_env() -> None:
    """Load ~/.dotfiles/.env if present, otherwise ./.env."""
    dotfile = Path.home() / ".dotfiles" / ".env"
    if dotfile.exists():
        load_dotenv(dotfile)
    else:
        load_dotenv()


def db_path() -> Path:
    """:return: Store path from ARNOR_DB, default ~/.config/arnor/arnor.db"""
    override = os.getenv("ARNOR_DB")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "arnor" / "arnor.db"


def dev_domain() -> str:
    return os.getenv("ARNOR_DEV_DOMAIN", DEFAULT_DEV_DOMAIN)


def log_level() -> str:
    return os.getenv("ARNOR_LOG_LEVEL", "INFO")


def peon_key_path(host: str) -> Path:
    """:return: Local path for the peon private key of a host (port stripped)"""
    host_name = host.split(":", 1)[0]
    return Path.home() / ".ssh" / f"peon_ed25519_{host_name}"
