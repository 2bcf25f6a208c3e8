"""Server bootstrap: create the peon deploy user and persist its key."""

import base64
import logging
import os
from pathlib import Path
from textwrap import dedent

from .config import peon_key_path
from .errors import NotFoundError, RemoteExecutionError, ValidationError
from .remote import RemoteSession, load_private_key

logger = logging.getLogger("arnor.peon")

KEY_DELIMITER = "──────────────────────────────────────────────"

LOCAL_KEY_NAMES = ["id_ed25519", "id_rsa"]

BOOTSTRAP_SCRIPT = dedent(f"""
    set -euo pipefail
    PEON_USER=peon
    PEON_HOME=/home/$PEON_USER
    PEON_SSH_DIR=$PEON_HOME/.ssh
    PEON_KEY=$PEON_SSH_DIR/id_ed25519
    SUDOERS_FILE=/etc/sudoers.d/$PEON_USER

    if [[ "$EUID" -ne 0 ]]; then
        echo "This script must be run as root." >&2
        exit 1
    fi

    if ! command -v docker &>/dev/null; then
        echo "Installing Docker..."
        apt-get update -qq
        apt-get install -y -qq ca-certificates curl gnupg lsb-release
        install -m 0755 -d /etc/apt/keyrings
        curl -fsSL https://download.docker.com/linux/ubuntu/gpg | gpg --dearmor -o /etc/apt/keyrings/docker.gpg
        chmod a+r /etc/apt/keyrings/docker.gpg
        echo "deb [arch=$(dpkg --print-architecture) signed-by=/etc/apt/keyrings/docker.gpg] https://download.docker.com/linux/ubuntu $(lsb_release -cs) stable" > /etc/apt/sources.list.d/docker.list
        apt-get update -qq
        apt-get install -y -qq docker-ce docker-ce-cli containerd.io docker-compose-plugin
    fi

    if ! id "$PEON_USER" &>/dev/null; then
        useradd --create-home --home-dir "$PEON_HOME" --shell /bin/bash --system "$PEON_USER"
    fi
    if ! groups "$PEON_USER" | grep -q "\\bdocker\\b"; then
        usermod -aG docker "$PEON_USER"
    fi

    if [[ ! -f "$SUDOERS_FILE" ]]; then
        echo "$PEON_USER ALL=(ALL) NOPASSWD:ALL" > "$SUDOERS_FILE"
        chmod 0440 "$SUDOERS_FILE"
        if ! visudo -cf "$SUDOERS_FILE"; then
            rm "$SUDOERS_FILE"
            echo "Sudoers file validation failed." >&2
            exit 1
        fi
    fi

    mkdir -p "$PEON_SSH_DIR"
    chmod 700 "$PEON_SSH_DIR"
    chown "$PEON_USER:$PEON_USER" "$PEON_SSH_DIR"
    if [[ ! -f "$PEON_KEY" ]]; then
        ssh-keygen -t ed25519 -f "$PEON_KEY" -N "" -C "$PEON_USER@$(hostname)"
        chown "$PEON_USER:$PEON_USER" "$PEON_KEY" "$PEON_KEY.pub"
        chmod 600 "$PEON_KEY"
        chmod 644 "$PEON_KEY.pub"
    fi

    AUTHORIZED_KEYS=$PEON_SSH_DIR/authorized_keys
    PUBLIC_KEY=$(cat "$PEON_KEY.pub")
    if [[ ! -f "$AUTHORIZED_KEYS" ]] || ! grep -qF "$PUBLIC_KEY" "$AUTHORIZED_KEYS"; then
        echo "$PUBLIC_KEY" >> "$AUTHORIZED_KEYS"
        chown "$PEON_USER:$PEON_USER" "$AUTHORIZED_KEYS"
        chmod 600 "$AUTHORIZED_KEYS"
    fi

    echo "peon setup complete"
    echo "{KEY_DELIMITER}"
    cat "$PEON_KEY"
    echo "{KEY_DELIMITER}"
""").strip()


def split_host(host: str) -> tuple[str, int]:
    """``1.2.3.4:2222`` to ``("1.2.3.4", 2222)``; the port defaults to 22."""
    name, _, port = host.partition(":")
    if not port:
        return name, 22
    if not port.isdigit():
        raise ValidationError(f"invalid port in host: {host}")
    return name, int(port)


def local_key(prompt=None, ssh_dir: Path | None = None):
    """Load the operator's default SSH key, asking for a passphrase if needed.

    :raises NotFoundError: If none of the default keys can be loaded
    """
    ssh_dir = ssh_dir or Path.home() / ".ssh"
    for name in LOCAL_KEY_NAMES:
        path = ssh_dir / name
        if not path.exists():
            continue
        try:
            pkey = load_private_key(path.read_text(), prompt, label=str(path))
        except ValidationError as e:
            logger.debug("Skipping '%s': %s", path, e)
            continue
        logger.info("Using SSH key: '%s'", path)
        return pkey
    raise NotFoundError(
        f"no usable SSH key in {ssh_dir} (tried: {', '.join(LOCAL_KEY_NAMES)})"
    )


def extract_private_key(output: str) -> str:
    """Return the key printed between the first two delimiter lines.

    :raises ValidationError: If the delimiters are missing or the block is empty
    """
    parts = output.split(KEY_DELIMITER)
    if len(parts) < 3:
        raise ValidationError("could not find private key delimiters in output")
    key = parts[1].strip()
    if not key:
        raise ValidationError("private key block is empty")
    return key


def bootstrap_command() -> str:
    encoded = base64.b64encode(BOOTSTRAP_SCRIPT.encode()).decode()
    return f"bash -c 'echo {encoded} | base64 -d | bash 2>&1'"


def run_bootstrap(
    host: str,
    user: str = "root",
    sudo_password: str = "",
    prompt=None,
    ssh_dir: Path | None = None,
) -> str:
    """Bootstrap the peon user on a fresh host and return its private key.

    :param host: Host or ``host:port``
    :param user: Login user; non-root users run the script through sudo
    :param sudo_password: Password for ``sudo -S`` when ``user`` is not root
    :param prompt: InputRequest for the local key passphrase
    :raises RemoteExecutionError: If the script fails
    """
    name, port = split_host(host)
    pkey = local_key(prompt, ssh_dir)
    with RemoteSession(name, user=user, port=port, pkey=pkey) as session:
        cmd = bootstrap_command()
        try:
            if user == "root":
                output = session.output(cmd)
            else:
                output = session.sudo_output(cmd, sudo_password)
        except RemoteExecutionError as e:
            raise RemoteExecutionError(
                "peon bootstrap", f"remote execution failed:\n{e.stdout or e.stderr}"
            ) from e
    return extract_private_key(output)


def save_peon_key(store, host: str, key: str, path: Path | None = None) -> Path:
    """Write the key to ``~/.ssh/peon_ed25519_<host>`` (0600) and record it in the store."""
    ip, _ = split_host(host)
    path = path or peon_key_path(host)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(key + "\n")
    os.chmod(path, 0o600)
    store.set_peon_key(ip, key, str(path))
    logger.info("Saved peon key to '%s'", path)
    return path
