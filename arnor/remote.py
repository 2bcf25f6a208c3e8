"""Remote command execution over SSH (fabric/paramiko)."""

import base64
import io
import logging
import shlex

import paramiko
from invoke.exceptions import AuthFailure, Failure
from fabric import Connection

from .config import SSH_CONNECT_TIMEOUT
from .errors import RemoteExecutionError, ValidationError
from .utils import LogStream

logger = logging.getLogger("arnor.remote")

KEY_TYPES = (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey)


def _parse_key(text: str, passphrase: str | None) -> paramiko.PKey:
    last_error: Exception | None = None
    for key_type in KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(text), password=passphrase)
        except paramiko.PasswordRequiredException:
            raise
        except (paramiko.SSHException, ValueError) as e:
            last_error = e
    raise ValidationError(f"parsing SSH private key: {last_error}")


def load_private_key(text: str, prompt=None, label: str = "SSH key") -> paramiko.PKey:
    """Parse PEM/OpenSSH private key text, asking for a passphrase if encrypted.

    :param text: Private key material
    :param prompt: InputRequest used when the key is encrypted
    :param label: Key description shown in the passphrase prompt
    :raises ValidationError: If the key cannot be parsed
    :raises InputCancelled: If the operator cancels the passphrase prompt
    """
    try:
        return _parse_key(text, None)
    except paramiko.PasswordRequiredException:
        if prompt is None:
            raise ValidationError(f"{label} is encrypted and no passphrase was provided")
    passphrase = prompt.prompt(f"Passphrase for {label}", secret=True)
    try:
        return _parse_key(text, passphrase)
    except paramiko.SSHException as e:
        raise ValidationError(f"decrypting {label}: {e}") from e


class RemoteSession:
    """One authenticated SSH session, opened lazily and reused for every command.

    Non-zero exits and transport failures raise RemoteExecutionError.
    """

    def __init__(
        self,
        host: str,
        private_key: str | None = None,
        *,
        user: str = "peon",
        port: int = 22,
        pkey: paramiko.PKey | None = None,
        connect_timeout: int = SSH_CONNECT_TIMEOUT,
        prompt=None,
    ):
        if pkey is None:
            if not private_key:
                raise ValidationError(f"no SSH key given for {user}@{host}")
            pkey = load_private_key(private_key, prompt)
        self.host = host
        self.user = user
        self._conn = Connection(
            host,
            user=user,
            port=port,
            connect_timeout=connect_timeout,
            connect_kwargs={"pkey": pkey, "look_for_keys": False, "allow_agent": False},
        )

    def __enter__(self) -> "RemoteSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        if self._conn.is_connected:
            return
        try:
            self._conn.open()
        except (paramiko.SSHException, OSError) as e:
            raise RemoteExecutionError(
                "ssh", f"connecting to {self.user}@{self.host}: {e}"
            ) from e

    def close(self) -> None:
        self._conn.close()

    def _exec(self, cmd: str, *, show_output: bool, sudo_password: str | None = None):
        self.open()
        logger.debug("[%s] $ %s", self.host, cmd)
        kwargs = {"warn": True}
        if show_output:
            stream = LogStream()
            kwargs.update(out_stream=stream, err_stream=stream)
        else:
            kwargs["hide"] = True
        try:
            if sudo_password is not None:
                result = self._conn.sudo(cmd, password=sudo_password, **kwargs)
            else:
                result = self._conn.run(cmd, in_stream=False, **kwargs)
        except AuthFailure as e:
            raise RemoteExecutionError(
                cmd, "sudo authentication failed", exit_code=e.result.exited
            ) from e
        except Failure as e:
            raise RemoteExecutionError(
                cmd,
                exit_code=e.result.exited,
                stdout=e.result.stdout,
                stderr=e.result.stderr,
            ) from e
        except (paramiko.SSHException, OSError) as e:
            raise RemoteExecutionError(cmd, f"transport failure: {e}") from e
        finally:
            if show_output:
                stream.flush()
        if result.failed:
            raise RemoteExecutionError(
                cmd, exit_code=result.exited, stdout=result.stdout, stderr=result.stderr
            )
        return result

    def run(self, cmd: str) -> None:
        """Run a command, routing its output to the debug log."""
        self._exec(cmd, show_output=True)

    def output(self, cmd: str) -> str:
        """Run a command and return its stdout."""
        return self._exec(cmd, show_output=False).stdout

    def sudo_output(self, cmd: str, password: str) -> str:
        """Run a command through ``sudo -S``, answering the password prompt."""
        return self._exec(cmd, show_output=False, sudo_password=password).stdout

    def write_file(self, path: str, content: str) -> None:
        """Stream ``content`` into ``path`` through ``sudo tee``."""
        encoded = base64.b64encode(content.encode()).decode()
        self._exec(
            f"echo '{encoded}' | base64 -d | sudo tee {shlex.quote(path)} > /dev/null",
            show_output=False,
        )


def open_session(host: str, private_key: str, prompt=None) -> RemoteSession:
    """Open a peon session to ``host``."""
    session = RemoteSession(host, private_key, prompt=prompt)
    session.open()
    return session
