"""Error types raised by arnor operations.

Library code raises these; the CLI turns them into a logged error and exit code.
"""


class ArnorError(Exception):
    """Base class for all arnor errors."""


class NotFoundError(ArnorError):
    """A credential, server, project or remote resource does not exist.

    Usually recoverable: the caller prompts for the value or falls back to
    another lookup path.
    """


class ValidationError(ArnorError):
    """Malformed user input (e.g. a non-numeric port)."""


class StorageError(ArnorError):
    """The local store could not be read or written."""


class ConfigurationError(ArnorError):
    """Existing state cannot be safely updated and needs manual attention."""


class InputCancelled(ArnorError):
    """The operator cancelled an interactive prompt."""


class ProviderAPIError(ArnorError):
    """An external service (Hetzner, Porkbun, Cloudflare, DockerHub, GitHub) failed."""

    def __init__(self, service: str, message: str, status: int | None = None):
        self.service = service
        self.status = status
        detail = f"{service}: {message}"
        if status is not None:
            detail += f" (HTTP {status})"
        super().__init__(detail)


class RemoteExecutionError(ArnorError):
    """A remote command exited non-zero or the SSH transport failed."""

    def __init__(
        self,
        command: str,
        message: str = "",
        *,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        detail = message or stderr.strip() or stdout.strip()
        if not detail:
            detail = f"exit status {exit_code}" if exit_code is not None else "failed"
        super().__init__(f"running {command!r}: {detail}")


class StepError(ArnorError):
    """A pipeline step failed; wraps the underlying cause with the step context."""

    def __init__(self, context: str, cause: Exception, step: int | None = None):
        self.context = context
        self.cause = cause
        self.step = step
        super().__init__(f"{context}: {cause}")
