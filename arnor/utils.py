"""Logging, local command and HTTP helpers shared by the CLI and workflows."""

import logging
import subprocess
import sys

import httpx
from rich.console import Console
from rich.logging import RichHandler

from .errors import ProviderAPIError

logger = logging.getLogger("arnor")

# Libraries that log every request or channel event at INFO/DEBUG.
QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "paramiko", "fabric", "invoke")


class LogStream:
    """Writable that turns remote command output into ``arnor`` log records.

    Passed as ``out_stream``/``err_stream`` to fabric so output from the host
    lands in the log, one record per non-blank line, instead of the terminal.
    """

    def __init__(self, level: int = logging.DEBUG) -> None:
        self._pending = ""
        self._level = level

    def write(self, text: str) -> None:
        *lines, self._pending = (self._pending + text).split("\n")
        for line in lines:
            if line.strip():
                logger.log(self._level, line)

    def flush(self) -> None:
        if self._pending.strip():
            logger.log(self._level, self._pending)
        self._pending = ""


def setup_logging(level: int | str = logging.INFO) -> None:
    """Route all logging to one rich handler on stderr.

    :param level: Level name or number for arnor's own records
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    handler = RichHandler(
        console=Console(stderr=True),
        log_time_format="[%X]",
        show_path=False,
        markup=False,
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.handlers.clear()
        noisy.setLevel(max(level, logging.WARNING))


def log(msg: str) -> None:
    logger.info(msg)


def warn(msg: str) -> None:
    logger.warning(msg)


def error(msg: str) -> None:
    """Log ``msg`` as an error and exit with status 1."""
    logger.error(msg)
    sys.exit(1)


def run_cmd(*args, check: bool = True, input: str | None = None) -> str:
    """Execute local command and return stdout.

    :param args: Command and arguments
    :param check: Raise when the command exits non-zero
    :param input: Text piped to the command's stdin
    :return: Stripped stdout
    :raises ProviderAPIError: If the command fails and check is set
    """
    logger.debug("$ %s", " ".join(args))
    try:
        result = subprocess.run(args, capture_output=True, text=True, input=input)
    except FileNotFoundError as e:
        raise ProviderAPIError(args[0], f"command not found: {e.filename}") from e
    if check and result.returncode != 0:
        detail = (result.stderr or result.stdout).strip()
        raise ProviderAPIError(args[0], f"{' '.join(args[:3])} failed: {detail}")
    return result.stdout.strip()


def request_json(
    client: httpx.Client, service: str, method: str, url: str, **kwargs
) -> dict | list:
    """Send an HTTP request and decode the JSON body.

    :param client: Client configured with the service base URL and auth
    :param service: Service name used in error messages
    :raises ProviderAPIError: On transport failure, non-2xx status or non-JSON body
    """
    logger.debug("%s %s %s", service, method, url)
    try:
        response = client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        raise ProviderAPIError(service, f"{method} {url}: {e}") from e
    if response.is_error:
        detail = response.text.strip()[:300] or response.reason_phrase
        raise ProviderAPIError(service, f"{method} {url}: {detail}", response.status_code)
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as e:
        raise ProviderAPIError(service, f"{method} {url}: invalid JSON response") from e
