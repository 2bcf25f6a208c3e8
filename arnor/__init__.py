"""arnor - provision and deploy web projects onto Hetzner Cloud servers."""

from .cli import app, main
from .errors import (
    ArnorError,
    ConfigurationError,
    InputCancelled,
    NotFoundError,
    ProviderAPIError,
    RemoteExecutionError,
    StepError,
    StorageError,
    ValidationError,
)
from .pipeline import Outcome, Pipeline, RunResult, Step
from .project import SetupParams, setup
from .service import DeployParams, deploy
from .store import SQLiteStore
from .types import (
    CloudServer,
    Config,
    Credential,
    DNSRecord,
    Environment,
    Project,
    Server,
    SSHKey,
)
from .utils import error, log, run_cmd, warn

__all__ = [
    "app",
    "main",
    "SQLiteStore",
    "setup",
    "deploy",
    "SetupParams",
    "DeployParams",
    "Pipeline",
    "Step",
    "Outcome",
    "RunResult",
    "log",
    "warn",
    "error",
    "run_cmd",
    "ArnorError",
    "NotFoundError",
    "ValidationError",
    "StorageError",
    "ConfigurationError",
    "InputCancelled",
    "ProviderAPIError",
    "RemoteExecutionError",
    "StepError",
    "Credential",
    "Server",
    "Environment",
    "Project",
    "Config",
    "DNSRecord",
    "CloudServer",
    "SSHKey",
]
