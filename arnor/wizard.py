"""Phase state machine for the interactive ``project create`` flow.

The state is immutable; each transition returns a new state. Rendering and
input capture live in the CLI, and the setup itself runs in ``project.setup``.
"""

from dataclasses import dataclass, replace
from enum import Enum

from .config import dev_domain
from .errors import InputCancelled, ValidationError
from .project import SetupParams

ENV_CHOICES = ("dev", "prod")


class Phase(Enum):
    SELECT_REPO = 1
    SELECT_SERVER = 2
    SELECT_ENV = 3
    DOMAIN = 4
    PORT = 5
    CONFIRM = 6
    RUNNING = 7
    DONE = 8


@dataclass(frozen=True)
class WizardState:
    phase: Phase = Phase.SELECT_REPO
    project: str = ""
    repo: str = ""
    server: str = ""
    server_ip: str = ""
    peon_key: str = ""
    env_name: str = ""
    domain: str = ""
    port: int = 0
    suggested_port: int = 0
    error: str = ""


def _require(state: WizardState, *phases: Phase) -> None:
    if state.phase not in phases:
        raise ValueError(f"transition not allowed in phase {state.phase.name}")


def choose_repo(state: WizardState, name: str, name_with_owner: str) -> WizardState:
    _require(state, Phase.SELECT_REPO)
    return replace(state, phase=Phase.SELECT_SERVER, project=name, repo=name_with_owner)


def choose_server(state: WizardState, name: str, ip: str, peon_key: str | None) -> WizardState:
    """Select the target server; without a peon key the wizard ends with an error."""
    _require(state, Phase.SELECT_SERVER)
    if not peon_key:
        return replace(
            state,
            phase=Phase.DONE,
            server=name,
            server_ip=ip,
            error=f"peon key for {ip} not found, run 'arnor server init {name}' first",
        )
    return replace(state, phase=Phase.SELECT_ENV, server=name, server_ip=ip, peon_key=peon_key)


def choose_env(state: WizardState, env_name: str) -> WizardState:
    _require(state, Phase.SELECT_ENV)
    if env_name not in ENV_CHOICES:
        raise ValidationError(f"unknown environment: {env_name} (choose {', '.join(ENV_CHOICES)})")
    return replace(state, phase=Phase.DOMAIN, env_name=env_name)


def default_domain(state: WizardState, suffix: str | None = None) -> str:
    """:return: ``<project>.<dev domain>`` for dev, empty otherwise"""
    if state.env_name == "dev":
        return f"{state.project}.{suffix or dev_domain()}"
    return ""


def enter_domain(state: WizardState, value: str, suffix: str | None = None) -> WizardState:
    _require(state, Phase.DOMAIN)
    domain = value.strip() or default_domain(state, suffix)
    if not domain:
        raise ValidationError("domain is required")
    if " " in domain or "." not in domain:
        raise ValidationError(f"invalid domain: {domain}")
    return replace(state, phase=Phase.PORT, domain=domain)


def suggest(state: WizardState, port: int) -> WizardState:
    _require(state, Phase.PORT)
    return replace(state, suggested_port=port)


def enter_port(state: WizardState, value: str) -> WizardState:
    """Accept a port; an empty answer takes the suggested port.

    :raises ValidationError: If the port is not a number in 1-65535
    """
    _require(state, Phase.PORT)
    value = value.strip()
    if not value and state.suggested_port:
        port = state.suggested_port
    else:
        try:
            port = int(value)
        except ValueError:
            raise ValidationError(f"port must be a number, got {value!r}") from None
    if not 1 <= port <= 65535:
        raise ValidationError(f"port out of range: {port}")
    return replace(state, phase=Phase.CONFIRM, port=port)


def confirm(state: WizardState, accepted: bool) -> WizardState:
    _require(state, Phase.CONFIRM)
    if not accepted:
        return back(state)
    return replace(state, phase=Phase.RUNNING)


def back(state: WizardState) -> WizardState:
    """Step back one phase.

    :raises InputCancelled: When going back from the first phase
    """
    previous = {
        Phase.SELECT_SERVER: Phase.SELECT_REPO,
        Phase.SELECT_ENV: Phase.SELECT_SERVER,
        Phase.DOMAIN: Phase.SELECT_ENV,
        Phase.PORT: Phase.DOMAIN,
        Phase.CONFIRM: Phase.PORT,
    }
    if state.phase is Phase.SELECT_REPO:
        raise InputCancelled("project create cancelled")
    if state.phase not in previous:
        raise ValueError(f"cannot go back from phase {state.phase.name}")
    return replace(state, phase=previous[state.phase])


def finish(state: WizardState, error: Exception | None = None) -> WizardState:
    _require(state, Phase.RUNNING)
    return replace(state, phase=Phase.DONE, error=str(error) if error else "")


def to_params(state: WizardState) -> SetupParams:
    _require(state, Phase.CONFIRM, Phase.RUNNING)
    return SetupParams(
        project=state.project,
        repo=state.repo,
        server=state.server,
        env_name=state.env_name,
        domain=state.domain,
        port=state.port,
        peon_key=state.peon_key,
    )
