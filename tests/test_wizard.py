"""Project create wizard transitions."""

import pytest

from arnor import wizard
from arnor.errors import InputCancelled, ValidationError
from arnor.wizard import Phase, WizardState


def _at_port(env_name="dev") -> WizardState:
    state = wizard.choose_repo(WizardState(), "myapp", "acme/myapp")
    state = wizard.choose_server(state, "web-1", "203.0.113.10", "KEY")
    state = wizard.choose_env(state, env_name)
    return wizard.enter_domain(state, "", suffix="angmar.dev") if env_name == "dev" else wizard.enter_domain(state, "example.com")


def test_happy_path_to_params():
    state = wizard.suggest(_at_port(), 3001)
    state = wizard.enter_port(state, "")
    assert state.phase is Phase.CONFIRM
    state = wizard.confirm(state, True)
    assert state.phase is Phase.RUNNING

    params = wizard.to_params(state)
    assert (params.project, params.repo, params.server) == ("myapp", "acme/myapp", "web-1")
    assert (params.env_name, params.domain, params.port, params.peon_key) == (
        "dev",
        "myapp.angmar.dev",
        3001,
        "KEY",
    )

    done = wizard.finish(state)
    assert done.phase is Phase.DONE
    assert done.error == ""


def test_server_without_peon_key_ends_with_hint():
    state = wizard.choose_repo(WizardState(), "myapp", "acme/myapp")
    state = wizard.choose_server(state, "web-1", "203.0.113.10", None)
    assert state.phase is Phase.DONE
    assert "arnor server init web-1" in state.error


@pytest.mark.parametrize("value", ["abc", "0", "70000", "-1"])
def test_invalid_port(value):
    with pytest.raises(ValidationError):
        wizard.enter_port(_at_port(), value)


def test_empty_port_without_suggestion_is_invalid():
    with pytest.raises(ValidationError):
        wizard.enter_port(_at_port(), "")


def test_prod_requires_domain():
    state = wizard.choose_repo(WizardState(), "myapp", "acme/myapp")
    state = wizard.choose_server(state, "web-1", "203.0.113.10", "KEY")
    state = wizard.choose_env(state, "prod")
    with pytest.raises(ValidationError, match="domain is required"):
        wizard.enter_domain(state, "  ")


def test_unknown_environment():
    state = wizard.choose_repo(WizardState(), "myapp", "acme/myapp")
    state = wizard.choose_server(state, "web-1", "203.0.113.10", "KEY")
    with pytest.raises(ValidationError):
        wizard.choose_env(state, "staging")


def test_decline_returns_to_port_and_back_walks_phases():
    state = wizard.enter_port(_at_port("prod"), "3000")
    state = wizard.confirm(state, False)
    assert state.phase is Phase.PORT
    state = wizard.back(state)
    assert state.phase is Phase.DOMAIN
    state = wizard.back(wizard.back(wizard.back(state)))
    assert state.phase is Phase.SELECT_REPO
    with pytest.raises(InputCancelled):
        wizard.back(state)


def test_transitions_are_phase_checked():
    with pytest.raises(ValueError):
        wizard.enter_port(WizardState(), "3000")
    with pytest.raises(ValueError):
        wizard.to_params(_at_port())


def test_finish_records_error():
    state = wizard.confirm(wizard.enter_port(_at_port(), "3001"), True)
    done = wizard.finish(state, RuntimeError("creating DNS records: boom"))
    assert done.error == "creating DNS records: boom"
