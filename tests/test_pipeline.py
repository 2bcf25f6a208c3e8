"""Step sequencer: ordering, progress, fatal and best-effort failures."""

import json

import pytest

from arnor.errors import InputCancelled, ProviderAPIError, StepError, ValidationError
from arnor.pipeline import (
    BackgroundRun,
    Outcome,
    Pipeline,
    Step,
    best_effort,
    run_in_background,
)


def _append(tag):
    return lambda state: state.append(tag)


def _fail(state):
    raise ProviderAPIError("porkbun", "boom")


def test_steps_run_in_order_with_progress_after_each():
    state, progress = [], []
    pipeline = Pipeline([Step("One done", _append(1)), Step("Two done", _append(2))])
    result = pipeline.run(state, lambda step, total, msg: progress.append((step, total, msg)))
    assert state == [1, 2]
    assert progress == [(1, 2, "One done"), (2, 2, "Two done")]
    assert result.completed == 2
    assert result.warnings == []


def test_fatal_failure_stops_and_wraps_with_context():
    state, progress = [], []
    pipeline = Pipeline(
        [
            Step("One done", _append(1)),
            Step("DNS records created", _fail, context="creating DNS records"),
            Step("Three done", _append(3)),
        ]
    )
    with pytest.raises(StepError) as exc_info:
        pipeline.run(state, lambda *args: progress.append(args))
    err = exc_info.value
    assert state == [1]
    assert len(progress) == 1, "progress must not be reported for the failed step"
    assert err.step == 2
    assert str(err) == "creating DNS records: porkbun: boom"
    assert isinstance(err.cause, ProviderAPIError)


def test_unexpected_errors_keep_step_context():
    def bad_json(state):
        json.loads("not json")

    pipeline = Pipeline(
        [
            Step("One done", _append(1)),
            Step("Secrets set", bad_json, outcome=Outcome.BEST_EFFORT, context="setting secrets"),
        ]
    )
    with pytest.raises(StepError) as exc_info:
        pipeline.run([])
    assert exc_info.value.step == 2
    assert str(exc_info.value).startswith("setting secrets: ")
    assert isinstance(exc_info.value.cause, json.JSONDecodeError)


def test_context_defaults_to_message():
    assert Step("Config updated.", _fail).description == "config updated"


def test_best_effort_step_failure_is_a_warning():
    state = []
    pipeline = Pipeline(
        [
            Step("Optional done", _fail, outcome=Outcome.BEST_EFFORT, context="optional"),
            Step("Two done", _append(2)),
        ]
    )
    result = pipeline.run(state)
    assert state == [2]
    assert result.completed == 2
    assert result.warnings == ["optional: porkbun: boom"]


def test_best_effort_helper():
    warnings = []
    assert best_effort("www CNAME", lambda: "ok", warnings=warnings) == "ok"
    assert best_effort("www CNAME", _fail, None, warnings=warnings) is None
    assert warnings == ["www CNAME: porkbun: boom"]


def test_background_run_reports_progress_then_result():
    pipeline = Pipeline([Step("One done", _append(1)), Step("Two done", _append(2))])
    state = []
    events = list(run_in_background(pipeline, state))
    assert [e.step for e in events if not e.done] == [1, 2]
    assert events[-1].done
    assert events[-1].error is None
    assert events[-1].result.completed == 2
    assert state == [1, 2]


def test_background_run_forwards_prompts():
    background = BackgroundRun(
        Pipeline([Step("Asked", lambda state: state.append(background.prompt.prompt("Passphrase", secret=True)))])
    )
    state = []
    for event in background.start(state):
        if event.prompt:
            assert event.secret
            event.answer("hunter2")
    assert state == ["hunter2"]


def test_background_run_cancelled_prompt_ends_with_error():
    background = BackgroundRun(
        Pipeline([Step("Asked", lambda state: background.prompt.prompt("Passphrase"), context="asking")])
    )
    terminal = None
    for event in background.start(None):
        if event.prompt:
            event.cancel()
        elif event.done:
            terminal = event
    assert isinstance(terminal.error, StepError)
    assert isinstance(terminal.error.cause, InputCancelled)


def test_background_run_reports_failure():
    def invalid(state):
        raise ValidationError("bad port")

    events = list(run_in_background(Pipeline([Step("Nope", invalid, context="port")]), None))
    assert events[-1].done
    assert str(events[-1].error) == "port: bad port"
