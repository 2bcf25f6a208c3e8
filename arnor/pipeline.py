"""Ordered step sequencer with progress reporting and best-effort steps.

Steps run strictly in sequence over a shared state object. A fatal step
failure stops the run and nothing is rolled back: every step is written to be
safe to repeat, so re-running the whole pipeline is the recovery path.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Protocol

from .errors import ArnorError, InputCancelled, StepError

logger = logging.getLogger("arnor.pipeline")

ProgressFunc = Callable[[int, int, str], None]


class Outcome(Enum):
    FATAL = "fatal"
    BEST_EFFORT = "best_effort"


@dataclass
class Step:
    """One named action of a pipeline.

    :param message: Progress message reported once the step has completed
    :param action: Callable taking the run state
    :param outcome: Whether a failure aborts the run or is only logged
    :param context: Short description used to wrap failures, defaults to the
        lower-cased message
    """

    message: str
    action: Callable[[Any], None]
    outcome: Outcome = Outcome.FATAL
    context: str | None = None

    @property
    def description(self) -> str:
        return self.context or self.message.rstrip(".").lower()


@dataclass
class RunResult:
    completed: int = 0
    warnings: list[str] = field(default_factory=list)


class Pipeline:
    def __init__(self, steps: list[Step]):
        self.steps = list(steps)

    @property
    def total(self) -> int:
        return len(self.steps)

    def run(self, state: Any, on_progress: ProgressFunc | None = None) -> RunResult:
        """Run every step in order.

        :param state: Shared run state passed to each step action
        :param on_progress: Called as ``(step, total, message)`` after each step
        :return: Completed step count and best-effort warnings
        :raises StepError: On the first failing fatal step, or any step failing
            with an error that is not an ArnorError
        """
        result = RunResult()
        for index, step in enumerate(self.steps, start=1):
            try:
                step.action(state)
            except Exception as e:
                if step.outcome is Outcome.FATAL or not isinstance(e, ArnorError):
                    raise StepError(step.description, e, step=index) from e
                message = f"{step.description}: {e}"
                logger.warning(message)
                result.warnings.append(message)
            result.completed = index
            if on_progress is not None:
                on_progress(index, self.total, step.message)
        return result


def best_effort(description: str, fn: Callable, *args, warnings: list[str] | None = None):
    """Run a sub-action whose failure is logged instead of raised.

    :param description: Short description prefixed to the warning
    :param warnings: List the warning is appended to, if given
    :return: The action's return value, or None if it failed
    """
    try:
        return fn(*args)
    except ArnorError as e:
        message = f"{description}: {e}"
        logger.warning(message)
        if warnings is not None:
            warnings.append(message)
        return None


class InputRequest(Protocol):
    """Suspension point for operator input during a run.

    Implementations block until the operator answers and raise InputCancelled
    when the operator declines.
    """

    def prompt(self, label: str, secret: bool = False) -> str: ...


@dataclass
class ProgressEvent:
    """Message from a background run to the foreground.

    Exactly one of three shapes: a progress tick (``step``/``total``/``message``),
    an input request (``prompt`` set, answer with ``answer`` or ``cancel``), or
    the terminal event (``done`` set, with ``result`` or ``error``).
    """

    step: int = 0
    total: int = 0
    message: str = ""
    prompt: str = ""
    secret: bool = False
    done: bool = False
    result: RunResult | None = None
    error: Exception | None = None
    _reply: "queue.Queue | None" = field(default=None, repr=False)

    def answer(self, value: str) -> None:
        self._reply.put(value)

    def cancel(self) -> None:
        self._reply.put(None)


class ChannelPrompt:
    """InputRequest that forwards prompts to the foreground through the event queue."""

    def __init__(self, events: queue.Queue):
        self._events = events
        self._replies: queue.Queue = queue.Queue(maxsize=1)

    def prompt(self, label: str, secret: bool = False) -> str:
        self._events.put(ProgressEvent(prompt=label, secret=secret, _reply=self._replies))
        value = self._replies.get()
        if value is None:
            raise InputCancelled(f"{label}: cancelled")
        return value


class BackgroundRun:
    """Runs a pipeline on a worker thread, reporting through a single-slot queue.

    Build the run state with ``self.prompt`` as its InputRequest, then iterate
    ``start(state)`` on the foreground thread.
    """

    def __init__(self, pipeline: Pipeline):
        self.pipeline = pipeline
        self.events: queue.Queue = queue.Queue(maxsize=1)
        self.prompt = ChannelPrompt(self.events)
        self._thread: threading.Thread | None = None

    def _work(self, state: Any) -> None:
        def report(step: int, total: int, message: str) -> None:
            self.events.put(ProgressEvent(step=step, total=total, message=message))

        try:
            result = self.pipeline.run(state, report)
        except Exception as e:
            self.events.put(ProgressEvent(done=True, error=e))
        else:
            self.events.put(ProgressEvent(done=True, result=result))

    def start(self, state: Any) -> Iterator[ProgressEvent]:
        """Start the worker and yield its events until the terminal one."""
        self._thread = threading.Thread(target=self._work, args=(state,), daemon=True)
        self._thread.start()
        while True:
            event = self.events.get()
            yield event
            if event.done:
                break
        self._thread.join()


def run_in_background(pipeline: Pipeline, state: Any) -> Iterator[ProgressEvent]:
    return BackgroundRun(pipeline).start(state)
