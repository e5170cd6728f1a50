"""Step orchestration: check, run, recheck."""

from typing import Iterable, Sequence

from pgsetup.errors import (
    InputResolutionError,
    RecheckError,
    StepCheckError,
    StepDefinitionError,
    StepRunError,
)
from pgsetup.errors_catalog import actionable_error
from pgsetup.models import PipelineResult, Step


class StepObserver:
    """Receives progress events from the orchestrator. All hooks are optional."""

    def step_started(self, step: Step):
        return None

    def step_skipped(self, step: Step):
        return None

    def step_resolving(self, step: Step):
        return None

    def step_rechecking(self, step: Step):
        return None

    def step_completed(self, step: Step):
        return None

    def step_failed(self, step: Step, error: Exception):
        return None


class StepOrchestrator:
    """Runs steps strictly in order and stops at the first failure.

    A step whose check passes is skipped. Otherwise its ``run`` is invoked and
    the check is repeated; the step is only complete when that recheck passes.
    Failures are raised as ``SetupError`` subclasses; the orchestrator itself
    never prints or logs.
    """

    def __init__(self, observers: Sequence[StepObserver] = ()):
        self.observers = list(observers)

    def run(self, steps: Iterable[Step], state) -> PipelineResult:
        result = PipelineResult()
        for step in steps:
            self._notify("step_started", step)
            try:
                resolved = self.run_step(step, state)
            except (StepCheckError, StepRunError, RecheckError, InputResolutionError,
                    StepDefinitionError) as exc:
                self._notify("step_failed", step, exc)
                raise

            if resolved:
                result.completed.append(step.id)
                self._notify("step_completed", step)
            else:
                result.already_done.append(step.id)
                self._notify("step_skipped", step)
        return result

    def run_step(self, step: Step, state) -> bool:
        """Bring one step to completion; returns whether its resolution ran."""
        if self._check(step, state, "check"):
            return False

        if step.run is None:
            raise StepDefinitionError(
                actionable_error("missing_resolution", step_id=step.id),
                step_id=step.id,
            )

        self._notify("step_resolving", step)
        try:
            step.run(state)
        except (InputResolutionError, StepDefinitionError) as exc:
            exc.step_id = step.id
            raise
        except Exception as exc:
            raise StepRunError(step.id, exc) from exc

        self._notify("step_rechecking", step)
        if not self._check(step, state, "recheck"):
            raise RecheckError(step.id)
        return True

    @staticmethod
    def _check(step: Step, state, stage: str) -> bool:
        try:
            return bool(step.check(state))
        except Exception as exc:
            raise StepCheckError(step.id, exc, stage=stage) from exc

    def _notify(self, hook: str, *args):
        for observer in self.observers:
            getattr(observer, hook)(*args)
