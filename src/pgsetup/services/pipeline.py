"""Pipeline assembly by step category."""

from typing import Iterable, Iterator

from pgsetup.models import SetupInputs, Step, StepKind


def log_insights_enabled(inputs: SetupInputs) -> bool:
    return inputs.confirm_set_up_log_insights is not False


def automated_explain_enabled(inputs: SetupInputs) -> bool:
    return log_insights_enabled(inputs) and inputs.confirm_set_up_automated_explain is not False


def include_step(step: Step, inputs: SetupInputs) -> bool:
    if step.kind == StepKind.LOG_INSIGHTS:
        return log_insights_enabled(inputs)
    if step.kind == StepKind.AUTOMATED_EXPLAIN:
        return automated_explain_enabled(inputs)
    return True


def assemble_pipeline(steps: Iterable[Step], inputs: SetupInputs) -> Iterator[Step]:
    """Yield the steps that belong in this run, in order.

    Filtering happens as each step is pulled, so an opt-in answered by an
    earlier step (and written back into ``inputs``) decides whether the later
    steps of its category run.
    """
    for step in steps:
        if include_step(step, inputs):
            yield step
