from typing import Optional


class SetupError(RuntimeError):
    """Raised when the setup cannot continue safely."""

    def __init__(self, message: str, step_id: Optional[str] = None):
        super().__init__(message)
        self.step_id = step_id


class StepCheckError(SetupError):
    """The target system could not be inspected while checking a step."""

    def __init__(self, step_id: str, cause: BaseException, stage: str = "check"):
        super().__init__(str(cause), step_id=step_id)
        self.cause = cause
        self.stage = stage


class StepRunError(SetupError):
    """The remediation for a step failed."""

    def __init__(self, step_id: str, cause: BaseException):
        super().__init__(str(cause), step_id=step_id)
        self.cause = cause


class RecheckError(SetupError):
    """A step's resolution succeeded but its check still reports not done."""

    MESSAGE = "check still failed after running resolution; please try again"

    def __init__(self, step_id: str):
        super().__init__(self.MESSAGE, step_id=step_id)


class InputResolutionError(SetupError):
    """A declarative input is missing or invalid in scripted mode."""

    def __init__(self, field: str, message: str, step_id: Optional[str] = None):
        super().__init__(message, step_id=step_id)
        self.field = field


class StepDefinitionError(SetupError):
    """A step reported not done but defines no resolution."""


class QueryError(SetupError):
    """A query against Postgres failed."""


class NoRowsError(QueryError):
    """A single-row query returned no rows."""
