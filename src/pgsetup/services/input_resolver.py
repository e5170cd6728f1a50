"""Resolution of decision points from an inputs document or operator prompts."""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from rich.prompt import Confirm, Prompt

from pgsetup.errors import InputResolutionError
from pgsetup.errors_catalog import actionable_error
from pgsetup.models import ExecutionMode, SetupInputs, input_label

CONFIRM = "confirm"
SELECT = "select"
TEXT = "text"
INTEGER = "integer"
PASSWORD = "password"


@dataclass(frozen=True)
class DecisionPoint:
    """One choice a step needs, bound to exactly one inputs field.

    ``validator`` is shared by both resolvers. ``ask`` replaces the default
    prompt for choices that take several interactive questions to answer;
    its result is validated like any other answer.
    """

    field: str
    kind: str
    message: str
    help_text: Optional[str] = None
    intro: Optional[str] = None
    choices: Tuple[str, ...] = ()
    default: Any = None
    validator: Optional[Callable[[Any], None]] = None
    write_back: bool = False
    optional: bool = False
    fallback: Any = None
    ask: Optional[Callable[["Prompter"], Any]] = None

    @property
    def label(self) -> str:
        return input_label(self.field)

    def check_value(self, value: Any) -> Any:
        if self.kind == CONFIRM:
            if not isinstance(value, bool):
                raise ValueError("expected a boolean value")
        elif self.kind == INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError("value must be numeric")
        else:
            if not isinstance(value, str):
                raise ValueError("expected a string value")
            if self.kind == SELECT and self.choices and value not in self.choices:
                raise ValueError(f"must be one of: {', '.join(self.choices)}")
        if self.validator is not None:
            self.validator(value)
        return value


class Prompter:
    """Renders operator prompts with rich."""

    def __init__(self, console, prompt_cls=Prompt, confirm_cls=Confirm):
        self.console = console
        self.prompt_cls = prompt_cls
        self.confirm_cls = confirm_cls

    def note(self, text: str):
        self.console.print(f"[dim]{text}[/dim]")

    def error(self, text: str):
        self.console.print(f"[red]{text}[/red]")

    def confirm(self, message: str, default: bool = False) -> bool:
        return bool(self.confirm_cls.ask(message, default=default, console=self.console))

    def text(self, message: str, default: Optional[str] = None, password: bool = False) -> str:
        if default is None:
            answer = self.prompt_cls.ask(message, password=password, console=self.console)
        else:
            answer = self.prompt_cls.ask(
                message, default=default, password=password, console=self.console
            )
        if answer is None:
            return ""
        return answer if password else answer.strip()

    def select(self, message: str, options: Sequence[str], default: Optional[str] = None) -> str:
        self.console.print(f"\n[bold]{message}[/bold]")
        for idx, option in enumerate(options, start=1):
            self.console.print(f"  [cyan]{idx}[/cyan]) {option}")

        default_idx = None
        if default is not None and default in options:
            default_idx = str(list(options).index(default) + 1)

        while True:
            if default_idx is None:
                raw = self.prompt_cls.ask("Select", console=self.console)
            else:
                raw = self.prompt_cls.ask("Select", default=default_idx, console=self.console)
            raw = (raw or "").strip()
            if raw.isdigit() and 1 <= int(raw) <= len(options):
                return options[int(raw) - 1]
            self.error(f"Invalid selection: {raw}")

    def multi_select(self, message: str, options: Sequence[str]) -> List[str]:
        self.console.print(f"\n[bold]{message}[/bold]")
        for idx, option in enumerate(options, start=1):
            self.console.print(f"  [cyan]{idx}[/cyan]) {option}")

        while True:
            raw = self.prompt_cls.ask(
                "Select (comma-separated, blank = none)", default="", console=self.console
            )
            tokens = [token.strip() for token in (raw or "").split(",") if token.strip()]
            selected: List[str] = []
            invalid: List[str] = []
            for token in tokens:
                if token.isdigit() and 1 <= int(token) <= len(options):
                    choice = options[int(token) - 1]
                    if choice not in selected:
                        selected.append(choice)
                else:
                    invalid.append(token)
            if invalid:
                self.error(f"Invalid selection(s): {', '.join(invalid)}")
                continue
            return selected


class InputResolver:
    """Produces a value for a decision point; subclasses fix the execution mode."""

    mode: ExecutionMode

    def __init__(self, inputs: SetupInputs):
        self.inputs = inputs

    @property
    def scripted(self) -> bool:
        return self.mode == ExecutionMode.SCRIPTED

    def resolve(self, point: DecisionPoint) -> Any:
        raise NotImplementedError

    def confirm(self, field: str, message: str, default: bool = False, **kwargs) -> bool:
        return self.resolve(
            DecisionPoint(field=field, kind=CONFIRM, message=message, default=default, **kwargs)
        )

    def select(self, field: str, message: str, choices: Sequence[str], **kwargs) -> str:
        return self.resolve(
            DecisionPoint(field=field, kind=SELECT, message=message, choices=tuple(choices), **kwargs)
        )

    def text(self, field: str, message: str, **kwargs) -> str:
        return self.resolve(DecisionPoint(field=field, kind=TEXT, message=message, **kwargs))

    def password(self, field: str, message: str, **kwargs) -> str:
        return self.resolve(DecisionPoint(field=field, kind=PASSWORD, message=message, **kwargs))

    def integer(self, field: str, message: str, **kwargs) -> int:
        return self.resolve(DecisionPoint(field=field, kind=INTEGER, message=message, **kwargs))

    def _store(self, point: DecisionPoint, value: Any):
        if point.write_back:
            self.inputs.set(point.field, value)


class ScriptedInputResolver(InputResolver):
    """Reads every answer from the inputs document; never prompts."""

    mode = ExecutionMode.SCRIPTED

    def resolve(self, point: DecisionPoint) -> Any:
        value = self.inputs.get(point.field)
        if value is None:
            if not point.optional:
                raise InputResolutionError(
                    point.label,
                    actionable_error("missing_input", field=point.label),
                )
            value = point.fallback
        else:
            try:
                point.check_value(value)
            except ValueError as exc:
                raise InputResolutionError(
                    point.label,
                    actionable_error("invalid_input", field=point.label, reason=str(exc)),
                ) from exc

        self._store(point, value)
        return value


class InteractiveInputResolver(InputResolver):
    """Prompts the operator, re-asking until the answer passes validation."""

    mode = ExecutionMode.INTERACTIVE

    def __init__(self, inputs: SetupInputs, prompter: Prompter):
        super().__init__(inputs)
        self.prompter = prompter

    def resolve(self, point: DecisionPoint) -> Any:
        existing = self.inputs.get(point.field)
        if existing is not None:
            try:
                return point.check_value(existing)
            except ValueError as exc:
                self.prompter.error(f"Ignoring provided {point.label}: {exc}")

        if point.intro:
            self.prompter.console.print(point.intro)
        if point.help_text:
            self.prompter.note(point.help_text)

        while True:
            answer = self._ask(point)
            try:
                point.check_value(answer)
            except ValueError as exc:
                self.prompter.error(str(exc))
                continue
            break

        self._store(point, answer)
        return answer

    def _ask(self, point: DecisionPoint) -> Any:
        if point.ask is not None:
            return point.ask(self.prompter)
        if point.kind == CONFIRM:
            return self.prompter.confirm(point.message, default=bool(point.default))
        if point.kind == SELECT:
            return self.prompter.select(point.message, point.choices, default=point.default)
        if point.kind == INTEGER:
            default = None if point.default is None else str(point.default)
            raw = self.prompter.text(point.message, default=default)
            try:
                return int(raw)
            except ValueError:
                return raw
        if point.kind == PASSWORD:
            return self.prompter.text(point.message, password=True)
        return self.prompter.text(point.message, default=point.default)
