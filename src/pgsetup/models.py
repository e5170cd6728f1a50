from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, Optional, Tuple, get_args, get_type_hints

from .constants import (
    DEFAULT_MONITORING_USER,
    DEFAULT_POSTGRES_PORT,
    DEFAULT_SUPERUSER,
    RECOMMENDED_LOG_LINE_PREFIX,
)


class ExecutionMode(Enum):
    INTERACTIVE = "interactive"
    SCRIPTED = "scripted"


class StepKind(IntEnum):
    GENERAL = 0
    LOG_INSIGHTS = 1
    AUTOMATED_EXPLAIN = 2


def _input(key: Optional[str] = None):
    return field(default=None, metadata={"key": key} if key else {})


@dataclass
class SetupSettings:
    api_key: Optional[str] = None
    api_base_url: Optional[str] = None
    db_name: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    db_log_location: Optional[str] = None


@dataclass
class SetupGUCs:
    log_error_verbosity: Optional[str] = None
    log_duration: Optional[str] = None
    log_statement: Optional[str] = None
    log_min_duration_statement: Optional[int] = None
    log_line_prefix: Optional[str] = None

    auto_explain_log_analyze: Optional[str] = _input("auto_explain.log_analyze")
    auto_explain_log_buffers: Optional[str] = _input("auto_explain.log_buffers")
    auto_explain_log_timing: Optional[str] = _input("auto_explain.log_timing")
    auto_explain_log_triggers: Optional[str] = _input("auto_explain.log_triggers")
    auto_explain_log_verbose: Optional[str] = _input("auto_explain.log_verbose")
    auto_explain_log_format: Optional[str] = _input("auto_explain.log_format")
    auto_explain_log_min_duration: Optional[int] = _input("auto_explain.log_min_duration")
    auto_explain_log_nested_statements: Optional[str] = _input(
        "auto_explain.log_nested_statements"
    )


@dataclass
class SetupInputs:
    """Declarative answers for every decision point; ``None`` means absent."""

    settings: SetupSettings = field(default_factory=SetupSettings)
    gucs: SetupGUCs = field(default_factory=SetupGUCs)

    pg_setup_conn_socket_dir: Optional[str] = None
    pg_setup_conn_port: Optional[int] = None
    pg_setup_conn_user: Optional[str] = None

    ensure_monitoring_user: Optional[bool] = None
    generate_monitoring_password: Optional[bool] = None
    ensure_monitoring_password: Optional[bool] = None
    ensure_monitoring_permissions: Optional[bool] = None
    ensure_helper_functions: Optional[bool] = None
    ensure_pg_stat_statements_installed: Optional[bool] = None
    ensure_pg_stat_statements_loaded: Optional[bool] = None
    guess_log_location: Optional[bool] = None
    use_log_based_explain: Optional[bool] = None
    ensure_log_explain_helpers: Optional[bool] = None
    ensure_auto_explain_loaded: Optional[bool] = None
    confirm_postgres_restart: Optional[bool] = None
    confirm_set_up_log_insights: Optional[bool] = None
    confirm_set_up_automated_explain: Optional[bool] = None
    ensure_auto_explain_recommended_settings: Optional[bool] = None
    confirm_run_test_command: Optional[bool] = None
    confirm_run_test_explain_command: Optional[bool] = None
    confirm_collector_reload: Optional[bool] = None

    @classmethod
    def recommended(cls) -> "SetupInputs":
        return cls(
            settings=SetupSettings(db_username=DEFAULT_MONITORING_USER),
            gucs=SetupGUCs(
                log_error_verbosity="default",
                log_duration="off",
                log_statement="none",
                log_min_duration_statement=1000,
                log_line_prefix=RECOMMENDED_LOG_LINE_PREFIX,
                auto_explain_log_analyze="on",
                auto_explain_log_buffers="on",
                auto_explain_log_timing="off",
                auto_explain_log_triggers="on",
                auto_explain_log_verbose="on",
                auto_explain_log_format="json",
                auto_explain_log_min_duration=1000,
                auto_explain_log_nested_statements="on",
            ),
            pg_setup_conn_port=DEFAULT_POSTGRES_PORT,
            pg_setup_conn_user=DEFAULT_SUPERUSER,
            ensure_monitoring_user=True,
            generate_monitoring_password=True,
            ensure_monitoring_password=True,
            ensure_monitoring_permissions=True,
            ensure_helper_functions=True,
            ensure_pg_stat_statements_installed=True,
            ensure_pg_stat_statements_loaded=True,
            guess_log_location=True,
            use_log_based_explain=False,
            ensure_auto_explain_loaded=True,
            confirm_postgres_restart=True,
            confirm_set_up_log_insights=True,
            confirm_set_up_automated_explain=True,
            ensure_auto_explain_recommended_settings=True,
            confirm_run_test_command=True,
            confirm_run_test_explain_command=True,
            confirm_collector_reload=True,
        )

    def overlay(self, other: "SetupInputs") -> "SetupInputs":
        """Return a copy of these inputs with every field present in ``other`` applied."""
        merged = SetupInputs()
        for path in input_paths():
            value = other.get(path)
            merged.set(path, self.get(path) if value is None else value)
        return merged

    def get(self, path: str) -> Any:
        target, name = self._resolve(path)
        return getattr(target, name)

    def set(self, path: str, value: Any):
        target, name = self._resolve(path)
        setattr(target, name, value)

    def _resolve(self, path: str):
        target: Any = self
        parts = path.split(".")
        for part in parts[:-1]:
            target = getattr(target, part)
        if not hasattr(target, parts[-1]) or is_dataclass(getattr(target, parts[-1])):
            raise KeyError(f"Unknown input field: {path}")
        return target, parts[-1]


def input_key(dc_field) -> str:
    """Name of a field in the inputs document."""
    return dc_field.metadata.get("key", dc_field.name)


def field_type(cls, name: str) -> type:
    hint = get_type_hints(cls)[name]
    args = [arg for arg in get_args(hint) if arg is not type(None)]
    return args[0] if args else hint


def input_paths() -> Tuple[str, ...]:
    paths = []
    for top in fields(SetupInputs):
        if top.name in ("settings", "gucs"):
            nested = SetupSettings if top.name == "settings" else SetupGUCs
            paths.extend(f"{top.name}.{sub.name}" for sub in fields(nested))
        else:
            paths.append(top.name)
    return tuple(paths)


def input_label(path: str) -> str:
    """Document-facing name of an inputs path, e.g. ``gucs.auto_explain.log_format``."""
    if "." not in path:
        return path
    section, name = path.split(".", 1)
    nested = SetupSettings if section == "settings" else SetupGUCs
    for dc_field in fields(nested):
        if dc_field.name == name:
            return f"{section}.{input_key(dc_field)}"
    raise KeyError(f"Unknown input field: {path}")


@dataclass(frozen=True)
class PlatformInfo:
    os: str
    platform: str
    family: str
    version: str


@dataclass(frozen=True)
class LocalPostgres:
    socket_dir: str
    port: int

    def describe(self) -> str:
        return f"port {self.port} in socket dir {self.socket_dir}"


@dataclass(frozen=True)
class Step:
    """An administrative action: ``check`` decides completion, ``run`` remediates."""

    id: str
    description: str
    check: Callable[[Any], bool]
    run: Optional[Callable[[Any], None]] = None
    kind: StepKind = StepKind.GENERAL


@dataclass
class PipelineResult:
    completed: list = field(default_factory=list)
    already_done: list = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.completed)

    def summary(self) -> Dict[str, int]:
        return {"completed": len(self.completed), "already_done": len(self.already_done)}
