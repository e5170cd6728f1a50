"""Log Insights steps: logging settings and the log location."""

from pgsetup.constants import RECOMMENDED_LOG_LINE_PREFIX
from pgsetup.errors import SetupError
from pgsetup.errors_catalog import actionable_error
from pgsetup.models import Step, StepKind
from pgsetup.services.postgres_service import apply_config_setting, get_pending_shared_preload_libraries
from pgsetup.services.query import quote_literal
from pgsetup.services.validation import (
    log_line_prefix_supported,
    validate_existing_path,
    validate_log_line_prefix,
    validate_log_min_duration_statement,
)
from pgsetup.steps.common import declined_answer, setting

AUTOMATED_EXPLAIN_INTRO = """
Log Insights and query performance setup is almost complete. You can complete it
now, or proceed to configuring the optional Automated EXPLAIN feature. Automated
EXPLAIN will require either setting up the auto_explain module (recommended) or
creating helper functions in all monitored databases. The auto_explain module has
minimal impact on most query workloads with our recommended settings; we will review
these during setup.

Learn more at https://pganalyze.com/postgres-explain
"""


def _differs_from_input(state, field: str, current) -> bool:
    """In scripted runs, an explicitly provided value must be applied as-is."""
    wanted = state.inputs.get(field)
    return state.resolver.scripted and wanted is not None and str(wanted) != str(current)


def _check_log_error_verbosity(state) -> bool:
    current = setting(state, "log_error_verbosity")
    return current != "verbose" and not _differs_from_input(state, "gucs.log_error_verbosity", current)


def _ensure_log_error_verbosity(state):
    value = state.resolver.select(
        "gucs.log_error_verbosity",
        "Setting 'log_error_verbosity' is set to unsupported value 'verbose'; "
        "select supported value (will be saved to Postgres):",
        ("terse", "default"),
    )
    apply_config_setting(state.connection(), "log_error_verbosity", quote_literal(value))


def _check_log_duration(state) -> bool:
    current = setting(state, "log_duration")
    return current != "on" and not _differs_from_input(state, "gucs.log_duration", current)


def _ensure_log_duration(state):
    field = "gucs.log_duration"

    def ask(prompter):
        if prompter.confirm(
            "Setting 'log_duration' is set to unsupported value 'on'; set to 'off' (will be saved to Postgres)?"
        ):
            return "off"
        raise declined_answer(field, "Setting 'log_duration' is set to unsupported value 'on'.")

    value = state.resolver.select(
        field,
        "Set 'log_duration' (will be saved to Postgres)",
        ("off",),
        ask=ask,
    )
    apply_config_setting(state.connection(), "log_duration", quote_literal(value))


def _check_log_statement(state) -> bool:
    current = setting(state, "log_statement")
    return current != "all" and not _differs_from_input(state, "gucs.log_statement", current)


def _ensure_log_statement(state):
    value = state.resolver.select(
        "gucs.log_statement",
        "Setting 'log_statement' is set to unsupported value 'all'; "
        "select supported value (will be saved to Postgres):",
        ("none", "ddl", "mod"),
    )
    apply_config_setting(state.connection(), "log_statement", quote_literal(value))


def _lmds_supported(value: int) -> bool:
    return value == -1 or value >= 10


def _check_log_min_duration_statement(state) -> bool:
    current = int(setting(state, "log_min_duration_statement"))
    return _lmds_supported(current) and not _differs_from_input(
        state, "gucs.log_min_duration_statement", current
    )


def _ensure_log_min_duration_statement(state):
    current = setting(state, "log_min_duration_statement")
    value = state.resolver.integer(
        "gucs.log_min_duration_statement",
        f"Setting 'log_min_duration_statement' is set to '{current}ms', below supported threshold "
        "of 10ms; enter supported value in ms or -1 to disable (will be saved to Postgres):",
        validator=validate_log_min_duration_statement,
    )
    apply_config_setting(state.connection(), "log_min_duration_statement", str(value))


def _check_log_line_prefix(state) -> bool:
    current = setting(state, "log_line_prefix")
    return log_line_prefix_supported(current) and not _differs_from_input(
        state, "gucs.log_line_prefix", current
    )


def _ensure_log_line_prefix(state):
    current = setting(state, "log_line_prefix")
    value = state.resolver.text(
        "gucs.log_line_prefix",
        f"Setting 'log_line_prefix' ({current}) is missing user (%u), database (%d), or timestamp "
        "(%n, %m, or %t); set to (will be saved to Postgres):",
        default=RECOMMENDED_LOG_LINE_PREFIX,
        help_text=(
            "Check format specifier reference in Postgres documentation: "
            "https://www.postgresql.org/docs/current/runtime-config-logging.html#GUC-LOG-LINE-PREFIX"
        ),
        validator=validate_log_line_prefix,
    )
    apply_config_setting(state.connection(), "log_line_prefix", quote_literal(value))


def _check_log_location(state) -> bool:
    return state.current_section.has_key("db_log_location")


def _specify_log_location(state):
    guess = state.resolver.confirm(
        "guess_log_location",
        "Try to detect the Postgres log file location automatically?",
        default=True,
        optional=True,
        fallback=False,
    )
    location = None
    if guess:
        if state.inputs.settings.db_log_location:
            raise SetupError(
                actionable_error(
                    "conflicting_inputs",
                    first="guess_log_location",
                    second="settings.db_log_location",
                )
            )
        try:
            location = state.postgres_service.discover_log_location(
                state.current_section, state.connection()
            )
        except SetupError as exc:
            message = f"could not determine Postgres log location automatically: {exc}"
            if state.resolver.scripted:
                raise SetupError(message) from exc
            state.notice(message)
        else:
            state.notice(f"Detected Postgres log location {location}")

    if location is None:
        location = state.resolver.text(
            "settings.db_log_location",
            "Please enter the Postgres log file location (will be saved to collector config)",
            validator=validate_existing_path,
        )
    state.current_section.new_key("db_log_location", location)
    state.save_config()


def _check_automated_explain_answered(state) -> bool:
    if state.inputs.confirm_set_up_automated_explain is not None:
        return True
    section = state.current_section
    if not section.has_key("enable_log_explain"):
        return False
    if section.get_bool("enable_log_explain"):
        return True
    return "auto_explain" in get_pending_shared_preload_libraries(state.connection())


def _confirm_set_up_automated_explain(state):
    state.resolver.confirm(
        "confirm_set_up_automated_explain",
        "Proceed to configuring optional Automated EXPLAIN feature?",
        intro=AUTOMATED_EXPLAIN_INTRO,
        write_back=True,
    )


ENSURE_SUPPORTED_LOG_ERROR_VERBOSITY = Step(
    id="li_ensure_supported_log_error_verbosity",
    description="Ensure the log_error_verbosity setting in Postgres is supported by the collector",
    check=_check_log_error_verbosity,
    run=_ensure_log_error_verbosity,
    kind=StepKind.LOG_INSIGHTS,
)
ENSURE_SUPPORTED_LOG_DURATION = Step(
    id="li_ensure_supported_log_duration",
    description="Ensure the log_duration setting in Postgres is supported by the collector",
    check=_check_log_duration,
    run=_ensure_log_duration,
    kind=StepKind.LOG_INSIGHTS,
)
ENSURE_SUPPORTED_LOG_STATEMENT = Step(
    id="li_ensure_supported_log_statement",
    description="Ensure the log_statement setting in Postgres is supported by the collector",
    check=_check_log_statement,
    run=_ensure_log_statement,
    kind=StepKind.LOG_INSIGHTS,
)
ENSURE_SUPPORTED_LOG_MIN_DURATION_STATEMENT = Step(
    id="li_ensure_supported_log_min_duration_statement",
    description="Ensure the log_min_duration_statement setting in Postgres is supported by the collector",
    check=_check_log_min_duration_statement,
    run=_ensure_log_min_duration_statement,
    kind=StepKind.LOG_INSIGHTS,
)
ENSURE_SUPPORTED_LOG_LINE_PREFIX = Step(
    id="li_ensure_supported_log_line_prefix",
    description="Ensure the log_line_prefix setting in Postgres is supported by the collector",
    check=_check_log_line_prefix,
    run=_ensure_log_line_prefix,
    kind=StepKind.LOG_INSIGHTS,
)
SPECIFY_DB_LOG_LOCATION = Step(
    id="li_specify_db_log_location",
    description="Specify the location of Postgres log files (db_log_location) in the collector config file",
    check=_check_log_location,
    run=_specify_log_location,
    kind=StepKind.LOG_INSIGHTS,
)
CONFIRM_SET_UP_AUTOMATED_EXPLAIN = Step(
    id="li_confirm_set_up_auto_explain",
    description="Confirm whether to set up the optional Automated EXPLAIN feature",
    check=_check_automated_explain_answered,
    run=_confirm_set_up_automated_explain,
    kind=StepKind.LOG_INSIGHTS,
)
