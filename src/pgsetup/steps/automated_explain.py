"""Automated EXPLAIN steps, via the auto_explain module or log-based EXPLAIN helpers."""

from typing import Dict, List

from pgsetup.constants import RECOMMENDED_GUCS
from pgsetup.errors import QueryError, SetupError
from pgsetup.models import Step, StepKind
from pgsetup.services.postgres_service import (
    EXPLAIN_HELPER,
    add_shared_preload_library,
    apply_config_setting,
    get_pending_shared_preload_libraries,
    using_log_explain,
    validate_helper_function,
)
from pgsetup.services.query import quote_identifier, quote_literal
from pgsetup.services.validation import (
    ON_OFF_VALUES,
    require_one_of,
    validate_auto_explain_min_duration,
)
from pgsetup.steps.common import monitored_databases, monitoring_user, require_change

EXPLAIN_MODE_OPTIONS = ("auto_explain (recommended)", "Log-based EXPLAIN")


class AutoExplainSetting:
    """One auto_explain GUC reviewed by the recommended settings step."""

    def __init__(self, name: str, field: str, help_text: str, needs_analyze: bool = False):
        self.name = name
        self.field = field
        self.help_text = help_text
        self.needs_analyze = needs_analyze

    @property
    def recommended(self):
        return RECOMMENDED_GUCS[self.name]


# review order matters: log_analyze decides whether the settings after it apply
AUTO_EXPLAIN_SETTINGS = (
    AutoExplainSetting(
        "auto_explain.log_timing",
        "gucs.auto_explain_log_timing",
        "Include timing information for each plan node when a plan is logged; can have high performance impact",
    ),
    AutoExplainSetting(
        "auto_explain.log_analyze",
        "gucs.auto_explain_log_analyze",
        "Include EXPLAIN ANALYZE output rather than just EXPLAIN output when a plan is logged; "
        "required for several other settings",
    ),
    AutoExplainSetting(
        "auto_explain.log_buffers",
        "gucs.auto_explain_log_buffers",
        "Include BUFFERS usage information when a plan is logged",
        needs_analyze=True,
    ),
    AutoExplainSetting(
        "auto_explain.log_triggers",
        "gucs.auto_explain_log_triggers",
        "Include trigger execution statistics when a plan is logged",
        needs_analyze=True,
    ),
    AutoExplainSetting(
        "auto_explain.log_verbose",
        "gucs.auto_explain_log_verbose",
        "Include VERBOSE EXPLAIN details when a plan is logged",
        needs_analyze=True,
    ),
    AutoExplainSetting(
        "auto_explain.log_format",
        "gucs.auto_explain_log_format",
        "Select EXPLAIN output format to be used (only 'text' and 'json' are supported)",
    ),
    AutoExplainSetting(
        "auto_explain.log_min_duration",
        "gucs.auto_explain_log_min_duration",
        "Threshold to log EXPLAIN plans, in ms; recommend 1000, must be at least 10",
    ),
    AutoExplainSetting(
        "auto_explain.log_nested_statements",
        "gucs.auto_explain_log_nested_statements",
        "Causes nested statements (statements executed inside a function) to be considered for logging",
    ),
)


def _check_explain_mode(state) -> bool:
    return state.current_section.has_key("enable_log_explain")


def _confirm_explain_mode(state):
    use_log_based = state.resolver.confirm(
        "use_log_based_explain",
        "Use log-based EXPLAIN instead of the auto_explain module (will be saved to collector config)?",
        help_text="Learn more about the options at https://pganalyze.com/docs/explain/setup",
        ask=lambda prompter: prompter.select(
            "Select automated EXPLAIN mechanism to use (will be saved to collector config):",
            EXPLAIN_MODE_OPTIONS,
        )
        == EXPLAIN_MODE_OPTIONS[1],
    )
    state.current_section.new_key("enable_log_explain", "true" if use_log_based else "false")
    state.save_config()


def _check_log_explain_helpers(state) -> bool:
    if not using_log_explain(state.current_section):
        return True
    runner = state.connection()
    for database in monitored_databases(state):
        if not validate_helper_function(EXPLAIN_HELPER, runner.in_db(database)):
            return False
    return True


def _ensure_log_explain_helpers(state):
    require_change(
        state,
        "ensure_log_explain_helpers",
        "Create (or update) EXPLAIN helper function in each monitored database (will be saved to Postgres)?",
        "The EXPLAIN helper function is missing or outdated in a monitored database.",
    )
    runner = state.connection()
    grant = (
        "CREATE SCHEMA IF NOT EXISTS pganalyze; "
        f"GRANT USAGE ON SCHEMA pganalyze TO {quote_identifier(monitoring_user(state))};"
    )
    for database in monitored_databases(state):
        db_runner = runner.in_db(database)
        if validate_helper_function(EXPLAIN_HELPER, db_runner):
            continue
        state.logger.debug("Creating %s helper in database %s", EXPLAIN_HELPER.name, database)
        db_runner.exec(grant + EXPLAIN_HELPER.definition)


def _check_auto_explain_available(state) -> bool:
    if using_log_explain(state.current_section):
        return True
    try:
        state.connection().exec("LOAD 'auto_explain'")
    except QueryError as exc:
        if "No such file or directory" in str(exc):
            return False
        raise
    return True


def _auto_explain_unavailable(state):
    raise SetupError("contrib module auto_explain is not available")


def _check_auto_explain_in_spl(state) -> bool:
    if using_log_explain(state.current_section):
        return True
    return "auto_explain" in get_pending_shared_preload_libraries(state.connection())


def _ensure_auto_explain_in_spl(state):
    require_change(
        state,
        "ensure_auto_explain_loaded",
        "Add auto_explain to shared_preload_libraries "
        "(will be saved to Postgres; requires restart in a later step)?",
        "auto_explain is not in shared_preload_libraries but the auto_explain mode was selected.",
        help_text=(
            "Postgres will have to be restarted in a later step to apply this configuration change; "
            "learn more about Automated EXPLAIN at https://pganalyze.com/postgres-explain"
        ),
    )
    add_shared_preload_library(state.connection(), "auto_explain")


def _settings_query(state) -> str:
    predicates = []
    for item in AUTO_EXPLAIN_SETTINGS:
        if state.resolver.scripted:
            wanted = state.inputs.get(item.field)
            if wanted is None:
                continue
        else:
            wanted = item.recommended

        if isinstance(wanted, int):
            # interactive review only flags thresholds below the recommendation
            operator = "<>" if state.resolver.scripted else "<"
            predicates.append(
                f"(name = {quote_literal(item.name)} AND setting::integer {operator} {wanted})"
            )
        else:
            predicates.append(
                f"(name = {quote_literal(item.name)} AND setting <> {quote_literal(wanted)})"
            )

    if not predicates:
        return ""
    return "SELECT name, setting FROM pg_settings WHERE " + " OR ".join(predicates)


def settings_to_review(state) -> Dict[str, str]:
    """auto_explain settings whose current value differs from the wanted one."""
    sql = _settings_query(state)
    if not sql:
        return {}
    try:
        rows = state.connection().query(sql)
    except QueryError as exc:
        raise SetupError(f"error checking existing settings: {exc}") from exc
    return {row.get_string(0): row.get_string(1) for row in rows}


def _check_recommended_settings(state) -> bool:
    if state.did_auto_explain_recommended_settings:
        return True
    if state.inputs.ensure_auto_explain_recommended_settings is False:
        return True
    if using_log_explain(state.current_section):
        return True
    return not settings_to_review(state)


def _on_off_options(current: str, recommended: str) -> List[tuple]:
    other = "off" if recommended == "on" else "on"
    options = []
    for value in (recommended, other):
        notes = []
        if value == recommended:
            notes.append("recommended")
        if value != current:
            notes.append("will be saved to Postgres")
        verb = "leave as" if value == current else "set to"
        options.append((f"{verb} '{value}' ({'; '.join(notes)})" if notes else f"{verb} '{value}'", value))
    return options


def _ask_setting(item: AutoExplainSetting, current: str):
    message = f"Setting {item.name} is currently set to '{current}'"

    def ask_on_off(prompter):
        options = _on_off_options(current, item.recommended)
        label = prompter.select(message, [label for label, _ in options])
        return dict(options)[label]

    def ask_format(prompter):
        options = [("set to 'json' (recommended; will be saved to Postgres)", "json")]
        if current == "text":
            options.append(("leave as 'text' (text format support is experimental)", "text"))
        else:
            options.append(("set to 'text' (text format support is experimental; will be saved to Postgres)", "text"))
            options.append((f"leave as '{current}' (unsupported)", current))
        label = prompter.select(message, [label for label, _ in options])
        return dict(options)[label]

    def ask_min_duration(prompter):
        options = [
            f"set to {item.recommended}ms (recommended initial value; will be saved to Postgres)",
            "set to other value...",
            f"leave at {current}ms",
        ]
        choice = prompter.select(f"{message} ms", options)
        if choice == options[0]:
            return item.recommended
        if choice == options[2]:
            return int(current)
        raw = prompter.text(
            "Set auto_explain.log_min_duration, in milliseconds, to (will be saved to Postgres):"
        )
        try:
            return int(raw)
        except ValueError:
            return raw

    if item.name == "auto_explain.log_format":
        return ask_format
    if item.name == "auto_explain.log_min_duration":
        return ask_min_duration
    return ask_on_off


def _resolve_setting(state, item: AutoExplainSetting, current: str):
    if item.name == "auto_explain.log_min_duration":
        return state.resolver.integer(
            item.field,
            f"Set {item.name}, in milliseconds",
            help_text=item.help_text,
            validator=validate_auto_explain_min_duration,
            ask=_ask_setting(item, current),
        )

    if item.name == "auto_explain.log_format":
        # interactive runs may keep an unsupported current value
        allowed = ("json", "text") if state.resolver.scripted else ("json", "text", current)
    else:
        allowed = ON_OFF_VALUES
    return state.resolver.text(
        item.field,
        f"Set {item.name}",
        help_text=item.help_text,
        validator=require_one_of(*allowed),
        ask=_ask_setting(item, current),
    )


def _ensure_recommended_settings(state):
    review = state.resolver.confirm(
        "ensure_auto_explain_recommended_settings",
        "Review auto_explain configuration settings?",
        help_text=(
            "Optional, but will ensure best balance of monitoring visibility and performance; review "
            "these settings at https://pganalyze.com/docs/explain/setup/auto_explain"
        ),
        optional=True,
        fallback=False,
        write_back=True,
    )
    if not review:
        return

    pending = settings_to_review(state)
    if not pending:
        state.notice("all auto_explain configuration settings using recommended values")
        state.did_auto_explain_recommended_settings = True
        return

    runner = state.connection()
    for item in AUTO_EXPLAIN_SETTINGS:
        if item.name not in pending:
            continue
        if item.needs_analyze and runner.query_row("SHOW auto_explain.log_analyze").get_string(0) != "on":
            continue
        current = pending[item.name]
        value = _resolve_setting(state, item, current)
        if str(value) == current:
            continue
        if isinstance(value, int):
            apply_config_setting(runner, item.name, str(value))
        else:
            apply_config_setting(runner, item.name, quote_literal(value))
    state.did_auto_explain_recommended_settings = True


def _check_test_explain(state) -> bool:
    return state.did_test_explain_command or state.inputs.confirm_run_test_explain_command is False


def _run_test_explain(state):
    if not state.resolver.confirm(
        "confirm_run_test_explain_command",
        "Issue pg_sleep statement on server to test EXPLAIN configuration",
        help_text=(
            "Learn more about pg_sleep here: "
            "https://www.postgresql.org/docs/current/functions-datetime.html#FUNCTIONS-DATETIME-DELAY"
        ),
        optional=True,
        fallback=False,
        write_back=True,
    ):
        return
    state.collector_service.run_test_explain(state.config_filename)
    state.did_test_explain_command = True


CONFIRM_AUTOMATED_EXPLAIN_MODE = Step(
    id="ae_confirm_automated_explain_mode",
    description=(
        "Confirm whether to implement Automated EXPLAIN via the recommended auto_explain module "
        "or the alternative log-based EXPLAIN"
    ),
    check=_check_explain_mode,
    run=_confirm_explain_mode,
    kind=StepKind.AUTOMATED_EXPLAIN,
)
ENSURE_LOG_EXPLAIN_HELPERS = Step(
    id="aelog_ensure_log_explain_helpers",
    description="Ensure EXPLAIN helper functions for log-based EXPLAIN exist in all monitored Postgres databases",
    check=_check_log_explain_helpers,
    run=_ensure_log_explain_helpers,
    kind=StepKind.AUTOMATED_EXPLAIN,
)
CHECK_AUTO_EXPLAIN_AVAILABLE = Step(
    id="aemod_check_auto_explain_available",
    description="Confirm the auto_explain contrib module is available",
    check=_check_auto_explain_available,
    run=_auto_explain_unavailable,
    kind=StepKind.AUTOMATED_EXPLAIN,
)
ENSURE_AUTO_EXPLAIN_IN_SPL = Step(
    id="aemod_ensure_auto_explain_in_spl",
    description="Ensure the auto_explain module is included in the shared_preload_libraries setting in Postgres",
    check=_check_auto_explain_in_spl,
    run=_ensure_auto_explain_in_spl,
    kind=StepKind.AUTOMATED_EXPLAIN,
)
ENSURE_RECOMMENDED_SETTINGS = Step(
    id="aemod_ensure_recommended_settings",
    description="Ensure auto_explain settings in Postgres are configured as recommended, if desired",
    check=_check_recommended_settings,
    run=_ensure_recommended_settings,
    kind=StepKind.AUTOMATED_EXPLAIN,
)
CONFIRM_EMIT_TEST_EXPLAIN = Step(
    id="ae_confirm_emit_test_explain",
    description="Invoke the collector EXPLAIN test to generate an EXPLAIN plan based on pg_sleep",
    check=_check_test_explain,
    run=_run_test_explain,
    kind=StepKind.AUTOMATED_EXPLAIN,
)
