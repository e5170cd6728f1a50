"""Steps that set up basic monitoring: config, connection, user and pg_stat_statements."""

import secrets

from pgsetup.constants import DEFAULT_MONITORING_USER, MIN_PG_VERSION_NUM
from pgsetup.errors import NoRowsError, QueryError, SetupError
from pgsetup.errors_catalog import actionable_error
from pgsetup.models import Step
from pgsetup.services.collector_config import CollectorConfig
from pgsetup.services.input_resolver import DecisionPoint, TEXT
from pgsetup.services.postgres_service import (
    add_shared_preload_library,
    discover_local_postgres,
    get_pending_shared_preload_libraries,
    join_with_and,
    pending_restart_settings,
)
from pgsetup.services.query import QueryRunner, peer_os_user, quote_identifier, quote_literal
from pgsetup.services.validation import (
    database_list_validator,
    parse_database_list,
    require_non_empty,
    validate_port,
)
from pgsetup.steps.common import monitoring_user, require_change

LOG_INSIGHTS_INTRO = """
Basic setup is almost complete. You can complete it now, or proceed to
configuring the optional Log Insights feature. Log Insights will require
specifying your database log file (we may be able to detect this), and
may require changes to some logging-related settings.

Setting up Log Insights is required for the Automated EXPLAIN feature.

Learn more at https://pganalyze.com/log-insights
"""

SUPERUSER_OPTIONS = ("postgres", "another user...")
OTHER_DATABASE_OPTIONS = (
    "all other databases (including ones created in the future)",
    "no other databases",
    "select databases...",
)
MONITORING_USER_OPTIONS = (f"{DEFAULT_MONITORING_USER} (recommended)", "another user...")
PASSWORD_OPTIONS = ("generate random password (recommended)", "enter password")


def _check_platform(state) -> bool:
    info = state.platform_service.detect()
    state.platform = info
    state.platform_service.ensure_supported(info)
    return True


def _load_config(state) -> bool:
    config = CollectorConfig.load(state.config_filename)
    server = config.server()
    pganalyze = config.pganalyze
    state.config, state.current_section, state.pganalyze_section = config, server, pganalyze
    return True


def _check_api_key(state) -> bool:
    return state.pganalyze_section.has_key("api_key")


def _specify_api_key(state):
    api_key = state.resolver.text(
        "settings.api_key",
        "Please enter API key (will be saved to collector config):",
        help_text="The key can be found on the API keys page for your organization in the pganalyze app",
        validator=require_non_empty,
    )
    state.pganalyze_section.new_key("api_key", api_key)
    api_base_url = state.inputs.settings.api_base_url
    if api_base_url:
        state.pganalyze_section.new_key("api_base_url", api_base_url)
    state.save_config()


def _check_superuser_connection(state) -> bool:
    runner = state.query_runner
    if runner is None:
        return False
    try:
        runner.ping()
    except QueryError:
        state.query_runner = None
        return False
    runner.ping_super()
    return True


def _establish_superuser_connection(state):
    local = discover_local_postgres()
    if not local:
        raise SetupError("failed to find a running local Postgres install")
    labels = [pg.describe() for pg in local]
    chosen = {}

    def ask_instance(prompter):
        if len(local) == 1:
            pg = local[0]
        else:
            label = prompter.select("Found several Postgres installations; please select one", labels)
            pg = local[labels.index(label)]
        chosen["socket_dir"] = pg.socket_dir
        return pg.port

    port = state.resolver.integer(
        "pg_setup_conn_port",
        "Postgres port to connect to for configuration",
        validator=validate_port,
        ask=ask_instance,
    )
    socket_dir = state.resolver.resolve(
        DecisionPoint(
            field="pg_setup_conn_socket_dir",
            kind=TEXT,
            message="Postgres socket directory",
            optional=True,
            ask=lambda _prompter: chosen.get("socket_dir", ""),
        )
    )
    selected = next(
        (pg for pg in local if pg.port == port and (not socket_dir or pg.socket_dir == socket_dir)),
        None,
    )
    if selected is None:
        location = f" in {socket_dir}" if socket_dir else ""
        raise SetupError(f"no local Postgres server found listening on port {port}{location}")

    def ask_superuser(prompter):
        choice = prompter.select(
            "Select Postgres superuser to connect as for configuration purposes", SUPERUSER_OPTIONS
        )
        if choice == SUPERUSER_OPTIONS[0]:
            return choice
        return prompter.text("Enter Postgres superuser to connect as for configuration purposes")

    user = state.resolver.text(
        "pg_setup_conn_user",
        "Postgres superuser to connect as for configuration purposes",
        help_text="We will create a separate, restricted monitoring user for the collector later",
        validator=require_non_empty,
        ask=ask_superuser,
    )
    runner = QueryRunner(
        state.command_runner,
        user=user,
        host=selected.socket_dir,
        port=selected.port,
        os_user=peer_os_user(user),
    )
    runner.ping_super()
    state.query_runner = runner


def _check_postgres_version(state) -> bool:
    row = state.connection().query_row(
        "SELECT current_setting('server_version'), current_setting('server_version_num')::integer"
    )
    state.pg_version_str = row.get_string(0)
    state.pg_version_num = row.get_int(1)
    if state.pg_version_num < MIN_PG_VERSION_NUM:
        raise SetupError(
            f"not supported for Postgres versions older than 10; found {state.pg_version_str}"
        )
    return True


def _check_replication_status(state) -> bool:
    row = state.connection().query_row("SELECT pg_is_in_recovery()")
    if row.get_bool(0):
        raise SetupError("Postgres server is a replica; this is currently not supported")
    return True


def _check_databases(state) -> bool:
    """Also rebinds the session connection to the primary monitored database."""
    if not state.current_section.has_key("db_name"):
        return False
    names = state.current_section.get_list("db_name")
    if not names:
        return False
    state.query_runner = state.connection().in_db(names[0])
    return True


def _select_databases(state):
    rows = state.connection().query(
        "SELECT datname FROM pg_database WHERE datallowconn AND NOT datistemplate ORDER BY 1"
    )
    available = [row.get_string(0) for row in rows]
    if not available:
        raise SetupError("no databases found to monitor")

    def ask(prompter):
        primary = prompter.select(
            "Choose a primary database to monitor (will be saved to collector config):", available
        )
        names = [primary]
        others = [name for name in available if name != primary]
        if not others:
            if prompter.confirm(
                "Monitor all other databases created in the future (will be saved to collector config)?",
                default=True,
            ):
                names.append("*")
            return ",".join(names)

        choice = prompter.select(
            "Monitor other databases (will be saved to collector config)?", OTHER_DATABASE_OPTIONS
        )
        if choice == OTHER_DATABASE_OPTIONS[0]:
            names.append("*")
        elif choice == OTHER_DATABASE_OPTIONS[2]:
            names.extend(prompter.multi_select("Select other databases to monitor", others))
        return ",".join(names)

    value = state.resolver.text(
        "settings.db_name",
        "Databases to monitor (will be saved to collector config)",
        help_text="The collector connects to the first database listed; '*' adds every other database",
        validator=database_list_validator(available),
        ask=ask,
    )
    state.current_section.new_key("db_name", ",".join(parse_database_list(value)))
    state.save_config()


def _check_monitoring_user_specified(state) -> bool:
    return state.current_section.has_key("db_username")


def _specify_monitoring_user(state):
    def ask(prompter):
        choice = prompter.select(
            "Select Postgres user for the collector to use (will be saved to collector config):",
            MONITORING_USER_OPTIONS,
        )
        if choice == MONITORING_USER_OPTIONS[0]:
            return DEFAULT_MONITORING_USER
        return prompter.text("Enter Postgres user for the collector to use (will be saved to collector config):")

    user = state.resolver.text(
        "settings.db_username",
        "Postgres user for the collector to use (will be saved to collector config)",
        help_text="If the user does not exist, it can be created in a later step",
        validator=require_non_empty,
        ask=ask,
    )
    state.current_section.new_key("db_username", user)
    state.save_config()


def _check_monitoring_user(state) -> bool:
    try:
        state.connection().query_row(
            f"SELECT true FROM pg_user WHERE usename = {quote_literal(monitoring_user(state))}"
        )
    except NoRowsError:
        return False
    return True


def _ensure_monitoring_user(state):
    user = monitoring_user(state)
    require_change(
        state,
        "ensure_monitoring_user",
        f"User {user} does not exist in Postgres; create user (will be saved to Postgres)?",
        f"Monitoring user {user} does not exist.",
        help_text="If you skip this step, create the user manually before proceeding",
    )
    state.connection().exec(f"CREATE USER {quote_identifier(user)} CONNECTION LIMIT 5")


def _check_monitoring_password_specified(state) -> bool:
    return state.current_section.has_key("db_password")


def _specify_monitoring_password(state):
    generate = state.resolver.confirm(
        "generate_monitoring_password",
        "Generate a random password for the monitoring user?",
        default=True,
        optional=True,
        fallback=False,
        ask=lambda prompter: prompter.select(
            "Select how to set up the collector user password (will be saved to collector config):",
            PASSWORD_OPTIONS,
        )
        == PASSWORD_OPTIONS[0],
    )
    if generate:
        if state.inputs.settings.db_password:
            raise SetupError(
                actionable_error(
                    "conflicting_inputs",
                    first="generate_monitoring_password",
                    second="settings.db_password",
                )
            )
        password = secrets.token_hex(16)
    else:
        password = state.resolver.password(
            "settings.db_password",
            "Enter password for the collector to use (will be saved to collector config)",
            validator=require_non_empty,
        )
    state.current_section.new_key("db_password", password)
    state.save_config()


def monitoring_connection(state) -> QueryRunner:
    """Connection as the monitoring user with the configured password, over TCP."""
    section = state.current_section
    host = section.get_key("db_host") if section.has_key("db_host") else "localhost"
    port = section.get_key("db_port") if section.has_key("db_port") else state.connection().port
    return QueryRunner(
        state.command_runner,
        user=monitoring_user(state),
        host=host,
        port=port,
        database=section.get_list("db_name")[0],
        password=section.get_key("db_password"),
    )


def _check_monitoring_password(state) -> bool:
    try:
        monitoring_connection(state).ping()
    except QueryError as exc:
        if "authentication failed" in str(exc):
            return False
        raise
    return True


def _ensure_monitoring_password(state):
    user = monitoring_user(state)
    require_change(
        state,
        "ensure_monitoring_password",
        f"Update password for user {user} with configured value (will be saved to Postgres)?",
        f"Cannot log in as {user} with the configured password.",
        help_text="If you skip this step, ensure the password matches before proceeding",
    )
    password = state.current_section.get_key("db_password")
    state.connection().exec(
        f"SET log_statement = none; ALTER USER {quote_identifier(user)} "
        f"WITH ENCRYPTED PASSWORD {quote_literal(password)}"
    )


def _check_monitoring_permissions(state) -> bool:
    try:
        row = state.connection().query_row(
            "SELECT usesuper OR pg_has_role(usename, 'pg_monitor', 'usage') "
            f"FROM pg_user WHERE usename = {quote_literal(monitoring_user(state))}"
        )
    except NoRowsError:
        return False
    return row.get_bool(0)


def _ensure_monitoring_permissions(state):
    user = monitoring_user(state)
    require_change(
        state,
        "ensure_monitoring_permissions",
        f"Grant role pg_monitor to user {user} (will be saved to Postgres)?",
        f"Monitoring user {user} does not have adequate permissions.",
        help_text="Learn more about pg_monitor here: https://www.postgresql.org/docs/current/default-roles.html",
    )
    state.connection().exec(f"GRANT pg_monitor TO {quote_identifier(user)}")


def _check_pganalyze_schema(state) -> bool:
    runner = state.connection()
    row = runner.query_row("SELECT COUNT(*) FROM pg_namespace WHERE nspname = 'pganalyze'")
    if row.get_int(0) != 1:
        return False
    row = runner.query_row(
        f"SELECT has_schema_privilege({quote_literal(monitoring_user(state))}, 'pganalyze', 'USAGE')"
    )
    return row.get_bool(0)


def _ensure_pganalyze_schema(state):
    require_change(
        state,
        "ensure_helper_functions",
        "Create pganalyze schema and helper functions (will be saved to Postgres)?",
        "The pganalyze schema or its helper functions do not exist.",
        help_text=(
            "These helper functions allow the collector to monitor database statistics without "
            "being able to read your data"
        ),
    )
    state.connection().exec(
        "CREATE SCHEMA IF NOT EXISTS pganalyze; "
        f"GRANT USAGE ON SCHEMA pganalyze TO {quote_identifier(monitoring_user(state))};"
    )


def _check_pgss_available(state) -> bool:
    try:
        row = state.connection().query_row(
            "SELECT true FROM pg_available_extensions WHERE name = 'pg_stat_statements'"
        )
    except NoRowsError:
        return False
    return row.get_bool(0)


def _pgss_unavailable(state):
    raise SetupError("extension pg_stat_statements is not available")


def _check_pgss_installed(state) -> bool:
    try:
        row = state.connection().query_row(
            "SELECT extnamespace::regnamespace::text FROM pg_extension WHERE extname = 'pg_stat_statements'"
        )
    except NoRowsError:
        return False
    schema = row.get_string(0)
    if schema != "public":
        raise SetupError(
            f"pg_stat_statements is installed, but in unsupported schema {schema}; "
            "must be installed in 'public'"
        )
    return True


def _ensure_pgss_installed(state):
    require_change(
        state,
        "ensure_pg_stat_statements_installed",
        "Create extension pg_stat_statements in public schema for query performance monitoring "
        "(will be saved to Postgres)?",
        "pg_stat_statements does not exist in the primary database.",
        help_text="Learn more about pg_stat_statements here: https://www.postgresql.org/docs/current/pgstatstatements.html",
    )
    state.connection().exec("CREATE EXTENSION pg_stat_statements SCHEMA public")


def _check_pgss_in_spl(state) -> bool:
    spl = get_pending_shared_preload_libraries(state.connection())
    return "pg_stat_statements" in spl


def _ensure_pgss_in_spl(state):
    require_change(
        state,
        "ensure_pg_stat_statements_loaded",
        "Add pg_stat_statements to shared_preload_libraries "
        "(will be saved to Postgres; requires restart in a later step)?",
        "pg_stat_statements is not in shared_preload_libraries.",
        help_text="Postgres will have to be restarted in a later step to apply this configuration change",
    )
    add_shared_preload_library(state.connection(), "pg_stat_statements")


def _check_log_insights_answered(state) -> bool:
    return (
        state.inputs.confirm_set_up_log_insights is not None
        or state.current_section.has_key("db_log_location")
    )


def _confirm_set_up_log_insights(state):
    state.resolver.confirm(
        "confirm_set_up_log_insights",
        "Proceed to configuring optional Log Insights feature?",
        intro=LOG_INSIGHTS_INTRO,
        write_back=True,
    )


def _check_no_pending_restart(state) -> bool:
    return not pending_restart_settings(state.connection())


def _restart_postgres(state):
    runner = state.connection()
    pending = pending_restart_settings(runner)
    message = (
        f"Postgres must be restarted for changes to {join_with_and(pending)} to take effect; "
        "restart Postgres now?"
    )

    def ask(prompter):
        if not prompter.confirm(message):
            return False
        return prompter.confirm("WARNING: Your database will be restarted. Are you sure?")

    require_change(
        state,
        "confirm_postgres_restart",
        message,
        f"Changes to {join_with_and(pending)} are pending a Postgres restart.",
        ask=ask,
    )
    state.postgres_service.restart(runner)


def _check_test_command(state) -> bool:
    return state.did_test_command or state.inputs.confirm_run_test_command is False


def _run_test_command(state):
    if not state.resolver.confirm(
        "confirm_run_test_command",
        "Test connection to pganalyze and reload the collector config?",
        default=True,
        optional=True,
        fallback=False,
        write_back=True,
        help_text="This runs the collector with --test --reload",
    ):
        return
    state.collector_service.run_test(state.config_filename)
    state.did_test_command = True
    # the --reload flag already applied the saved config
    state.needs_reload = False
    state.did_reload = True


def _check_reload(state) -> bool:
    return not state.needs_reload or state.did_reload


def _reload_collector(state):
    require_change(
        state,
        "confirm_collector_reload",
        "The collector config file has changed; reload the running collector now?",
        "The running collector has not picked up the config changes.",
        default=True,
    )
    pid = state.collector_service.reload()
    state.notice(f"Reloaded collector (pid {pid})")
    state.did_reload = True


CHECK_PLATFORM = Step(
    id="check_platform",
    description="Check whether this platform is supported by guided setup",
    check=_check_platform,
)
LOAD_CONFIG = Step(
    id="load_config",
    description="Load collector config file",
    check=_load_config,
)
SPECIFY_API_KEY = Step(
    id="specify_api_key",
    description="Specify the pganalyze API key (api_key) in the collector config file",
    check=_check_api_key,
    run=_specify_api_key,
)
ESTABLISH_SUPERUSER_CONNECTION = Step(
    id="establish_superuser_connection",
    description="Ensure Postgres superuser connection for configuration",
    check=_check_superuser_connection,
    run=_establish_superuser_connection,
)
CHECK_POSTGRES_VERSION = Step(
    id="check_postgres_version",
    description="Check whether this Postgres version is supported by pganalyze guided setup",
    check=_check_postgres_version,
)
CHECK_REPLICATION_STATUS = Step(
    id="check_replication_status",
    description="Check whether the database is a replica, which is currently unsupported by guided setup",
    check=_check_replication_status,
)
SELECT_DATABASES = Step(
    id="select_databases",
    description="Choose which databases to monitor (db_name) in the collector config file",
    check=_check_databases,
    run=_select_databases,
)
SPECIFY_MONITORING_USER = Step(
    id="specify_monitoring_user",
    description="Specify the monitoring user (db_username) in the collector config file",
    check=_check_monitoring_user_specified,
    run=_specify_monitoring_user,
)
ENSURE_MONITORING_USER = Step(
    id="ensure_monitoring_user",
    description="Ensure the monitoring user (db_username) exists in Postgres",
    check=_check_monitoring_user,
    run=_ensure_monitoring_user,
)
SPECIFY_MONITORING_USER_PASSWORD = Step(
    id="specify_monitoring_user_password",
    description="Specify the monitoring user password (db_password) in the collector config file",
    check=_check_monitoring_password_specified,
    run=_specify_monitoring_password,
)
ENSURE_MONITORING_USER_PASSWORD = Step(
    id="ensure_monitoring_user_password",
    description="Ensure the monitoring user password in Postgres matches db_password in the collector config file",
    check=_check_monitoring_password,
    run=_ensure_monitoring_password,
)
ENSURE_MONITORING_USER_PERMISSIONS = Step(
    id="ensure_monitoring_user_permissions",
    description="Ensure the monitoring user has sufficient permissions in Postgres for access to monitoring metadata",
    check=_check_monitoring_permissions,
    run=_ensure_monitoring_permissions,
)
ENSURE_PGANALYZE_SCHEMA = Step(
    id="ensure_pganalyze_schema",
    description="Ensure the pganalyze schema exists and the monitoring user has USAGE privilege on it",
    check=_check_pganalyze_schema,
    run=_ensure_pganalyze_schema,
)
CHECK_PGSS_AVAILABLE = Step(
    id="check_pgss_available",
    description="Prepare for pg_stat_statements install",
    check=_check_pgss_available,
    run=_pgss_unavailable,
)
ENSURE_PGSS_EXT_INSTALLED = Step(
    id="ensure_pgss_ext_installed",
    description="Ensure the pg_stat_statements extension is installed in Postgres",
    check=_check_pgss_installed,
    run=_ensure_pgss_installed,
)
ENSURE_PGSS_IN_SPL = Step(
    id="ensure_pgss_in_spl",
    description="Ensure the pg_stat_statements extension is included in the shared_preload_libraries setting",
    check=_check_pgss_in_spl,
    run=_ensure_pgss_in_spl,
)
CONFIRM_SET_UP_LOG_INSIGHTS = Step(
    id="confirm_set_up_log_insights",
    description="Confirm whether to set up the optional Log Insights feature",
    check=_check_log_insights_answered,
    run=_confirm_set_up_log_insights,
)
CONFIRM_RESTART_POSTGRES = Step(
    id="confirm_restart_postgres",
    description="If necessary, restart Postgres to apply pending configuration changes",
    check=_check_no_pending_restart,
    run=_restart_postgres,
)
CONFIRM_RUN_TEST_COMMAND = Step(
    id="confirm_run_test_command",
    description="Test collector configuration and connection to pganalyze",
    check=_check_test_command,
    run=_run_test_command,
)
RELOAD_COLLECTOR = Step(
    id="reload_collector",
    description="Reload the collector to apply config changes",
    check=_check_reload,
    run=_reload_collector,
)
