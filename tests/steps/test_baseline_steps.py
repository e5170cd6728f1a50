import pytest

from pgsetup.errors import InputResolutionError, QueryError, SetupError, StepRunError
from pgsetup.models import LocalPostgres, PlatformInfo, SetupInputs, SetupSettings
from pgsetup.services.collector_config import CollectorConfig
from pgsetup.services.orchestrator import StepOrchestrator
from pgsetup.steps import baseline
from pgsetup.steps.common import monitored_databases

MONITORED_CONFIG = """[pganalyze]
api_key = abc123

[server1]
db_host = localhost
db_port = 5432
db_name = app
db_username = pganalyze
db_password = secret
"""


class FakePlatformService:
    def __init__(self, info, error=None):
        self.info = info
        self.error = error

    def detect(self):
        return self.info

    def ensure_supported(self, info):
        if self.error is not None:
            raise self.error


def _reload(state):
    return CollectorConfig.load(state.config_filename).server()


def test_check_platform_records_detected_platform(make_state):
    info = PlatformInfo("linux", "ubuntu", "debian", "22.04")
    state = make_state(platform_service=FakePlatformService(info))

    assert baseline.CHECK_PLATFORM.check(state) is True
    assert state.platform == info


def test_check_platform_unsupported_is_fatal(make_state):
    info = PlatformInfo("linux", "centos", "rhel", "8")
    state = make_state(platform_service=FakePlatformService(info, error=SetupError("not supported")))

    with pytest.raises(SetupError, match="not supported"):
        baseline.CHECK_PLATFORM.check(state)


def test_load_config_populates_sections(make_state):
    state = make_state()
    state.config = state.current_section = state.pganalyze_section = None

    assert baseline.LOAD_CONFIG.check(state) is True
    assert state.current_section.name == "server1"
    assert state.pganalyze_section.get_key("api_key") == "abc123"


def test_load_config_without_pganalyze_section_leaves_file_untouched(make_state, tmp_path):
    config_path = tmp_path / "server-only.conf"
    config_path.write_text("[server1]\ndb_host = localhost\n", encoding="utf-8")
    state = make_state()
    state.config_filename = str(config_path)
    state.config = state.current_section = state.pganalyze_section = None

    with pytest.raises(SetupError, match=r"\[pganalyze\] section"):
        baseline.LOAD_CONFIG.check(state)

    assert state.config is None
    with open(state.config_filename, encoding="utf-8") as file_obj:
        assert file_obj.read() == "[server1]\ndb_host = localhost\n"


def test_specify_api_key_scripted_saves_key_and_base_url(make_state):
    inputs = SetupInputs(settings=SetupSettings(api_key="newkey", api_base_url="https://pga.example.com"))
    state = make_state(config="[pganalyze]\n\n[server1]\ndb_host = localhost\n", inputs=inputs)

    assert baseline.SPECIFY_API_KEY.check(state) is False
    baseline.SPECIFY_API_KEY.run(state)

    saved = CollectorConfig.load(state.config_filename).pganalyze
    assert saved.get_key("api_key") == "newkey"
    assert saved.get_key("api_base_url") == "https://pga.example.com"
    assert state.needs_reload is True
    assert baseline.SPECIFY_API_KEY.check(state) is True


def test_specify_api_key_missing_input(make_state):
    state = make_state(config="[pganalyze]\n\n[server1]\ndb_host = localhost\n")

    with pytest.raises(InputResolutionError, match="settings.api_key"):
        baseline.SPECIFY_API_KEY.run(state)


def test_superuser_connection_check_without_runner(make_state):
    state = make_state()
    state.query_runner = None

    assert baseline.ESTABLISH_SUPERUSER_CONNECTION.check(state) is False


def test_superuser_connection_check_clears_dead_runner(make_state, fake_runner):
    class DeadRunner(fake_runner):
        def ping(self):
            raise QueryError("connection refused")

    state = make_state(runner=DeadRunner())

    assert baseline.ESTABLISH_SUPERUSER_CONNECTION.check(state) is False
    assert state.query_runner is None


class ConnectRunner:
    instances = []

    def __init__(self, command_runner, **kwargs):
        self.kwargs = kwargs
        ConnectRunner.instances.append(self)

    def ping_super(self):
        return None


@pytest.fixture
def local_postgres(monkeypatch):
    def install(*instances):
        ConnectRunner.instances = []
        monkeypatch.setattr(baseline, "discover_local_postgres", lambda: list(instances))
        monkeypatch.setattr(baseline, "QueryRunner", ConnectRunner)
        monkeypatch.setattr(baseline, "peer_os_user", lambda user: "postgres" if user == "postgres" else None)

    return install


def test_establish_connection_scripted(make_state, local_postgres):
    local_postgres(
        LocalPostgres("/var/run/postgresql", 5432),
        LocalPostgres("/var/run/postgresql", 5433),
    )
    inputs = SetupInputs(pg_setup_conn_port=5433, pg_setup_conn_user="postgres")
    state = make_state(inputs=inputs)

    baseline.ESTABLISH_SUPERUSER_CONNECTION.run(state)

    assert state.query_runner is ConnectRunner.instances[0]
    assert ConnectRunner.instances[0].kwargs == {
        "user": "postgres",
        "host": "/var/run/postgresql",
        "port": 5433,
        "os_user": "postgres",
    }


def test_establish_connection_scripted_unknown_port(make_state, local_postgres):
    local_postgres(LocalPostgres("/var/run/postgresql", 5432))
    inputs = SetupInputs(pg_setup_conn_port=6000, pg_setup_conn_user="postgres")

    with pytest.raises(SetupError, match="no local Postgres server found listening on port 6000"):
        baseline.ESTABLISH_SUPERUSER_CONNECTION.run(make_state(inputs=inputs))


def test_establish_connection_without_local_postgres(make_state, local_postgres):
    local_postgres()

    with pytest.raises(SetupError, match="failed to find a running local Postgres install"):
        baseline.ESTABLISH_SUPERUSER_CONNECTION.run(make_state())


def test_establish_connection_interactive_selects_instance_and_user(make_state, local_postgres):
    local_postgres(LocalPostgres("/var/run/postgresql", 5432), LocalPostgres("/tmp", 5432))
    state = make_state(scripted=False, answers=[1, 1, "admin"])

    baseline.ESTABLISH_SUPERUSER_CONNECTION.run(state)

    kwargs = ConnectRunner.instances[0].kwargs
    assert (kwargs["host"], kwargs["port"], kwargs["user"], kwargs["os_user"]) == ("/tmp", 5432, "admin", None)
    assert len(state.resolver.prompter.asked) == 3


def test_check_postgres_version(make_state, fake_runner):
    state = make_state(runner=fake_runner({"server_version": [("14.5", 140005)]}))

    assert baseline.CHECK_POSTGRES_VERSION.check(state) is True
    assert (state.pg_version_str, state.pg_version_num) == ("14.5", 140005)


def test_old_postgres_version_is_rejected(make_state, fake_runner):
    state = make_state(runner=fake_runner({"server_version": [("9.6.2", 90602)]}))

    with pytest.raises(SetupError, match="older than 10; found 9.6.2"):
        baseline.CHECK_POSTGRES_VERSION.check(state)


def test_replica_is_rejected(make_state, fake_runner):
    state = make_state(runner=fake_runner({"pg_is_in_recovery": [("t",)]}))

    with pytest.raises(SetupError, match="replica"):
        baseline.CHECK_REPLICATION_STATUS.check(state)


def test_select_databases_check_rebinds_to_primary_database(make_state):
    state = make_state(config=MONITORED_CONFIG)

    assert baseline.SELECT_DATABASES.check(state) is True
    assert state.query_runner.database == "app"


def test_select_databases_check_without_db_name(make_state):
    assert baseline.SELECT_DATABASES.check(make_state()) is False


DATABASES = {"FROM pg_database": [("app",), ("reporting",), ("analytics",)]}


def test_select_databases_scripted(make_state, fake_runner):
    inputs = SetupInputs(settings=SetupSettings(db_name="app, *"))
    state = make_state(inputs=inputs, runner=fake_runner(dict(DATABASES)))

    baseline.SELECT_DATABASES.run(state)

    assert _reload(state).get_key("db_name") == "app,*"


def test_select_databases_scripted_rejects_unknown_database(make_state, fake_runner):
    inputs = SetupInputs(settings=SetupSettings(db_name="app,missing"))
    state = make_state(inputs=inputs, runner=fake_runner(dict(DATABASES)))

    with pytest.raises(InputResolutionError, match="database missing configured for db_name"):
        baseline.SELECT_DATABASES.run(state)


@pytest.mark.parametrize(
    "answers, expected",
    [
        ([0, 0], "app,*"),
        ([0, 1], "app"),
        ([1, 2, ["analytics"]], "reporting,analytics"),
    ],
)
def test_select_databases_interactive(make_state, fake_runner, answers, expected):
    state = make_state(scripted=False, answers=answers, runner=fake_runner(dict(DATABASES)))

    baseline.SELECT_DATABASES.run(state)

    assert _reload(state).get_key("db_name") == expected


def test_select_databases_mode_symmetry(make_state, fake_runner):
    interactive = make_state(scripted=False, answers=[0, 0], runner=fake_runner(dict(DATABASES)))
    baseline.SELECT_DATABASES.run(interactive)
    interactive_value = _reload(interactive).get_key("db_name")

    scripted = make_state(
        inputs=SetupInputs(settings=SetupSettings(db_name=interactive_value)),
        runner=fake_runner(dict(DATABASES)),
    )
    baseline.SELECT_DATABASES.run(scripted)

    assert _reload(scripted).get_key("db_name") == interactive_value


def test_monitored_databases_expands_wildcard(make_state, fake_runner):
    config = MONITORED_CONFIG.replace("db_name = app", "db_name = app,*")
    state = make_state(config=config, runner=fake_runner(dict(DATABASES)))

    assert monitored_databases(state) == ["app", "reporting", "analytics"]


def test_missing_monitoring_user_halts_before_any_mutation(make_state, fake_runner):
    runner = fake_runner()
    state = make_state(runner=runner)
    before = open(state.config_filename, encoding="utf-8").read()

    with pytest.raises(InputResolutionError) as exc_info:
        StepOrchestrator().run(
            [baseline.SPECIFY_MONITORING_USER, baseline.ENSURE_MONITORING_USER], state
        )

    assert exc_info.value.field == "settings.db_username"
    assert exc_info.value.step_id == "specify_monitoring_user"
    assert runner.executed == []
    assert open(state.config_filename, encoding="utf-8").read() == before


def test_specify_monitoring_user_interactive_default(make_state):
    state = make_state(scripted=False, answers=[0])

    baseline.SPECIFY_MONITORING_USER.run(state)

    assert _reload(state).get_key("db_username") == "pganalyze"


def test_ensure_monitoring_user_creates_user_and_rechecks(make_state, fake_runner):
    runner = fake_runner()
    runner.on_exec("CREATE USER", lambda responses: responses.update({"SELECT true FROM pg_user": [("t",)]}))
    state = make_state(
        config=MONITORED_CONFIG,
        inputs=SetupInputs(ensure_monitoring_user=True),
        runner=runner,
    )

    result = StepOrchestrator().run([baseline.ENSURE_MONITORING_USER], state)

    assert result.completed == ["ensure_monitoring_user"]
    assert runner.executed == ['CREATE USER "pganalyze" CONNECTION LIMIT 5']


def test_declined_monitoring_user_is_actionable(make_state, fake_runner):
    state = make_state(config=MONITORED_CONFIG, inputs=SetupInputs(ensure_monitoring_user=False))

    with pytest.raises(StepRunError) as exc_info:
        StepOrchestrator().run([baseline.ENSURE_MONITORING_USER], state)

    message = str(exc_info.value)
    assert message.startswith("Monitoring user pganalyze does not exist.")
    assert "Set `ensure_monitoring_user` to true" in message


def test_declined_monitoring_user_interactive(make_state):
    state = make_state(config=MONITORED_CONFIG, scripted=False, answers=[False])

    with pytest.raises(SetupError, match="does not exist"):
        baseline.ENSURE_MONITORING_USER.run(state)


def test_generate_monitoring_password(make_state):
    config = MONITORED_CONFIG.replace("db_password = secret\n", "")
    state = make_state(config=config, inputs=SetupInputs(generate_monitoring_password=True))

    assert baseline.SPECIFY_MONITORING_USER_PASSWORD.check(state) is False
    baseline.SPECIFY_MONITORING_USER_PASSWORD.run(state)

    password = _reload(state).get_key("db_password")
    assert len(password) == 32
    int(password, 16)


def test_generate_monitoring_password_conflicts_with_explicit_password(make_state):
    config = MONITORED_CONFIG.replace("db_password = secret\n", "")
    inputs = SetupInputs(
        settings=SetupSettings(db_password="explicit"), generate_monitoring_password=True
    )

    with pytest.raises(SetupError, match="`generate_monitoring_password` and `settings.db_password` cannot both be set"):
        baseline.SPECIFY_MONITORING_USER_PASSWORD.run(make_state(config=config, inputs=inputs))


def test_explicit_monitoring_password(make_state):
    config = MONITORED_CONFIG.replace("db_password = secret\n", "")
    inputs = SetupInputs(settings=SetupSettings(db_password="explicit"))
    state = make_state(config=config, inputs=inputs)

    baseline.SPECIFY_MONITORING_USER_PASSWORD.run(state)

    assert _reload(state).get_key("db_password") == "explicit"


def test_interactive_password_entry(make_state):
    config = MONITORED_CONFIG.replace("db_password = secret\n", "")
    state = make_state(config=config, scripted=False, answers=[1, "typed"])

    baseline.SPECIFY_MONITORING_USER_PASSWORD.run(state)

    assert _reload(state).get_key("db_password") == "typed"


class PasswordCheckRunner:
    error = None
    created = []

    def __init__(self, command_runner, **kwargs):
        PasswordCheckRunner.created.append(kwargs)

    def ping(self):
        if PasswordCheckRunner.error is not None:
            raise PasswordCheckRunner.error


def test_monitoring_password_check_authentication_failure(make_state, monkeypatch):
    monkeypatch.setattr(baseline, "QueryRunner", PasswordCheckRunner)
    PasswordCheckRunner.created = []
    PasswordCheckRunner.error = QueryError('FATAL: password authentication failed for user "pganalyze"')
    state = make_state(config=MONITORED_CONFIG)

    assert baseline.ENSURE_MONITORING_USER_PASSWORD.check(state) is False
    assert PasswordCheckRunner.created[0] == {
        "user": "pganalyze",
        "host": "localhost",
        "port": "5432",
        "database": "app",
        "password": "secret",
    }


def test_monitoring_password_check_other_errors_propagate(make_state, monkeypatch):
    monkeypatch.setattr(baseline, "QueryRunner", PasswordCheckRunner)
    PasswordCheckRunner.error = QueryError("could not connect to server")

    with pytest.raises(QueryError, match="could not connect"):
        baseline.ENSURE_MONITORING_USER_PASSWORD.check(make_state(config=MONITORED_CONFIG))


def test_ensure_monitoring_password_updates_user(make_state, fake_runner):
    runner = fake_runner()
    state = make_state(
        config=MONITORED_CONFIG, inputs=SetupInputs(ensure_monitoring_password=True), runner=runner
    )

    baseline.ENSURE_MONITORING_USER_PASSWORD.run(state)

    assert runner.executed == [
        "SET log_statement = none; ALTER USER \"pganalyze\" WITH ENCRYPTED PASSWORD 'secret'"
    ]


def test_monitoring_permissions(make_state, fake_runner):
    runner = fake_runner({"pg_has_role": [("f",)]})
    state = make_state(
        config=MONITORED_CONFIG, inputs=SetupInputs(ensure_monitoring_permissions=True), runner=runner
    )

    assert baseline.ENSURE_MONITORING_USER_PERMISSIONS.check(state) is False
    baseline.ENSURE_MONITORING_USER_PERMISSIONS.run(state)

    assert runner.executed == ['GRANT pg_monitor TO "pganalyze"']


def test_pganalyze_schema(make_state, fake_runner):
    runner = fake_runner({"FROM pg_namespace": [("0",)]})
    state = make_state(config=MONITORED_CONFIG, inputs=SetupInputs(ensure_helper_functions=True), runner=runner)

    assert baseline.ENSURE_PGANALYZE_SCHEMA.check(state) is False
    baseline.ENSURE_PGANALYZE_SCHEMA.run(state)

    assert runner.executed == [
        'CREATE SCHEMA IF NOT EXISTS pganalyze; GRANT USAGE ON SCHEMA pganalyze TO "pganalyze";'
    ]


def test_pganalyze_schema_requires_usage_privilege(make_state, fake_runner):
    runner = fake_runner({"FROM pg_namespace": [("1",)], "has_schema_privilege": [("f",)]})

    assert baseline.ENSURE_PGANALYZE_SCHEMA.check(make_state(config=MONITORED_CONFIG, runner=runner)) is False


def test_pg_stat_statements_unavailable(make_state):
    state = make_state(config=MONITORED_CONFIG)

    assert baseline.CHECK_PGSS_AVAILABLE.check(state) is False
    with pytest.raises(SetupError, match="extension pg_stat_statements is not available"):
        baseline.CHECK_PGSS_AVAILABLE.run(state)


def test_pg_stat_statements_in_unsupported_schema(make_state, fake_runner):
    runner = fake_runner({"FROM pg_extension": [("monitoring",)]})

    with pytest.raises(SetupError, match="unsupported schema monitoring"):
        baseline.ENSURE_PGSS_EXT_INSTALLED.check(make_state(config=MONITORED_CONFIG, runner=runner))


def test_install_pg_stat_statements(make_state, fake_runner):
    runner = fake_runner()
    state = make_state(
        config=MONITORED_CONFIG, inputs=SetupInputs(ensure_pg_stat_statements_installed=True), runner=runner
    )

    assert baseline.ENSURE_PGSS_EXT_INSTALLED.check(state) is False
    baseline.ENSURE_PGSS_EXT_INSTALLED.run(state)

    assert runner.executed == ["CREATE EXTENSION pg_stat_statements SCHEMA public"]


def test_pg_stat_statements_added_to_shared_preload_libraries(make_state, fake_runner):
    runner = fake_runner({"pg_file_settings": [("shared_preload_libraries", "")]})
    state = make_state(
        config=MONITORED_CONFIG, inputs=SetupInputs(ensure_pg_stat_statements_loaded=True), runner=runner
    )

    assert baseline.ENSURE_PGSS_IN_SPL.check(state) is False
    baseline.ENSURE_PGSS_IN_SPL.run(state)

    assert runner.executed == [
        "ALTER SYSTEM SET shared_preload_libraries = pg_stat_statements",
        "SELECT pg_reload_conf()",
    ]


def test_log_insights_answer_is_written_back(make_state):
    state = make_state(config=MONITORED_CONFIG, scripted=False, answers=[False])

    assert baseline.CONFIRM_SET_UP_LOG_INSIGHTS.check(state) is False
    baseline.CONFIRM_SET_UP_LOG_INSIGHTS.run(state)

    assert state.inputs.confirm_set_up_log_insights is False
    assert baseline.CONFIRM_SET_UP_LOG_INSIGHTS.check(state) is True


def test_log_insights_already_configured(make_state):
    config = MONITORED_CONFIG + "db_log_location = /var/log/postgresql\n"

    assert baseline.CONFIRM_SET_UP_LOG_INSIGHTS.check(make_state(config=config)) is True


def test_restart_postgres_scripted(make_state, fake_runner, fake_postgres):
    postgres = fake_postgres()
    state = make_state(
        inputs=SetupInputs(confirm_postgres_restart=True),
        runner=fake_runner({"pending_restart": [("shared_preload_libraries",)]}),
        postgres_service=postgres,
    )

    assert baseline.CONFIRM_RESTART_POSTGRES.check(state) is False
    baseline.CONFIRM_RESTART_POSTGRES.run(state)

    assert postgres.restarts == 1


def test_restart_postgres_interactive_requires_double_confirmation(make_state, fake_runner, fake_postgres):
    postgres = fake_postgres()
    state = make_state(
        scripted=False,
        answers=[True, False],
        runner=fake_runner({"pending_restart": [("shared_preload_libraries",)]}),
        postgres_service=postgres,
    )

    with pytest.raises(SetupError, match="shared_preload_libraries are pending a Postgres restart"):
        baseline.CONFIRM_RESTART_POSTGRES.run(state)

    assert postgres.restarts == 0
    assert state.resolver.prompter.asked[1] == "WARNING: Your database will be restarted. Are you sure?"


def test_test_command_skipped_without_input(make_state, collector_service):
    state = make_state(collector_service=collector_service)

    baseline.CONFIRM_RUN_TEST_COMMAND.run(state)

    assert collector_service.calls == []
    assert state.inputs.confirm_run_test_command is False
    assert baseline.CONFIRM_RUN_TEST_COMMAND.check(state) is True


def test_test_command_reloads_collector(make_state, collector_service):
    state = make_state(inputs=SetupInputs(confirm_run_test_command=True), collector_service=collector_service)
    state.needs_reload = True

    baseline.CONFIRM_RUN_TEST_COMMAND.run(state)

    assert collector_service.calls == [("test", state.config_filename)]
    assert state.did_test_command is True
    assert state.needs_reload is False
    assert baseline.RELOAD_COLLECTOR.check(state) is True


def test_reload_collector(make_state, collector_service):
    state = make_state(inputs=SetupInputs(confirm_collector_reload=True), collector_service=collector_service)
    state.needs_reload = True

    assert baseline.RELOAD_COLLECTOR.check(state) is False
    baseline.RELOAD_COLLECTOR.run(state)

    assert collector_service.calls == [("reload",)]
    assert state.did_reload is True
    assert "[yellow]Reloaded collector (pid 4242)[/yellow]" in state.console.lines
