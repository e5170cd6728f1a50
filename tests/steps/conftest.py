import pytest

from pgsetup.errors import NoRowsError, QueryError
from pgsetup.models import SetupInputs
from pgsetup.services.collector_config import CollectorConfig
from pgsetup.services.input_resolver import InteractiveInputResolver, ScriptedInputResolver
from pgsetup.services.query import Row
from pgsetup.services.state import SetupState

BASE_CONFIG = """[pganalyze]
api_key = abc123

[server1]
db_host = localhost
db_port = 5432
"""


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def __init__(self):
        self.lines = []

    def print(self, *args, **_kwargs):
        self.lines.append(" ".join(str(arg) for arg in args))


class FakeQueryRunner:
    """psql stand-in: answers queries by SQL fragment and records every statement."""

    def __init__(self, responses=None, database=None, port=5432, shared=None):
        self.responses = responses if responses is not None else {}
        self.database = database
        self.port = port
        self.shared = shared if shared is not None else {"log": [], "hooks": []}

    @property
    def executed(self):
        return [sql for _database, sql in self.shared["log"]]

    @property
    def log(self):
        return self.shared["log"]

    def on_exec(self, fragment, hook):
        self.shared["hooks"].append((fragment, hook))

    def in_db(self, database):
        return FakeQueryRunner(self.responses, database=database, port=self.port, shared=self.shared)

    def _answer(self, sql):
        for fragment, answer in self.responses.items():
            if fragment in sql:
                if isinstance(answer, Exception):
                    raise answer
                if callable(answer):
                    answer = answer(self.database)
                return [Row([str(value) for value in values]) for values in answer]
        return []

    def query(self, sql):
        return self._answer(sql)

    def query_row(self, sql):
        rows = self._answer(sql)
        if not rows:
            raise NoRowsError("query returned no rows")
        if len(rows) > 1:
            raise QueryError(f"expected one row; got {len(rows)}")
        return rows[0]

    def exec(self, sql):
        self._answer(sql)
        self.shared["log"].append((self.database, sql))
        for fragment, hook in self.shared["hooks"]:
            if fragment in sql:
                hook(self.responses)

    def ping(self):
        return None

    def ping_super(self):
        return None


class FakePrompter:
    def __init__(self, answers=()):
        self.answers = list(answers)
        self.asked = []
        self.errors = []
        self.console = DummyConsole()

    def _next(self, message):
        self.asked.append(message)
        return self.answers.pop(0)

    def note(self, text):
        self.console.print(text)

    def error(self, text):
        self.errors.append(text)

    def confirm(self, message, default=False):
        return self._next(message)

    def text(self, message, default=None, password=False):
        return self._next(message)

    def select(self, message, options, default=None):
        answer = self._next(message)
        return options[answer] if isinstance(answer, int) else answer

    def multi_select(self, message, options):
        return self._next(message)


class FakePostgresService:
    def __init__(self, log_location=None, error=None):
        self.log_location = log_location
        self.error = error
        self.restarts = 0

    def discover_log_location(self, _section, _runner):
        if self.error is not None:
            raise self.error
        return self.log_location

    def restart(self, _runner):
        self.restarts += 1


class FakeCollectorService:
    def __init__(self):
        self.calls = []

    def run_test(self, config_filename):
        self.calls.append(("test", config_filename))

    def run_test_explain(self, config_filename):
        self.calls.append(("test_explain", config_filename))

    def reload(self):
        self.calls.append(("reload",))
        return 4242


@pytest.fixture
def make_state(tmp_path):
    """Build a SetupState around a temporary collector config file."""

    def factory(
        config=BASE_CONFIG,
        inputs=None,
        scripted=True,
        answers=(),
        runner=None,
        postgres_service=None,
        collector_service=None,
        platform_service=None,
    ):
        config_path = tmp_path / "pganalyze-collector.conf"
        config_path.write_text(config, encoding="utf-8")
        inputs = inputs if inputs is not None else SetupInputs()
        if scripted:
            resolver = ScriptedInputResolver(inputs)
        else:
            resolver = InteractiveInputResolver(inputs, FakePrompter(answers))

        state = SetupState(
            str(config_path),
            inputs,
            resolver,
            command_runner=None,
            logger=DummyLogger(),
            console=DummyConsole(),
            platform_service=platform_service,
            postgres_service=postgres_service or FakePostgresService(),
            collector_service=collector_service or FakeCollectorService(),
        )
        state.config = CollectorConfig.load(str(config_path))
        state.current_section = state.config.server()
        state.pganalyze_section = state.config.pganalyze
        state.query_runner = runner if runner is not None else FakeQueryRunner()
        return state

    return factory


@pytest.fixture
def fake_runner():
    return FakeQueryRunner


@pytest.fixture
def fake_postgres():
    return FakePostgresService


@pytest.fixture
def collector_service():
    return FakeCollectorService()
