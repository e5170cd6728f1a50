from pgsetup import __version__
from pgsetup.models import ExecutionMode, SetupInputs, SetupSettings, Step
from pgsetup.services.reporting import SetupReporter


class DummyLogger:
    def __init__(self):
        self.messages = []

    def debug(self, message, *args, **_kwargs):
        self.messages.append(message % args)


class FakeResponse:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class FakeRequests:
    class RequestException(Exception):
        pass

    def __init__(self, error=None):
        self.error = error
        self.posts = []
        self.responses = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.posts.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        response = FakeResponse()
        self.responses.append(response)
        return response


class FakeSection:
    def __init__(self, values):
        self.values = values

    def has_key(self, key):
        return key in self.values

    def get_key(self, key):
        return self.values[key]


class FakeState:
    def __init__(self, inputs=None, section=None, mode=ExecutionMode.INTERACTIVE):
        self.inputs = inputs or SetupInputs()
        self.pganalyze_section = section
        self.mode = mode


STEP = Step(id="check_platform", description="Check platform", check=lambda state: True)


def test_completed_step_posts_progress_with_config_api_key():
    state = FakeState(section=FakeSection({"api_key": "abc123", "api_base_url": "https://pga.example.com/"}))
    fake_requests = FakeRequests()

    SetupReporter(state, DummyLogger(), requests_module=fake_requests).step_completed(STEP)

    post = fake_requests.posts[0]
    assert post["url"] == "https://pga.example.com/v2/setup/guided_setup"
    assert post["data"] == {"last_step": "check_platform", "success": "true", "used_inputs_file": "false"}
    assert post["headers"]["Pganalyze-Api-Key"] == "abc123"
    assert post["headers"]["User-Agent"] == f"pgsetup/{__version__}"
    assert post["timeout"] == 3
    assert fake_requests.responses[0].closed is True


def test_failed_step_reports_failure_and_scripted_mode():
    inputs = SetupInputs(settings=SetupSettings(api_key="fromInputs"))
    state = FakeState(inputs=inputs, mode=ExecutionMode.SCRIPTED)
    fake_requests = FakeRequests()

    SetupReporter(state, DummyLogger(), requests_module=fake_requests).step_failed(STEP, RuntimeError("x"))

    post = fake_requests.posts[0]
    assert post["url"] == "https://api.pganalyze.com/v2/setup/guided_setup"
    assert post["data"]["success"] == "false"
    assert post["data"]["used_inputs_file"] == "true"
    assert post["headers"]["Pganalyze-Api-Key"] == "fromInputs"


def test_no_api_key_means_no_report():
    fake_requests = FakeRequests()

    SetupReporter(FakeState(), DummyLogger(), requests_module=fake_requests).step_skipped(STEP)

    assert fake_requests.posts == []


def test_request_errors_are_logged_at_debug_level():
    logger = DummyLogger()
    fake_requests = FakeRequests(error=FakeRequests.RequestException("timeout"))
    state = FakeState(section=FakeSection({"api_key": "abc123"}))

    SetupReporter(state, logger, requests_module=fake_requests).step_completed(STEP)

    assert logger.messages == ["Could not report setup step check_platform: timeout"]
