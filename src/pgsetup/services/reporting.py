"""Best-effort reporting of setup progress to the pganalyze API."""

import requests

from pgsetup import __version__
from pgsetup.constants import DEFAULT_API_BASE_URL, REPORT_PATH, REPORT_TIMEOUT_SECONDS
from pgsetup.models import ExecutionMode, Step
from pgsetup.services.orchestrator import StepObserver


class SetupReporter(StepObserver):
    """Posts the outcome of each step; failures never affect the setup run."""

    def __init__(self, state, logger, requests_module=requests):
        self.state = state
        self.logger = logger
        self.requests = requests_module

    def step_skipped(self, step: Step):
        self.report(step.id, success=True)

    def step_completed(self, step: Step):
        self.report(step.id, success=True)

    def step_failed(self, step: Step, error: Exception):
        self.report(step.id, success=False)

    def _api_key(self):
        settings = self.state.inputs.settings
        if settings.api_key:
            return settings.api_key
        section = self.state.pganalyze_section
        if section is not None and section.has_key("api_key"):
            return section.get_key("api_key")
        return None

    def _base_url(self) -> str:
        settings = self.state.inputs.settings
        if settings.api_base_url:
            return settings.api_base_url.rstrip("/")
        section = self.state.pganalyze_section
        if section is not None and section.has_key("api_base_url"):
            return section.get_key("api_base_url").rstrip("/")
        return DEFAULT_API_BASE_URL

    def report(self, step_id: str, success: bool):
        api_key = self._api_key()
        if not api_key:
            return

        data = {
            "last_step": step_id,
            "success": "true" if success else "false",
            "used_inputs_file": "true" if self.state.mode == ExecutionMode.SCRIPTED else "false",
        }
        headers = {
            "Pganalyze-Api-Key": api_key,
            "User-Agent": f"pgsetup/{__version__}",
            "Accept": "application/json,text/plain",
        }
        try:
            response = self.requests.post(
                self._base_url() + REPORT_PATH,
                data=data,
                headers=headers,
                timeout=REPORT_TIMEOUT_SECONDS,
            )
            response.close()
        except self.requests.RequestException as exc:
            self.logger.debug("Could not report setup step %s: %s", step_id, exc)
