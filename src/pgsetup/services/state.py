"""Session state threaded through every setup step."""

from typing import Optional

from pgsetup.errors import QueryError, SetupError
from pgsetup.models import ExecutionMode, PlatformInfo, SetupInputs


class SetupState:
    """Mutable context for one setup run.

    Created once per run and passed by reference to each step. Config sections
    are references into ``config``; changes must go through ``save_config``
    before a step can be considered complete.
    """

    def __init__(
        self,
        config_filename: str,
        inputs: SetupInputs,
        resolver,
        command_runner,
        logger,
        console,
        platform_service=None,
        postgres_service=None,
        collector_service=None,
    ):
        self.config_filename = config_filename
        self.inputs = inputs
        self.resolver = resolver
        self.command_runner = command_runner
        self.logger = logger
        self.console = console
        self.platform_service = platform_service
        self.postgres_service = postgres_service
        self.collector_service = collector_service

        self.platform: Optional[PlatformInfo] = None

        self.query_runner = None
        self.pg_version_num: Optional[int] = None
        self.pg_version_str: Optional[str] = None

        self.config = None
        self.current_section = None
        self.pganalyze_section = None

        self.did_test_command = False
        self.did_test_explain_command = False
        self.did_auto_explain_recommended_settings = False
        self.needs_reload = False
        self.did_reload = False

    @property
    def mode(self) -> ExecutionMode:
        return self.resolver.mode

    def connection(self):
        """Return the administrative connection after a liveness round-trip."""
        if self.query_runner is None:
            raise SetupError("no Postgres connection has been established")
        try:
            self.query_runner.ping()
        except QueryError as exc:
            self.query_runner = None
            raise SetupError(f"Postgres connection lost: {exc}") from exc
        return self.query_runner

    def save_config(self):
        if self.config is None:
            raise SetupError("collector config has not been loaded")
        self.config.save_to(self.config_filename)
        self.needs_reload = True
        self.did_reload = False
        self.logger.debug("Saved collector config to %s", self.config_filename)

    def notice(self, message: str):
        self.console.print(f"[yellow]{message}[/yellow]")
