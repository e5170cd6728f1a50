import logging
import os
from typing import Iterable, Optional

import requests
from rich.console import Console

from .constants import DEFAULT_CONFIG_FILE
from .errors import SetupError
from .errors_catalog import actionable_error
from .models import SetupInputs, Step
from .services.collector import CollectorService
from .services.command_runner import CommandRunner
from .services.input_resolver import (
    InteractiveInputResolver,
    Prompter,
    ScriptedInputResolver,
)
from .services.orchestrator import StepObserver, StepOrchestrator
from .services.pipeline import assemble_pipeline
from .services.platform import PlatformService
from .services.postgres_service import PostgresService
from .services.reporting import SetupReporter
from .services.state import SetupState
from .steps import DEFAULT_STEPS

console = Console()
logger = logging.getLogger("pgsetup")

WELCOME_TEXT = """Welcome to the pganalyze collector installer!

We will go through a series of steps to set up the collector to monitor your
Postgres database. We will not make any changes to your database or system
without confirmation.

At a high level, we will:

 1. Configure database access and, if necessary, create the pganalyze database user with monitoring-only access
 2. Update the collector configuration file with these settings
 3. Set up the pg_stat_statements extension in your database for query performance monitoring
 4. (Optional) Change log-related configuration settings to enable the pganalyze Log Insights feature
 5. (Optional) Set up EXPLAIN plan collection to enable the pganalyze Automated EXPLAIN feature

At each step, we'll check if any changes are necessary, and if so, prompt you to
provide input or confirm any required changes.

Changes to Postgres configuration settings will be done with the ALTER SYSTEM command.
If you later need to refine any of these, make sure to use ALTER SYSTEM or ALTER SYSTEM RESET,
since otherwise the ALTER SYSTEM changes will override any direct config file edits.

You can stop at any time by pressing Ctrl+C. If you stop before completing setup,
run the installer again to pick up where you left off.
"""


class ConsoleStepObserver(StepObserver):
    """Renders per-step progress for the operator."""

    def __init__(self, console, logger):
        self.console = console
        self.logger = logger

    def step_started(self, step: Step):
        self.console.print(f"\n[bold blue]{step.description}[/bold blue]")
        self.logger.debug("Checking step %s", step.id)

    def step_skipped(self, step: Step):
        self.console.print("[green]✓ no changes needed[/green]")

    def step_resolving(self, step: Step):
        self.console.print("[yellow]? suggesting resolution[/yellow]")

    def step_rechecking(self, step: Step):
        self.logger.debug("Re-checking step %s", step.id)

    def step_completed(self, step: Step):
        self.console.print("[green]✓ step completed[/green]")

    def step_failed(self, step: Step, error: Exception):
        self.console.print(f"[red]✗ {step.id} failed[/red]")


class GuidedSetup:
    def __init__(
        self,
        config_filename: str = DEFAULT_CONFIG_FILE,
        inputs: Optional[SetupInputs] = None,
        scripted: bool = False,
        assume_yes: bool = False,
        require_root: bool = True,
        steps: Iterable[Step] = DEFAULT_STEPS,
        command_runner: Optional[CommandRunner] = None,
        prompter: Optional[Prompter] = None,
        platform_service: Optional[PlatformService] = None,
        postgres_service: Optional[PostgresService] = None,
        collector_service: Optional[CollectorService] = None,
        requests_module=requests,
    ):
        self.config_filename = config_filename
        self.inputs = inputs if inputs is not None else SetupInputs()
        self.scripted = scripted
        self.assume_yes = assume_yes
        self.require_root = require_root
        self.steps = steps

        self.command_runner = command_runner or CommandRunner(logger=logger)
        self.prompter = prompter or Prompter(console)
        if scripted:
            resolver = ScriptedInputResolver(self.inputs)
        else:
            resolver = InteractiveInputResolver(self.inputs, self.prompter)

        self.state = SetupState(
            config_filename=config_filename,
            inputs=self.inputs,
            resolver=resolver,
            command_runner=self.command_runner,
            logger=logger,
            console=console,
            platform_service=platform_service or PlatformService(),
            postgres_service=postgres_service
            or PostgresService(logger=logger, console=console, command_runner=self.command_runner),
            collector_service=collector_service
            or CollectorService(logger=logger, console=console, command_runner=self.command_runner),
        )
        self.orchestrator = StepOrchestrator(
            observers=[
                ConsoleStepObserver(console, logger),
                SetupReporter(self.state, logger, requests_module=requests_module),
            ]
        )

    def _ensure_root(self):
        if self.require_root and os.geteuid() != 0:
            raise SetupError(actionable_error("root_required"))

    def _confirm_start(self) -> bool:
        if self.scripted:
            return True
        console.print(WELCOME_TEXT)
        if self.assume_yes:
            return True
        return self.prompter.confirm("Continue with setup?", default=False)

    def _warn_pending_reload(self):
        if self.state.needs_reload and not self.state.did_reload:
            console.print(f"[bold yellow]WARNING:[/bold yellow] {actionable_error('pending_reload')}")
            logger.warning("Exiting with pending changes to collector config")

    def run(self) -> int:
        try:
            self._ensure_root()
            if not self._confirm_start():
                console.print("Exiting...")
                return 0

            logger.info("Starting guided setup for %s", self.config_filename)
            result = self.orchestrator.run(assemble_pipeline(self.steps, self.inputs), self.state)
            summary = result.summary()
            logger.debug(
                "Setup finished: %s steps completed, %s already done",
                summary["completed"],
                summary["already_done"],
            )
            console.print("\n[bold green]Setup complete.[/bold green]")
            return 0

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            self._warn_pending_reload()
            return 1
        except SetupError as exc:
            label = f"Error in step {exc.step_id}:" if exc.step_id else "Error:"
            console.print(f"[bold red]{label}[/bold red] {exc}")
            logger.error(str(exc))
            self._warn_pending_reload()
            return 1
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            self._warn_pending_reload()
            return 1
