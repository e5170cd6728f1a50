"""Interaction with the installed collector binary and its running process."""

import os
import signal

import psutil

from pgsetup.constants import COLLECTOR_EXECUTABLE, TEST_EXTRA_ARGS_ENV
from pgsetup.errors import SetupError


class CollectorService:
    def __init__(self, logger, console, command_runner, psutil_module=psutil, environ=None):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.psutil = psutil_module
        self.environ = os.environ if environ is None else environ

    def find_process(self):
        for proc in self.psutil.process_iter(["pid", "name"]):
            if proc.info.get("name") == COLLECTOR_EXECUTABLE:
                return proc
        return None

    def reload(self) -> int:
        """Send SIGHUP to the running collector and return its pid."""
        proc = self.find_process()
        if proc is None:
            raise SetupError(f"could not find a running {COLLECTOR_EXECUTABLE} process")
        try:
            proc.send_signal(signal.SIGHUP)
        except (self.psutil.Error, OSError) as exc:
            raise SetupError(f"failed to reload collector: {exc}") from exc
        self.logger.info("Sent reload signal to %s (pid %s)", COLLECTOR_EXECUTABLE, proc.pid)
        return proc.pid

    def run_test(self, config_filename: str):
        """Run the collector self-test and reload its configuration on success."""
        cmd = [COLLECTOR_EXECUTABLE, "--test", "--reload", f"--config={config_filename}"]
        extra_args = self.environ.get(TEST_EXTRA_ARGS_ENV, "").split()
        self._run(cmd + extra_args, "test command")

    def run_test_explain(self, config_filename: str):
        self._run([COLLECTOR_EXECUTABLE, "--test-explain", f"--config={config_filename}"], "test explain command")

    def _run(self, cmd, label: str):
        self.console.print("")
        result = self.command_runner.run(cmd, check=False)
        if result.returncode != 0:
            details = "\n".join(part.strip() for part in (result.stdout, result.stderr) if part and part.strip())
            message = f"{label} failed with exit code {result.returncode}"
            raise SetupError(f"{message}\n{details}" if details else message)
        if result.stdout and result.stdout.strip():
            self.console.print(result.stdout.rstrip())
        self.console.print("")
