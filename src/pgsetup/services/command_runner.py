"""Subprocess execution service for pgsetup."""

import os
import subprocess
from typing import Dict, List, Optional

from pgsetup.errors import SetupError


class CommandRunner:
    """Runs external commands with consistent error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None, subprocess_module=subprocess):
        self.logger = logger
        self.default_timeout = default_timeout
        self.subprocess = subprocess_module

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = True,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
        user: Optional[str] = None,
        group: Optional[int] = None,
        extra_groups: Optional[List[int]] = None,
        redact: Optional[List[str]] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = self._describe(cmd, redact)
        self.logger.debug("Executing: %s%s", cmd_str, f" (as {user})" if user else "")

        effective_timeout = timeout if timeout is not None else self.default_timeout
        full_env = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)

        kwargs = {}
        if user:
            kwargs["user"] = user
        if group is not None:
            kwargs["group"] = group
        if extra_groups is not None:
            kwargs["extra_groups"] = extra_groups

        try:
            result = self.subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=effective_timeout,
                env=full_env,
                stdin=subprocess.DEVNULL,
                **kwargs,
            )
        except FileNotFoundError as exc:
            raise SetupError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise SetupError(f"Command timed out after {effective_timeout}s: {cmd_str}") from exc
        except (OSError, ValueError) as exc:
            raise SetupError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0 or not check:
            return result

        output = (result.stderr or "").strip() or (result.stdout or "").strip()
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if output:
            message = f"{message}\n{output}"
        raise SetupError(message)

    @staticmethod
    def _describe(cmd: List[str], redact: Optional[List[str]]) -> str:
        hidden = set(redact or [])
        return " ".join("***" if part in hidden else part for part in cmd)
