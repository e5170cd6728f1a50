"""Local Postgres server facilities used by setup steps."""

import glob
import hashlib
import os
import pwd
import re
import shutil
import time
from typing import List, Optional

import psutil

from pgsetup.constants import (
    POSTGRES_OS_USER,
    RESTART_WAIT_RETRIES,
    RESTART_WAIT_SECONDS,
    SOCKET_DIRS,
    USE_PG_CTL_ENV,
)
from pgsetup.errors import NoRowsError, QueryError, SetupError
from pgsetup.models import LocalPostgres
from pgsetup.services.query import quote_literal

_SOCKET_PORT_RE = re.compile(r"\d+$")


class HelperFunction:
    """A ``SECURITY DEFINER`` helper the collector calls in monitored databases."""

    def __init__(self, name: str, head: str, body: str, tail: str):
        self.name = name
        self.head = head
        self.body = body
        self.tail = tail

    @property
    def definition(self) -> str:
        return self.head + self.body + self.tail

    def matches(self, md5_hex: str) -> bool:
        return hashlib.md5(self.body.encode("utf-8")).hexdigest() == md5_hex


EXPLAIN_HELPER = HelperFunction(
    name="explain",
    head="CREATE OR REPLACE FUNCTION pganalyze.explain(query text, params text[]) RETURNS text AS $$",
    body="""DECLARE
	prepared_query text;
	prepared_params text;
	result text;
BEGIN
	SELECT regexp_replace(query, ';+\\s*\\Z', '') INTO prepared_query;
	IF prepared_query LIKE '%;%' THEN
		RAISE EXCEPTION 'cannot run EXPLAIN when query contains semicolon';
	END IF;

	IF array_length(params, 1) > 0 THEN
		SELECT string_agg(quote_literal(param) || '::unknown', ',') FROM unnest(params) p(param) INTO prepared_params;

		EXECUTE 'PREPARE pganalyze_explain AS ' || prepared_query;
		BEGIN
			EXECUTE 'EXPLAIN (VERBOSE, FORMAT JSON) EXECUTE pganalyze_explain(' || prepared_params || ')' INTO STRICT result;
		EXCEPTION WHEN OTHERS THEN
			DEALLOCATE pganalyze_explain;
			RAISE;
		END;
		DEALLOCATE pganalyze_explain;
	ELSE
		EXECUTE 'EXPLAIN (VERBOSE, FORMAT JSON) ' || prepared_query INTO STRICT result;
	END IF;

	RETURN result;
END""",
    tail="$$ LANGUAGE plpgsql VOLATILE SECURITY DEFINER;",
)


def discover_local_postgres(socket_dirs=SOCKET_DIRS, glob_module=glob) -> List[LocalPostgres]:
    found: List[LocalPostgres] = []
    for socket_dir in socket_dirs:
        for match in sorted(glob_module.glob(os.path.join(socket_dir, ".s.PGSQL.*"))):
            port = _SOCKET_PORT_RE.search(match)
            if port is None:
                continue
            found.append(LocalPostgres(socket_dir=socket_dir, port=int(port.group(0))))
    return found


def apply_config_setting(runner, name: str, value: str):
    """Persist a setting with ALTER SYSTEM and reload the server configuration.

    ``value`` is inserted as-is so list settings keep their form; callers quote
    string values themselves.
    """
    try:
        runner.exec(f"ALTER SYSTEM SET {name} = {value}")
    except QueryError as exc:
        raise SetupError(f"failed to apply setting: {exc}") from exc
    try:
        runner.exec("SELECT pg_reload_conf()")
    except QueryError as exc:
        raise SetupError(
            f"failed to reload Postgres configuration after applying setting: {exc}"
        ) from exc


def current_setting(runner, name: str) -> str:
    # name keeps the row non-empty when the setting itself is empty
    return runner.query_row(
        f"SELECT name, setting FROM pg_settings WHERE name = {quote_literal(name)}"
    ).get_string(1)


def get_pending_shared_preload_libraries(runner) -> str:
    # the pending value only shows up in the config files until the restart
    row = runner.query_row(
        """SELECT
  name,
  COALESCE(
    (SELECT setting FROM pg_file_settings
      WHERE name = 'shared_preload_libraries' AND error IS NULL
      ORDER BY seqno DESC LIMIT 1),
    current_setting('shared_preload_libraries')
  )
FROM pg_settings
WHERE name = 'shared_preload_libraries'"""
    )
    return row.get_string(1)


def add_shared_preload_library(runner, library: str):
    existing = get_pending_shared_preload_libraries(runner)
    libraries = [item.strip() for item in existing.split(",") if item.strip()]
    if library in libraries:
        return
    libraries.append(library)
    apply_config_setting(runner, "shared_preload_libraries", ",".join(libraries))


def pending_restart_settings(runner) -> List[str]:
    return [row.get_string(0) for row in runner.query("SELECT name FROM pg_settings WHERE pending_restart")]


def using_log_explain(section) -> bool:
    return section.get_bool("enable_log_explain")


def validate_helper_function(helper: HelperFunction, runner) -> bool:
    try:
        row = runner.query_row(
            f"""SELECT md5(btrim(prosrc, E' \\n\\r\\t'))
FROM pg_proc INNER JOIN pg_user ON (pg_proc.proowner = pg_user.usesysid)
WHERE proname = {quote_literal(helper.name)}
  AND pronamespace::regnamespace::text = 'pganalyze'
  AND prosecdef
  AND pg_user.usesuper"""
        )
    except NoRowsError:
        return False
    return helper.matches(row.get_string(0))


def join_with_and(items: List[str]) -> str:
    if len(items) <= 1:
        return "".join(items)
    if len(items) == 2:
        return f"{items[0]} and {items[1]}"
    return ", ".join(items[:-1]) + f", and {items[-1]}"


class PostgresService:
    """Process-level operations on the local Postgres server."""

    def __init__(
        self,
        logger,
        console,
        command_runner,
        psutil_module=psutil,
        environ=None,
        sleep=time.sleep,
    ):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.psutil = psutil_module
        self.environ = os.environ if environ is None else environ
        self.sleep = sleep

    def get_postmaster_pid(self) -> int:
        candidates = []
        for proc in self.psutil.process_iter(["pid", "name", "username", "create_time"]):
            info = proc.info
            if info.get("name") == "postgres" and info.get("username") == POSTGRES_OS_USER:
                candidates.append(info)
        if not candidates:
            raise SetupError("failed to find postmaster pid")
        oldest = min(candidates, key=lambda info: info.get("create_time") or 0)
        return oldest["pid"]

    def get_data_directory(self, postmaster_pid: int) -> str:
        data_directory = self.environ.get("PGDATA")
        if data_directory:
            return data_directory
        try:
            return self.psutil.Process(postmaster_pid).cwd()
        except (self.psutil.Error, OSError) as exc:
            raise SetupError(f"failed to resolve data directory path: {exc}") from exc

    def discover_log_location(self, section, runner) -> str:
        if section.has_key("db_host"):
            db_host = section.get_key("db_host")
            if db_host not in ("localhost", "127.0.0.1"):
                raise SetupError(
                    "detected remote server - Log Insights requires the collector to run "
                    "on the database server directly for self-hosted systems"
                )

        row = runner.query_row(
            "SELECT current_setting('log_destination'), current_setting('logging_collector'), "
            "current_setting('log_directory')"
        )
        log_destination = row.get_string(0)
        logging_collector = row.get_string(1)
        log_directory = row.get_string(2)

        if log_destination == "syslog":
            raise SetupError(
                "log_destination detected as syslog - please check the setup guide for "
                "rsyslogd or syslog-ng instructions"
            )
        if log_destination != "stderr":
            raise SetupError(f"unsupported log_destination {log_destination}")

        postmaster_pid = self.get_postmaster_pid()
        if logging_collector == "on":
            if not log_directory.startswith("/"):
                log_directory = os.path.join(self.get_data_directory(postmaster_pid), log_directory)
            return log_directory

        try:
            return os.path.realpath(f"/proc/{postmaster_pid}/fd/1", strict=True)
        except OSError as exc:
            raise SetupError(f"failed to resolve postmaster log output: {exc}") from exc

    def restart(self, runner):
        if self.environ.get(USE_PG_CTL_ENV):
            self._restart_pg_ctl(runner)
        else:
            self._restart_systemd()
        self.wait_until_ready(runner)

    def wait_until_ready(self, runner, max_retries: int = RESTART_WAIT_RETRIES):
        self.console.print("[yellow]Waiting for Postgres to accept connections...[/yellow]")
        last_error: Optional[Exception] = None
        for _ in range(max_retries):
            try:
                runner.ping()
            except QueryError as exc:
                last_error = exc
                self.sleep(RESTART_WAIT_SECONDS)
                continue
            self.console.print("[green]Postgres is ready.[/green]")
            return
        raise SetupError(f"Postgres did not become ready after restart: {last_error}")

    def _restart_systemd(self):
        try:
            self.command_runner.run(["systemctl", "restart", "postgresql"])
        except SetupError as exc:
            raise SetupError(f"failed to restart: {exc}") from exc

    def _restart_pg_ctl(self, runner):
        data_dir = runner.query_row("SHOW data_directory").get_string(0)
        try:
            stat = os.stat(data_dir)
            owner = pwd.getpwuid(stat.st_uid)
        except (OSError, KeyError) as exc:
            raise SetupError(f"could not determine data directory ownership: {exc}") from exc

        # supplementary groups matter, e.g. ssl-cert for the snakeoil key on Ubuntu
        extra_groups = [gid for gid in os.getgrouplist(owner.pw_name, stat.st_gid) if gid != stat.st_gid]
        self.command_runner.run(
            [self._pg_ctl_path(), "--pgdata", data_dir, "--wait", "--mode", "fast", "restart"],
            user=owner.pw_name,
            group=stat.st_gid,
            extra_groups=extra_groups,
        )

    def _pg_ctl_path(self) -> str:
        found = shutil.which("pg_ctl")
        if found:
            return found
        result = self.command_runner.run(["pg_config", "--bindir"])
        bindir = (result.stdout or "").strip()
        if not bindir:
            raise SetupError("could not find pg_ctl")
        return os.path.join(bindir, "pg_ctl")
