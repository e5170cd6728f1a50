"""Administrative Postgres connection backed by psql."""

import csv
import io
import os
import pwd
import re
from typing import List, Optional

from pgsetup.errors import NoRowsError, QueryError, SetupError

_PSQL_VERSION_RE = re.compile(r"psql \(PostgreSQL\) (\d+)(?:\.\d+)?")


def quote_literal(value: str) -> str:
    escaped = value.replace("'", "''")
    if "\\" in escaped:
        return " E'" + escaped.replace("\\", "\\\\") + "'"
    return f"'{escaped}'"


def peer_os_user(name: str, geteuid=os.geteuid, getpwnam=pwd.getpwnam) -> Optional[str]:
    """OS account to run psql as so local peer authentication maps to ``name``."""
    if geteuid() != 0:
        return None
    try:
        getpwnam(name)
    except KeyError:
        return None
    return name


def quote_identifier(name: str) -> str:
    end = name.find("\x00")
    if end >= 0:
        name = name[:end]
    return '"' + name.replace('"', '""') + '"'


class Row:
    """One result row; psql returns every value as text."""

    def __init__(self, values: List[str]):
        self.values = values

    def __len__(self) -> int:
        return len(self.values)

    def __repr__(self) -> str:
        return f"Row({self.values!r})"

    def get_string(self, index: int) -> str:
        return self.values[index]

    def get_bool(self, index: int) -> bool:
        return self.values[index] == "t"

    def get_int(self, index: int) -> int:
        value = self.values[index]
        try:
            return int(value)
        except ValueError as exc:
            raise QueryError(f"expected int in column {index}; found {value}") from exc

    def get_float(self, index: int) -> float:
        value = self.values[index]
        try:
            return float(value)
        except ValueError as exc:
            raise QueryError(f"expected number in column {index}; found {value}") from exc


class QueryRunner:
    """Runs SQL through psql as the configured user.

    Each statement is a separate psql invocation. ``search_path`` is pinned to
    ``pg_catalog`` with a separate ``--command`` so statements such as
    ``ALTER SYSTEM`` are not wrapped in an implicit transaction; the first
    output row is the result of that ``SET`` and is discarded.
    """

    def __init__(
        self,
        command_runner,
        user: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        database: Optional[str] = None,
        password: Optional[str] = None,
        os_user: Optional[str] = None,
    ):
        self.command_runner = command_runner
        self.user = user
        self.host = host
        self.port = port
        self.database = database
        self.password = password
        self.os_user = os_user
        self._use_csv: Optional[bool] = None

    def in_db(self, database: str) -> "QueryRunner":
        runner = QueryRunner(
            self.command_runner,
            user=self.user,
            host=self.host,
            port=self.port,
            database=database,
            password=self.password,
            os_user=self.os_user,
        )
        runner._use_csv = self._use_csv
        return runner

    def ping(self):
        self.exec("SELECT 1")

    def ping_super(self):
        row = self.query_row("SELECT usesuper FROM pg_user WHERE usename = current_user")
        if not row.get_bool(0):
            raise QueryError(
                f"user {self.user} is not a superuser; Postgres superuser is required for setup"
            )

    def query(self, sql: str) -> List[Row]:
        output = self._run_sql(sql)
        delimiter = "," if self._use_csv else "\t"
        reader = csv.reader(io.StringIO(output), delimiter=delimiter)
        records = [record for record in reader if record]
        return [Row(record) for record in records[1:]]

    def query_row(self, sql: str) -> Row:
        rows = self.query(sql)
        if not rows:
            raise NoRowsError("query returned no rows")
        if len(rows) > 1:
            raise QueryError(f"expected one row; got {len(rows)}")
        return rows[0]

    def exec(self, sql: str):
        self._run_sql(sql)

    def _env(self):
        env = {}
        if self.host:
            env["PGHOST"] = self.host
        if self.port:
            env["PGPORT"] = str(self.port)
        if self.user:
            env["PGUSER"] = self.user
        if self.password:
            env["PGPASSWORD"] = self.password
        if self.database:
            env["PGDATABASE"] = self.database
        return env

    def _detect_csv(self):
        if self._use_csv is not None:
            return
        # best-effort: older psql clients have no --csv output mode
        self._use_csv = False
        try:
            result = self.command_runner.run(["psql", "--no-psqlrc", "--version"], check=False)
        except SetupError:
            return
        match = _PSQL_VERSION_RE.search(result.stdout or "")
        if match and int(match.group(1)) >= 12:
            self._use_csv = True

    def _run_sql(self, sql: str) -> str:
        self._detect_csv()
        cmd = [
            "psql",
            "--no-psqlrc",
            "--tuples-only",
            "--command",
            "SET search_path = pg_catalog",
            "--command",
            sql,
        ]
        if self._use_csv:
            cmd.append("--csv")
        else:
            cmd.extend(["--no-align", "--field-separator", "\t"])

        try:
            result = self.command_runner.run(
                cmd,
                env=self._env(),
                user=self.os_user,
                redact=[sql] if "PASSWORD" in sql.upper() else None,
            )
        except SetupError as exc:
            raise QueryError(str(exc)) from exc
        return result.stdout or ""
