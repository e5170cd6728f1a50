"""Validation rules shared by scripted inputs and interactive answers.

Every validator takes the resolved value and raises ``ValueError`` with an
operator-facing reason when it is not acceptable. The same callables are used
whether the value came from an inputs file or a prompt.
"""

import os
from typing import Callable, Iterable, List

Validator = Callable[[object], None]

LOG_ERROR_VERBOSITY_VALUES = ("terse", "default", "verbose")
LOG_STATEMENT_VALUES = ("none", "ddl", "mod", "all")
ON_OFF_VALUES = ("on", "off")
EXPLAIN_FORMAT_VALUES = ("text", "xml", "json", "yaml")


def require_non_empty(value):
    if not isinstance(value, str) or not value.strip():
        raise ValueError("value is required")


def require_one_of(*allowed: str) -> Validator:
    def validate(value):
        if value not in allowed:
            raise ValueError(f"must be one of: {', '.join(allowed)}")

    return validate


def validate_log_min_duration_statement(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("value must be numeric")
    if value < 10 and value != -1:
        raise ValueError("value must be either -1 to disable or 10 or greater")


def validate_auto_explain_min_duration(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("value must be numeric")
    if value < -1:
        raise ValueError("value must be either -1 to disable or 0 or greater")


def validate_log_line_prefix(value):
    if not isinstance(value, str):
        raise ValueError("expected a string value")
    if not log_line_prefix_supported(value):
        raise ValueError(
            "must include user (%u), database (%d), and timestamp (%m, %n, or %t)"
        )


def log_line_prefix_supported(prefix: str) -> bool:
    has_db = "%d" in prefix
    has_user = "%u" in prefix
    has_timestamp = any(escape in prefix for escape in ("%m", "%n", "%t"))
    return has_db and has_user and has_timestamp


def validate_existing_path(value):
    require_non_empty(value)
    if not os.path.exists(value):
        raise ValueError(f"path does not exist: {value}")


def validate_port(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("port must be numeric")
    if not 0 < value < 65536:
        raise ValueError("port must be between 1 and 65535")


def database_list_validator(available: Iterable[str]) -> Validator:
    known = list(available)

    def validate(value):
        require_non_empty(value)
        names = parse_database_list(value)
        if not names:
            raise ValueError("value is required")
        if names[0] == "*":
            raise ValueError("the first database must be named explicitly, not '*'")
        for name in names:
            if name != "*" and name not in known:
                raise ValueError(f"database {name} configured for db_name but not found in Postgres")

    return validate


def parse_database_list(value: str) -> List[str]:
    return [name.strip() for name in value.split(",") if name.strip()]
