"""Helpers shared by the concrete setup steps."""

from typing import List

from pgsetup.errors import SetupError
from pgsetup.errors_catalog import actionable_error
from pgsetup.models import input_label
from pgsetup.services.postgres_service import current_setting


def require_change(state, field: str, message: str, declined: str, **kwargs) -> bool:
    """Resolve a yes/no decision for a required change; "no" halts the run."""
    if not state.resolver.confirm(field, message, **kwargs):
        raise declined_answer(field, declined)
    return True


def declined_answer(field: str, declined: str):
    return SetupError(actionable_error("declined_change", what=declined, field=input_label(field)))


def monitoring_user(state) -> str:
    return state.current_section.get_key("db_username")


def setting(state, name: str) -> str:
    return current_setting(state.connection(), name)


def monitored_databases(state) -> List[str]:
    """Databases listed under ``db_name``, with a trailing ``*`` expanded."""
    names = state.current_section.get_list("db_name")
    if not names:
        raise SetupError("no databases found under db_name")
    if names[-1] != "*":
        return names

    names = names[:-1]
    rows = state.connection().query(
        "SELECT datname FROM pg_database WHERE datallowconn AND NOT datistemplate"
    )
    for row in rows:
        name = row.get_string(0)
        if name not in names:
            names.append(name)
    return names
