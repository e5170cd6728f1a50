import pytest

from pgsetup.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("missing_input", field="settings.db_username")

    assert "Required input `settings.db_username` was not provided." in message
    assert "Suggested action:" in message


def test_declined_change_names_the_input_to_set():
    message = actionable_error(
        "declined_change", what="Monitoring user pganalyze does not exist.", field="ensure_monitoring_user"
    )

    assert message.startswith("Monitoring user pganalyze does not exist.")
    assert "Set `ensure_monitoring_user` to true" in message


def test_unknown_error_code_raises_key_error():
    with pytest.raises(KeyError, match="no_such_code"):
        actionable_error("no_such_code")
