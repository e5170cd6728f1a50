"""Actionable error catalog for pgsetup."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "missing_input": {
        "what": "Required input `{field}` was not provided.",
        "next": "Add `{field}` to your inputs file, or run without --inputs to answer interactively.",
    },
    "invalid_input": {
        "what": "Input `{field}` is invalid: {reason}",
        "next": "Fix the value of `{field}` in your inputs file.",
    },
    "conflicting_inputs": {
        "what": "Inputs `{first}` and `{second}` cannot both be set.",
        "next": "Remove one of them from your inputs file.",
    },
    "declined_change": {
        "what": "{what}",
        "next": "Set `{field}` to true in your inputs file or accept the prompt, or make the change manually and re-run setup.",
    },
    "missing_resolution": {
        "what": "Step `{step_id}` reported not done but defines no resolution.",
        "next": "This is a defect in the step definition; report it together with the log output.",
    },
    "unsupported_platform": {
        "what": "The current platform ({platform}) is not currently supported.",
        "next": "Follow the manual collector install instructions for this platform.",
    },
    "root_required": {
        "what": "pgsetup must be run with root privileges.",
        "next": "Re-run with sudo; every change is confirmed before it is applied.",
    },
    "pending_reload": {
        "what": "Exiting with pending changes to the collector config.",
        "next": "Run `pganalyze-collector --reload` to apply these changes.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
