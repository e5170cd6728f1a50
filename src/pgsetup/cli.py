import logging
import os

import click
from rich.logging import RichHandler

from .constants import DEFAULT_CONFIG_FILE, SETTINGS_FILE
from .core import GuidedSetup
from .errors import SetupError
from .models import SetupInputs
from .services.inputs_loader import InputsLoader, SettingsLoader


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.command()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to the collector config file (default: {DEFAULT_CONFIG_FILE}).",
)
@click.option(
    "--inputs",
    required=False,
    type=click.Path(),
    help="YAML or JSON file answering every setup decision; runs without prompts.",
)
@click.option(
    "--recommended",
    is_flag=True,
    default=None,
    help="Use recommended answers for every decision not set in --inputs; runs without prompts.",
)
@click.option(
    "--skip-log-insights",
    is_flag=True,
    default=None,
    help="Do not set up Log Insights (also skips Automated EXPLAIN).",
)
@click.option(
    "--skip-automated-explain",
    is_flag=True,
    default=None,
    help="Do not set up Automated EXPLAIN.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option("--yes", "assume_yes", is_flag=True, default=None, help="Skip the initial confirmation prompt.")
def main(config, inputs, recommended, skip_log_insights, skip_automated_explain, verbose, log_file, assume_yes):
    """Guided setup of Postgres and the pganalyze collector."""
    logger = logging.getLogger("pgsetup")

    try:
        settings_path = SETTINGS_FILE if os.path.exists(SETTINGS_FILE) else None
        settings = SettingsLoader().load(settings_path)
    except SetupError as exc:
        raise click.ClickException(str(exc)) from exc

    config = _resolve_option(config, settings, "config", default=DEFAULT_CONFIG_FILE)
    inputs = _resolve_option(inputs, settings, "inputs")
    recommended = bool(_resolve_option(recommended, settings, "recommended", default=False))
    skip_log_insights = bool(
        _resolve_option(skip_log_insights, settings, "skip_log_insights", default=False)
    )
    skip_automated_explain = bool(
        _resolve_option(skip_automated_explain, settings, "skip_automated_explain", default=False)
    )
    verbose = bool(_resolve_option(verbose, settings, "verbose", default=False))
    log_file = _resolve_option(log_file, settings, "log_file")
    assume_yes = bool(_resolve_option(assume_yes, settings, "assume_yes", default=False))

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    try:
        setup_inputs = InputsLoader().load(inputs)
    except SetupError as exc:
        raise click.ClickException(str(exc)) from exc

    if recommended:
        setup_inputs = SetupInputs.recommended().overlay(setup_inputs)
    if skip_log_insights:
        setup_inputs.confirm_set_up_log_insights = False
    if skip_automated_explain:
        setup_inputs.confirm_set_up_automated_explain = False

    setup = GuidedSetup(
        config_filename=config,
        inputs=setup_inputs,
        scripted=bool(inputs) or recommended,
        assume_yes=assume_yes,
    )
    raise SystemExit(setup.run())


if __name__ == "__main__":
    main()
