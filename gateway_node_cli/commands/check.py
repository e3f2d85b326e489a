"""
Check command implementation for the gateway node CLI.

Reports the deployed, local and latest node versions and whether an update
would be performed. Nothing is changed: this runs only the version
resolution step of the update pipeline.
"""

import typer
import logging
from typing_extensions import Annotated

from ..context import AppContext
from ..schemas import VersionCheck

log = logging.getLogger(__name__)


def check_versions_logic(app_context: AppContext) -> VersionCheck:
    """Business logic for checking node versions."""
    if app_context.config.fell_back_to_defaults:
        log.info("Configuration file appears to be empty or corrupted. Using default settings.")

    log.info("Checking node versions...")
    return app_context.stack_manager.check_versions()


def check(
    ctx: typer.Context,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output in JSON format."),
    ] = False,
):
    """Shows the deployed, local and latest versions and whether an update is available."""
    app_context: AppContext = ctx.obj
    version_check = check_versions_logic(app_context)
    if json_output:
        app_context.display.json(version_check.model_dump_json(indent=2))
    else:
        app_context.display.version_check(version_check)
