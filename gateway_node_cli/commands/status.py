import typer
import logging
from typing_extensions import Annotated

from ..context import AppContext
from ..errors import CommandError, UpdateError, suggestion_for
from ..schemas import ServiceHealthSnapshot

log = logging.getLogger(__name__)


def get_health_logic(app_context: AppContext) -> ServiceHealthSnapshot:
    """Business logic for sampling node service health."""
    return app_context.stack_manager.get_health_snapshot()


def status(
    ctx: typer.Context,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output in JSON format."),
    ] = False,
):
    """
    Shows the state of every node service and whether the stack meets the
    health threshold used after updates.
    """
    app_context: AppContext = ctx.obj

    try:
        snapshot = get_health_logic(app_context)
    except (UpdateError, CommandError) as e:
        log.error(f"Failed to get node status: {e}")
        app_context.display.error(
            f"Unable to retrieve node status: {e}",
            suggestion_for(e.kind),
        )
        raise typer.Exit(1)

    if json_output:
        app_context.display.json(snapshot.model_dump_json(indent=2))
    else:
        app_context.display.health(snapshot)

    if not snapshot.is_healthy:
        raise typer.Exit(1)
