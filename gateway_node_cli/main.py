import typer
from typing_extensions import Annotated
from .context import AppContext
from .commands.update import update
from .commands.check import check
from .commands.status import status

app = typer.Typer(
    help="A CLI for updating and inspecting a self-hosted AR.IO gateway node.",
    add_completion=False,
)

app.command()(update)
app.command()(check)
app.command()(status)

@app.callback()
def main(
    ctx: typer.Context,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output for debugging.",
        ),
    ] = False,
):
    """
    Initialize the AppContext and attach it to the Typer context.
    """
    ctx.obj = AppContext(verbose=verbose)

if __name__ == "__main__":
    app()
