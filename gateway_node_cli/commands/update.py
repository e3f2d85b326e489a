"""
Update command implementation for the gateway node CLI.

This module upgrades a running node stack to the latest release. The command
layer only parses flags and renders the outcome; the pipeline itself lives in
update_pipeline.py and is reached through StackManager.run_update().

## Execution Flow Diagram

```mermaid
sequenceDiagram
    participant CLI as CLI
    participant Update as update.py
    participant SM as stack_manager.py<br/>(StackManager)
    participant Pipe as update_pipeline.py<br/>(UpdatePipeline)
    participant VR as version_resolver.py
    participant GC as git_client.py
    participant DC as docker_client.py

    CLI->>Update: gateway-node update [--prune] [--force] [--handle-changes X]
    Update->>SM: run_update(UpdateOptions)
    SM->>SM: update_lock(stack_key)
    SM->>Pipe: execute(options)

    alt force_update == False
        Pipe->>VR: resolve()
        par concurrent lookups
            VR->>VR: deployed release (/ar-io/info)
            VR->>GC: describe_revision()
            VR->>VR: latest release (GitHub)
        end
        alt update not needed
            Pipe-->>SM: UpdateResult(stage=short_circuit)
        end
    end

    Pipe->>GC: status() → change set
    Pipe->>GC: stash | archive branch | reset+clean | abort
    Pipe->>GC: fetch, checkout canonical branch, pull
    Pipe->>DC: compose pull (→ compose build on fallback)
    Pipe->>DC: compose down -v
    opt --prune
        Pipe->>DC: prune_system()
    end
    Pipe->>DC: compose up -d
    Pipe->>DC: compose ps --format json
    Pipe-->>SM: UpdateResult(success | partial_failure)
    SM-->>Update: UpdateResult
    Update->>Update: display report / error panel
```

## Key Architecture Points

- **Thin Command Layer**: Parses flags and renders results; never raises pipeline errors itself
- **Structured Outcomes**: Every outcome, including "already up to date", is an UpdateResult
- **Single-flight**: Concurrent runs against the same stack are rejected, not interleaved
"""

import typer
import logging
from typing import Optional
from typing_extensions import Annotated

from ..context import AppContext
from ..errors import suggestion_for
from ..schemas import ChangeStrategy, UpdateOptions, UpdateResult

log = logging.getLogger(__name__)


def update_node_logic(
    app_context: AppContext,
    perform_prune: bool = False,
    force_update: bool = False,
    handle_changes: Optional[ChangeStrategy] = None,
) -> UpdateResult:
    """Business logic for updating the node."""
    options = UpdateOptions(
        perform_prune=perform_prune,
        force_update=force_update,
        handle_changes=handle_changes,
    )
    if handle_changes == ChangeStrategy.DISCARD:
        log.warning("Local changes in the node checkout will be permanently discarded.")
    return app_context.stack_manager.run_update(options)


def _render_failure(app_context: AppContext, result: UpdateResult):
    if result.steps:
        app_context.display.update_report(result)
    message = result.message
    if result.change_set:
        message += "\n\nLocally modified files:\n" + "\n".join(f"  {path}" for path in result.change_set)
    if result.details:
        message += f"\n\n{result.details}"
    app_context.display.error(message, suggestion_for(result.error_kind))


def update(
    ctx: typer.Context,
    prune: Annotated[
        bool,
        typer.Option("--prune", help="Prune unused Docker resources after tearing the stack down."),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", help="Skip the version check and update unconditionally."),
    ] = False,
    handle_changes: Annotated[
        Optional[ChangeStrategy],
        typer.Option(
            "--handle-changes",
            case_sensitive=False,
            help="What to do with local changes in the node checkout (default from configuration: preserve).",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the result in JSON format."),
    ] = False,
):
    """
    Update the node to the latest release.

    This command will:
    1. Compare the deployed, local and latest versions (skipped with --force)
    2. Stash, archive, discard or refuse local changes in the node checkout
    3. Pull the latest source for the canonical branch
    4. Pull the latest images, building from source where no image is published
    5. Restart the stack (optionally pruning unused Docker resources)
    6. Verify that at least 80% of the services came back up
    """
    app_context: AppContext = ctx.obj

    result = update_node_logic(
        app_context,
        perform_prune=prune,
        force_update=force,
        handle_changes=handle_changes,
    )

    if json_output:
        app_context.display.json(result.model_dump_json(indent=2))
    elif result.success:
        if result.version_check is not None and not result.version_check.skipped:
            app_context.display.version_check(result.version_check)
        app_context.display.update_report(result)
    else:
        _render_failure(app_context, result)

    if not result.success:
        raise typer.Exit(1)
