import logging

from .docker_client import DockerClient
from .errors import CommandError, StackRestartError
from .plan import UpdatePlan
from .schemas import UpdateStage

log = logging.getLogger(__name__)


class StackRestartController:
    """Tears the node stack down, optionally prunes, and brings it back up."""

    def __init__(self, docker_client: DockerClient):
        self.docker_client = docker_client

    def teardown(self, plan: UpdatePlan):
        try:
            self.docker_client.stop_services(remove_volumes=True)
        except CommandError as e:
            raise StackRestartError(
                f"Failed to stop the node stack: {e}",
                kind=e.kind,
                stage=UpdateStage.TEARDOWN,
                details=e.output,
            ) from e
        plan.add("Stopped services and removed stack volumes")

    def prune(self, plan: UpdatePlan):
        """Best-effort cleanup; a failure is recorded and the update carries on."""
        try:
            reclaimed = self.docker_client.prune_system()
        except CommandError as e:
            log.warning(f"Resource prune failed, continuing: {e.output or e}")
            plan.add(f"Resource prune failed ({e.kind.value}); continuing")
            return
        plan.add(f"Pruned unused Docker resources ({reclaimed / (1024 * 1024):.1f} MB reclaimed)")

    def bring_up(self, plan: UpdatePlan):
        try:
            self.docker_client.start_services()
        except CommandError as e:
            raise StackRestartError(
                f"Failed to start the node stack: {e}",
                kind=e.kind,
                stage=UpdateStage.BRING_UP,
                details=e.output,
            ) from e
        plan.add("Started services in detached mode")
