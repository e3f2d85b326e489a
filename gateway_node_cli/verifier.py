import logging

from .docker_client import DockerClient
from .errors import CommandError, UpdateError
from .plan import UpdatePlan
from .schemas import ServiceHealthSnapshot, UpdateStage

log = logging.getLogger(__name__)


class PostUpdateVerifier:
    """Samples per-service state of the restarted stack."""

    def __init__(self, docker_client: DockerClient):
        self.docker_client = docker_client

    def snapshot(self) -> ServiceHealthSnapshot:
        """
        Prefers the structured `compose ps` report. When that cannot be read
        or parsed, falls back to counting declared services and running
        project containers separately.
        """
        try:
            services = self.docker_client.get_service_states()
        except (ValueError, CommandError) as e:
            log.warning(f"Could not parse service status, using fallback counts: {e}")
        else:
            running = sum(1 for service in services if service.state == "running")
            return ServiceHealthSnapshot(running_count=running, total_count=len(services), services=services)

        try:
            total = self.docker_client.count_services()
            running = self.docker_client.count_running_containers()
        except CommandError as e:
            raise UpdateError(
                "Could not determine service state after restart",
                kind=e.kind,
                stage=UpdateStage.VERIFY,
                details=e.output,
            ) from e
        return ServiceHealthSnapshot(running_count=running, total_count=total)

    def verify(self, plan: UpdatePlan) -> ServiceHealthSnapshot:
        snapshot = self.snapshot()
        verdict = "healthy" if snapshot.is_healthy else "below health threshold"
        plan.add(f"Verified services: {snapshot.running_count}/{snapshot.total_count} running ({verdict})")
        return snapshot
