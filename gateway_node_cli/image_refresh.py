import logging
import re

from .docker_client import DockerClient
from .errors import CommandError, ImageRefreshError
from .plan import UpdatePlan
from .schemas import ErrorKind, ImageRefreshResult, UpdateStage

log = logging.getLogger(__name__)

# Pull diagnostics meaning at least one service has no prebuilt image
BUILD_REQUIRED_RE = re.compile(
    r"manifest unknown|must be built from source|no matching manifest|pull access denied|no such image",
    re.IGNORECASE,
)
IMAGES_UPDATED_RE = re.compile(r"Downloaded|Pulled|Download complete")


def build_required(output: str) -> bool:
    return bool(BUILD_REQUIRED_RE.search(output or ""))


def images_changed(output: str) -> bool:
    return bool(IMAGES_UPDATED_RE.search(output or ""))


class ImageRefreshEngine:
    """Brings the node images up to date by pulling, and building from source when pulling is not enough."""

    def __init__(self, docker_client: DockerClient):
        self.docker_client = docker_client

    def refresh(self, plan: UpdatePlan) -> ImageRefreshResult:
        try:
            pull_output = self.docker_client.pull_images()
        except CommandError as e:
            log.warning(f"Image pull failed: {e}")
            plan.add(f"Image pull failed ({e.kind.value}); falling back to building from source")
            build_output = self._build(e.output)
            return ImageRefreshResult(
                log=self._join(e.output, build_output),
                built_from_source=True,
                images_updated=True,
            )

        if build_required(pull_output):
            plan.add("Some services have no prebuilt image; building from source")
            build_output = self._build(pull_output)
            plan.add("Built images from source")
            return ImageRefreshResult(
                log=self._join(pull_output, build_output),
                built_from_source=True,
                images_updated=True,
            )

        updated = images_changed(pull_output)
        plan.add("Pulled latest images" if updated else "Images already up to date")
        return ImageRefreshResult(log=pull_output, built_from_source=False, images_updated=updated)

    def _build(self, pull_output: str) -> str:
        try:
            return self.docker_client.build_images()
        except CommandError as e:
            raise ImageRefreshError(
                self._failure_message(e.kind),
                kind=e.kind,
                stage=UpdateStage.IMAGE_REFRESH,
                details=self._join(pull_output, e.output),
            ) from e

    def _failure_message(self, kind: ErrorKind) -> str:
        if kind == ErrorKind.TIMEOUT:
            return "Building images from source timed out"
        if kind == ErrorKind.TOOL_NOT_FOUND:
            return "Docker Compose is not available; could not pull or build images"
        if kind == ErrorKind.PERMISSION_DENIED:
            return "Permission denied while pulling or building images"
        return "Image pull and build from source both failed"

    @staticmethod
    def _join(*outputs: str) -> str:
        return "\n".join(output.rstrip() for output in outputs if output and output.strip())
