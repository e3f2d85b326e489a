import logging
from pathlib import Path
from typing import Optional

from .display import Display
from .docker_client import DockerClient
from .errors import UpdateAbortedError, UpdateError
from .git_client import GitClient
from .locking import stack_key, update_lock
from .release_client import ReleaseClient
from .schemas import AppConfig, ServiceHealthSnapshot, UpdateOptions, UpdateResult, UpdateStage, VersionCheck
from .update_pipeline import UpdatePipeline
from .verifier import PostUpdateVerifier
from .version_resolver import VersionResolver

log = logging.getLogger(__name__)


class StackManager:
    """
    Entry point for operating on the node stack.

    Owns the git, docker and release clients for one node checkout and
    hands them to the update pipeline. Update runs are serialized per stack
    identity.
    """

    def __init__(self, config: AppConfig, display: Display, lock_dir: Optional[Path] = None):
        self.config = config
        self.display = display
        self.lock_dir = lock_dir

        self.docker_client = DockerClient(config)
        self.git_client = GitClient(config)
        self.release_client = ReleaseClient(config)
        self.version_resolver = VersionResolver(self.git_client, self.release_client)

    @property
    def stack_key(self) -> str:
        return stack_key(self.config.node_path, self.config.project_name)

    # =============================================================================
    # Read-only Queries
    # =============================================================================

    def check_versions(self) -> VersionCheck:
        """Gathers version facts and the update decision without side effects."""
        return self.version_resolver.resolve()

    def get_health_snapshot(self) -> ServiceHealthSnapshot:
        return PostUpdateVerifier(self.docker_client).snapshot()

    # =============================================================================
    # Update Orchestration
    # =============================================================================

    def _build_pipeline(self) -> UpdatePipeline:
        return UpdatePipeline(
            self.config,
            git_client=self.git_client,
            docker_client=self.docker_client,
            resolver=self.version_resolver,
        )

    def run_update(self, options: Optional[UpdateOptions] = None) -> UpdateResult:
        """
        Runs the node update pipeline and always returns a structured result.

        Fatal pipeline errors are converted to an unsuccessful UpdateResult
        carrying the error kind, the stage that failed and the partial step
        log, so callers never have to handle exceptions from here.
        """
        options = options or UpdateOptions()
        try:
            with update_lock(self.stack_key, self.lock_dir):
                return self._build_pipeline().execute(options)
        except UpdateAbortedError as e:
            log.warning(e.message)
            return UpdateResult(
                success=False,
                message=e.message,
                stage=UpdateStage.ABORTED,
                failed_stage=e.stage,
                steps=e.steps,
                change_set=e.change_set,
                error_kind=e.kind,
            )
        except UpdateError as e:
            log.error(f"Update failed: {e.message}")
            return UpdateResult(
                success=False,
                message=e.message,
                stage=UpdateStage.FAILED,
                failed_stage=e.stage or UpdateStage.START,
                steps=e.steps,
                error_kind=e.kind,
                details=e.details,
            )
