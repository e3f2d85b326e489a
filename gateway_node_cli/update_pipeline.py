"""
Node update pipeline.

The pipeline is a linear state machine with two early exits:

    START -> VERSION_CHECK -> {SHORT_CIRCUIT | RECONCILE}
          -> {ABORTED | VC_PULL} -> IMAGE_REFRESH -> TEARDOWN -> [PRUNE]
          -> BRING_UP -> VERIFY -> {SUCCESS | PARTIAL_FAILURE}

Each stage is fully finished before the next one starts, because every
stage depends on the side effects of the one before it. Stages up to
IMAGE_REFRESH leave the running deployment untouched, so failing there is
safe. From TEARDOWN onward nothing can be rolled back; failures are
reported with as much tool output as possible instead.

Every fatal failure leaves ``execute`` as an UpdateError whose ``stage`` is
the state the pipeline was in and whose ``steps`` is the step log so far.
A verification shortfall is not an exception: the stack is running and can
be diagnosed, so it comes back as an unsuccessful UpdateResult.
"""

import logging
import time
from pathlib import Path
from typing import Optional

from .change_reconciler import ChangeReconciler
from .docker_client import DockerClient
from .errors import CommandError, PreconditionError, UpdateError
from .git_client import GitClient
from .image_refresh import ImageRefreshEngine
from .plan import UpdatePlan
from .schemas import (
    AppConfig,
    ErrorKind,
    UpdateOptions,
    UpdateResult,
    UpdateStage,
    VersionCheck,
    VersionComparison,
)
from .stack_restart import StackRestartController
from .verifier import PostUpdateVerifier
from .version_resolver import VersionResolver

log = logging.getLogger(__name__)


class UpdatePipeline:
    """Runs one node update from version check to post-update verification."""

    def __init__(
        self,
        config: AppConfig,
        git_client: GitClient,
        docker_client: DockerClient,
        resolver: VersionResolver,
        reconciler: Optional[ChangeReconciler] = None,
        image_refresh: Optional[ImageRefreshEngine] = None,
        restart: Optional[StackRestartController] = None,
        verifier: Optional[PostUpdateVerifier] = None,
    ):
        self.config = config
        self.git_client = git_client
        self.docker_client = docker_client
        self.resolver = resolver
        self.reconciler = reconciler or ChangeReconciler(git_client)
        self.image_refresh = image_refresh or ImageRefreshEngine(docker_client)
        self.restart = restart or StackRestartController(docker_client)
        self.verifier = verifier or PostUpdateVerifier(docker_client)
        self.stage = UpdateStage.START

    def _enter(self, stage: UpdateStage):
        log.debug(f"Update stage: {self.stage.value} -> {stage.value}")
        self.stage = stage

    # =============================================================================
    # Stages
    # =============================================================================

    def _check_preconditions(self):
        node_path = Path(self.config.node_path).expanduser()
        if not node_path.is_dir():
            raise PreconditionError(f"Node directory not found: {node_path}")
        if not (node_path / ".git").exists():
            raise PreconditionError(f"Node directory is not a git checkout: {node_path}")
        compose_file = node_path / self.config.compose_file
        if not compose_file.is_file():
            raise PreconditionError(f"Docker compose file not found: {compose_file}")

    def _check_version(self, options: UpdateOptions, plan: UpdatePlan) -> VersionCheck:
        if options.force_update:
            plan.add("Version check skipped (forced update)")
            return VersionCheck(
                comparison=VersionComparison(update_needed=True, reason="Version check skipped (forced update)"),
                skipped=True,
            )
        version_check = self.resolver.resolve()
        plan.add(f"Version check: {version_check.comparison.reason}")
        return version_check

    def _pull_source(self, plan: UpdatePlan) -> bool:
        """Moves the checkout onto the canonical branch and pulls it; returns whether HEAD moved."""
        branch = self.config.canonical_branch
        try:
            self.git_client.fetch()
            plan.add(f"Fetched updates from {self.config.git_remote}")
            current = self.git_client.current_branch()
            if current != branch:
                self.git_client.checkout(branch)
                plan.add(f"Switched from branch '{current}' to '{branch}'")
            before = self.git_client.head()
            self.git_client.pull(branch)
            after = self.git_client.head()
        except CommandError as e:
            raise UpdateError(
                f"Failed to update the node source: {e}",
                kind=e.kind,
                stage=UpdateStage.VC_PULL,
                details=e.output,
            ) from e

        updated = before != after
        if updated:
            plan.add(f"Pulled {branch}: {before[:8]} -> {after[:8]}")
        else:
            plan.add(f"Source already up to date on {branch}")
        return updated

    def _recover_bring_up(self, plan: UpdatePlan):
        """After a failed teardown or prune, try to leave the stack running rather than half down."""
        try:
            self.restart.bring_up(plan)
        except Exception as e:
            log.error(f"Recovery bring-up also failed: {e}")
            plan.add("Recovery bring-up also failed; the stack may be down")

    # =============================================================================
    # Orchestration
    # =============================================================================

    def execute(self, options: UpdateOptions) -> UpdateResult:
        """
        Runs the pipeline.

        Returns an UpdateResult for the short-circuit, success and partial
        failure outcomes. Raises UpdateError (with stage and partial steps)
        for every fatal failure.
        """
        plan = UpdatePlan()
        self.stage = UpdateStage.START
        strategy = options.handle_changes or self.config.default_change_strategy

        try:
            self._check_preconditions()

            self._enter(UpdateStage.VERSION_CHECK)
            version_check = self._check_version(options, plan)
            if not version_check.comparison.update_needed:
                self._enter(UpdateStage.SHORT_CIRCUIT)
                plan.add("No update needed; skipping pull, build and restart")
                return UpdateResult(
                    success=True,
                    message="Node is already up to date",
                    stage=UpdateStage.SHORT_CIRCUIT,
                    steps=plan.steps,
                    version_check=version_check,
                )

            self._enter(UpdateStage.RECONCILE)
            reconcile = self.reconciler.reconcile(strategy, plan)

            self._enter(UpdateStage.VC_PULL)
            repository_updated = self._pull_source(plan)

            self._enter(UpdateStage.IMAGE_REFRESH)
            refresh = self.image_refresh.refresh(plan)
            if refresh.log:
                log.debug(f"Image refresh output:\n{refresh.log}")

            self._enter(UpdateStage.TEARDOWN)
            try:
                self.restart.teardown(plan)
                if options.perform_prune:
                    self._enter(UpdateStage.PRUNE)
                    self.restart.prune(plan)
                else:
                    plan.add("Skipped resource prune")
            except Exception:
                self._recover_bring_up(plan)
                raise

            self._enter(UpdateStage.BRING_UP)
            self.restart.bring_up(plan)

            self._enter(UpdateStage.VERIFY)
            if self.config.verify_delay > 0:
                time.sleep(self.config.verify_delay)
            health = self.verifier.verify(plan)

        except UpdateError as e:
            if e.stage is None:
                e.stage = self.stage
            plan.add(f"Update failed during {e.stage.value}: {e.message}")
            e.steps = plan.steps
            raise
        except Exception as e:
            log.exception(f"Unexpected failure during {self.stage.value}")
            plan.add(f"Update failed during {self.stage.value}: {e}")
            raise UpdateError(
                f"Unexpected failure during {self.stage.value}: {e}",
                kind=ErrorKind.GENERIC,
                stage=self.stage,
                steps=plan.steps,
                details=repr(e),
            ) from e

        common = dict(
            steps=plan.steps,
            version_check=version_check,
            health=health,
            repository_updated=repository_updated,
            images_updated=refresh.images_updated,
            built_from_source=refresh.built_from_source,
            archive_ref=reconcile.archive_ref,
            change_set=reconcile.change_set,
        )
        if health.is_healthy:
            self._enter(UpdateStage.SUCCESS)
            return UpdateResult(
                success=True,
                message=f"Node updated successfully: {health.running_count}/{health.total_count} services running",
                stage=UpdateStage.SUCCESS,
                **common,
            )

        self._enter(UpdateStage.PARTIAL_FAILURE)
        return UpdateResult(
            success=False,
            message=f"Node update finished but only {health.running_count}/{health.total_count} services are running",
            stage=UpdateStage.PARTIAL_FAILURE,
            failed_stage=UpdateStage.VERIFY,
            error_kind=ErrorKind.VERIFICATION_SHORTFALL,
            **common,
        )
