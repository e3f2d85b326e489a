import logging
from datetime import datetime
from typing import List

from .errors import CommandError, ReconciliationError, UpdateAbortedError
from .git_client import GitClient
from .plan import UpdatePlan
from .schemas import ChangeStrategy, ReconcileResult, UpdateStage

log = logging.getLogger(__name__)

STASH_LABEL_PREFIX = "gateway-node-update"
ARCHIVE_BRANCH_PREFIX = "local-changes"


class ChangeReconciler:
    """Clears uncommitted modifications out of the node checkout before pulling."""

    def __init__(self, git_client: GitClient):
        self.git_client = git_client

    def _timestamp(self) -> str:
        return datetime.now().strftime("%Y%m%d-%H%M%S")

    def reconcile(self, strategy: ChangeStrategy, plan: UpdatePlan) -> ReconcileResult:
        """
        Applies ``strategy`` to any local modifications.

        An empty change set is a no-op for every strategy. With ``abort`` the
        change set is handed back inside UpdateAbortedError and nothing is
        touched. A failing git command raises ReconciliationError; a strategy
        is never reported as applied unless every step of it succeeded.
        """
        try:
            change_set = self.git_client.status()
        except CommandError as e:
            raise ReconciliationError(
                "Could not read the working tree status of the node checkout",
                stage=UpdateStage.RECONCILE,
                details=e.output,
            ) from e

        if not change_set:
            plan.add("No local changes to reconcile")
            return ReconcileResult(success=True, message="No local changes to reconcile")

        plan.add(f"Found {len(change_set)} locally modified file(s): {', '.join(change_set)}")

        if strategy == ChangeStrategy.ABORT:
            raise UpdateAbortedError(
                f"Update aborted: local modifications present ({len(change_set)} file(s))",
                change_set=change_set,
                stage=UpdateStage.RECONCILE,
            )

        handlers = {
            ChangeStrategy.PRESERVE: self._preserve,
            ChangeStrategy.ARCHIVE: self._archive,
            ChangeStrategy.DISCARD: self._discard,
        }
        try:
            result = handlers[strategy](change_set)
        except CommandError as e:
            raise ReconciliationError(
                f"Failed to {strategy.value} local changes: {e}",
                stage=UpdateStage.RECONCILE,
                details=e.output,
            ) from e

        plan.add(result.message)
        return result

    def _preserve(self, change_set: List[str]) -> ReconcileResult:
        label = f"{STASH_LABEL_PREFIX}-{self._timestamp()}"
        self.git_client.stash(label)
        return ReconcileResult(
            success=True,
            message=f"Stashed local changes as '{label}'. Restore them later with 'git stash pop' (see 'git stash list').",
            change_set=change_set,
        )

    def _archive(self, change_set: List[str]) -> ReconcileResult:
        branch = f"{ARCHIVE_BRANCH_PREFIX}-{self._timestamp()}"
        original_branch = self.git_client.current_branch()
        self.git_client.create_branch(branch)
        self.git_client.add_all()
        self.git_client.commit(f"Archive local changes before node update ({len(change_set)} file(s))")
        self.git_client.checkout(original_branch)
        self.git_client.reset_hard("HEAD")
        return ReconcileResult(
            success=True,
            message=f"Committed local changes to branch '{branch}' and reset '{original_branch}' to a clean state",
            archive_ref=branch,
            change_set=change_set,
        )

    def _discard(self, change_set: List[str]) -> ReconcileResult:
        self.git_client.reset_hard("HEAD")
        self.git_client.clean_untracked()
        return ReconcileResult(
            success=True,
            message=f"Permanently discarded {len(change_set)} local change(s); this cannot be undone",
            change_set=change_set,
        )
