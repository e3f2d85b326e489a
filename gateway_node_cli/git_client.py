import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from .errors import CommandError
from .schemas import AppConfig, ErrorKind

log = logging.getLogger(__name__)


class GitClient:
    """A wrapper for the git operations the updater performs on the node checkout."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.repo_path = Path(config.node_path).expanduser()

    def _run_git(self, args: List[str], check: bool = True) -> subprocess.CompletedProcess:
        """Runs git in the node checkout, raising CommandError on failure when check is set."""
        cmd = ["git"] + args
        log.debug(f"$ {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                cwd=str(self.repo_path),
                capture_output=True,
                text=True,
                encoding='utf-8',
                timeout=self.config.git_timeout,
            )
        except FileNotFoundError as e:
            raise CommandError(cmd, str(e), ErrorKind.TOOL_NOT_FOUND) from e
        except PermissionError as e:
            raise CommandError(cmd, str(e), ErrorKind.PERMISSION_DENIED) from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(cmd, f"git timed out after {e.timeout} seconds", ErrorKind.TIMEOUT) from e

        if check and result.returncode != 0:
            output = (result.stderr or "") + (result.stdout or "")
            log.debug(f"git exited with {result.returncode}: {output.strip()}")
            raise CommandError(cmd, output, returncode=result.returncode)
        return result

    # =============================================================================
    # Working Tree Inspection
    # =============================================================================

    def status(self) -> List[str]:
        """Returns paths reported as modified or untracked by `git status --porcelain`."""
        result = self._run_git(["status", "--porcelain"])
        paths = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            # Porcelain v1: two status columns, a space, then the path
            path = line[3:]
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            paths.append(path.strip().strip('"'))
        return paths

    def current_branch(self) -> str:
        return self._run_git(["rev-parse", "--abbrev-ref", "HEAD"]).stdout.strip()

    def head(self) -> str:
        return self._run_git(["rev-parse", "HEAD"]).stdout.strip()

    def describe_revision(self) -> Optional[str]:
        """Returns the exact tag at HEAD if there is one, else the short commit hash."""
        tag = self._run_git(["describe", "--tags", "--exact-match"], check=False)
        if tag.returncode == 0 and tag.stdout.strip():
            return tag.stdout.strip()
        short = self._run_git(["rev-parse", "--short", "HEAD"], check=False)
        if short.returncode == 0 and short.stdout.strip():
            return short.stdout.strip()
        return None

    # =============================================================================
    # Mutations
    # =============================================================================

    def fetch(self):
        self._run_git(["fetch", self.config.git_remote])

    def stash(self, label: str):
        """Shelves tracked and untracked modifications under a labelled stash entry."""
        self._run_git(["stash", "push", "--include-untracked", "-m", label])

    def create_branch(self, name: str):
        self._run_git(["checkout", "-b", name])

    def checkout(self, branch: str):
        self._run_git(["checkout", branch])

    def add_all(self):
        self._run_git(["add", "-A"])

    def commit(self, message: str):
        self._run_git(["commit", "-m", message])

    def reset_hard(self, ref: str = "HEAD"):
        self._run_git(["reset", "--hard", ref])

    def clean_untracked(self):
        self._run_git(["clean", "-fd"])

    def pull(self, branch: Optional[str] = None) -> str:
        branch = branch or self.config.canonical_branch
        result = self._run_git(["pull", self.config.git_remote, branch])
        return (result.stdout or "").strip()
