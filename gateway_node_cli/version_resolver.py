import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from .git_client import GitClient
from .release_client import ReleaseClient
from .schemas import VersionCheck, VersionFacts
from .versioning import compare_versions

log = logging.getLogger(__name__)


class VersionResolver:
    """Gathers the deployed, local and latest versions and decides whether to update."""

    def __init__(self, git_client: GitClient, release_client: ReleaseClient):
        self.git_client = git_client
        self.release_client = release_client

    def _safe_lookup(self, label: str, lookup: Callable[[], Optional[str]]) -> Optional[str]:
        """Runs one lookup; any failure degrades that fact to unknown."""
        try:
            value = lookup()
        except Exception as e:
            log.warning(f"Could not determine {label} version: {e}")
            return None
        log.debug(f"{label.capitalize()} version: {value or 'unknown'}")
        return value

    def gather_facts(self) -> VersionFacts:
        """Runs the three independent lookups concurrently and waits for all of them."""
        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="version-lookup") as executor:
            deployed = executor.submit(self._safe_lookup, "deployed", self.release_client.get_deployed_release)
            local = executor.submit(self._safe_lookup, "local", self.git_client.describe_revision)
            latest = executor.submit(self._safe_lookup, "latest", self.release_client.get_latest_release)
            return VersionFacts(
                deployed=deployed.result(),
                local=local.result(),
                latest=latest.result(),
            )

    def resolve(self) -> VersionCheck:
        facts = self.gather_facts()
        comparison = compare_versions(facts)
        log.debug(f"Version decision: update_needed={comparison.update_needed} ({comparison.reason})")
        return VersionCheck(facts=facts, comparison=comparison)
