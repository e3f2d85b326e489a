import json
import logging
import socket
import urllib.error
import urllib.request
from typing import Optional

from .schemas import AppConfig

log = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
USER_AGENT = "gateway-node-cli"


class ReleaseClient:
    """Read-only lookups of the latest published release and the deployed gateway's release."""

    def __init__(self, config: AppConfig):
        self.config = config

    def _get_json(self, url: str, accept: str = "application/json"):
        request = urllib.request.Request(url, headers={"Accept": accept, "User-Agent": USER_AGENT})
        with urllib.request.urlopen(request, timeout=self.config.request_timeout) as response:
            if not 200 <= response.status < 300:
                raise urllib.error.HTTPError(url, response.status, f"HTTP {response.status}", response.headers, None)
            return json.loads(response.read().decode("utf-8"))

    def get_latest_release(self) -> Optional[str]:
        """Returns the tag name of the latest published release, or None if it has none."""
        url = f"{GITHUB_API_URL}/repos/{self.config.release_repository}/releases/latest"
        log.debug(f"Fetching latest release from {url}")
        data = self._get_json(url, accept="application/vnd.github+json")
        tag = data.get("tag_name") if isinstance(data, dict) else None
        return str(tag) if tag else None

    def get_deployed_release(self) -> Optional[str]:
        """
        Asks the running gateway which release it is serving.

        Candidate URLs are tried in order (Docker network hostnames first,
        then localhost) and the first one that answers with a release wins.
        Returns None if no candidate responds.
        """
        last_error = None
        for url in self.config.info_urls:
            try:
                log.debug(f"Trying gateway info at: {url}")
                data = self._get_json(url)
            except (urllib.error.URLError, socket.timeout, ConnectionError, ValueError) as e:
                log.debug(f"Error fetching from {url}: {e}")
                last_error = e
                continue

            release = data.get("release") if isinstance(data, dict) else None
            if release is not None and str(release).strip():
                log.debug(f"Gateway at {url} reports release {release}")
                return str(release).strip()
            log.debug(f"Gateway at {url} did not report a release")

        if last_error is not None:
            log.debug(f"No gateway info endpoint responded: {last_error}")
        return None
