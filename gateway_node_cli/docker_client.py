import docker
import json
import logging
import requests
import subprocess
from pathlib import Path
from typing import List, Optional

from .errors import CommandError
from .schemas import AppConfig, ErrorKind, ServiceState

log = logging.getLogger(__name__)

COMPOSE_PROJECT_LABEL = "com.docker.compose.project"


class DockerClient:
    """A wrapper for Docker and Docker Compose operations on the node stack."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.node_path = Path(config.node_path).expanduser()
        try:
            self.client = docker.from_env()
            self.client.ping()  # Test connection
            log.debug("Docker client initialized successfully")
        except docker.errors.DockerException as e:
            log.error(f"Failed to initialize Docker client: {e}")
            # Don't raise here - let individual operations handle Docker unavailability
            self.client = None

    @property
    def compose_file_path(self) -> Path:
        return self.node_path / self.config.compose_file

    # =============================================================================
    # Docker Compose Operations
    # =============================================================================

    def _compose_base(self) -> List[str]:
        return list(self.config.compose_command) + [
            "-p", self.config.project_name,
            "-f", self.config.compose_file,
        ]

    def _run_command(self, full_cmd: List[str], timeout: Optional[float] = None) -> str:
        """Runs a command in the node directory and returns its combined output."""
        log.debug(f"$ {' '.join(full_cmd)}")
        try:
            process = subprocess.run(
                full_cmd,
                cwd=str(self.node_path),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding='utf-8',
                errors='replace',
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise CommandError(full_cmd, f"{full_cmd[0]} command not found: {e}", ErrorKind.TOOL_NOT_FOUND) from e
        except PermissionError as e:
            raise CommandError(full_cmd, str(e), ErrorKind.PERMISSION_DENIED) from e
        except subprocess.TimeoutExpired as e:
            partial = e.output if isinstance(e.output, str) else (e.output or b"").decode("utf-8", "replace")
            raise CommandError(
                full_cmd,
                f"{partial}\nCommand timed out after {e.timeout} seconds",
                ErrorKind.TIMEOUT,
            ) from e

        output = process.stdout or ""
        if process.returncode != 0:
            log.debug(
                f"Command failed with exit code {process.returncode}. "
                f"Command: `{' '.join(full_cmd)}` Output: {output}"
            )
            raise CommandError(full_cmd, output, returncode=process.returncode)
        return output

    def _run_compose_command(self, command: List[str], timeout: Optional[float] = None) -> str:
        """Helper to run a docker compose command against the node's project and compose file."""
        full_cmd = self._compose_base() + command
        try:
            return self._run_command(full_cmd, timeout=timeout)
        except CommandError as e:
            if command[0] == "down" and "not found" in e.output.lower() and e.kind != ErrorKind.TOOL_NOT_FOUND:
                # Nothing to tear down
                return e.output
            raise

    def pull_images(self) -> str:
        """Pulls the prebuilt images for every service in the compose file."""
        log.info("Pulling latest images for node services...")
        return self._run_compose_command(["pull"], timeout=self.config.pull_timeout)

    def build_images(self) -> str:
        """Builds every service image from the checked-out source."""
        log.info("Building node images from source...")
        return self._run_compose_command(["build"], timeout=self.config.build_timeout)

    def stop_services(self, remove_volumes: bool = True) -> str:
        """Tears the stack down, including its anonymous and project volumes."""
        command = ["down"]
        if remove_volumes:
            command.append("-v")
        return self._run_compose_command(command)

    def start_services(self) -> str:
        """Brings the stack up in detached mode."""
        return self._run_compose_command(["up", "-d"])

    # =============================================================================
    # Resource Management
    # =============================================================================

    def prune_system(self) -> int:
        """
        Removes stopped containers, dangling images, unused networks and build cache.

        Volumes are left alone. Returns the number of bytes reclaimed.
        """
        if not self.client:
            raise CommandError(["docker", "system", "prune"], "Docker client not available", ErrorKind.TOOL_NOT_FOUND)

        reclaimed = 0
        try:
            for result in (
                self.client.containers.prune(),
                self.client.images.prune(),
                self.client.networks.prune(),
                self.client.api.prune_builds(),
            ):
                reclaimed += (result or {}).get("SpaceReclaimed") or 0
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            raise CommandError(["docker", "system", "prune"], str(e)) from e
        return reclaimed

    # =============================================================================
    # Container Status
    # =============================================================================

    def get_service_states(self) -> List[ServiceState]:
        """
        Returns per-service state from `compose ps --format json`.

        Compose v2 emits either a JSON array or one JSON object per line
        depending on its version; both are accepted. Raises ValueError when
        the output cannot be parsed.
        """
        output = self._run_compose_command(["ps", "--all", "--format", "json"]).strip()
        if not output:
            return []

        if output.startswith("["):
            entries = json.loads(output)
        else:
            entries = [json.loads(line) for line in output.splitlines() if line.strip()]

        states = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise ValueError(f"Unexpected compose ps entry: {entry!r}")
            states.append(ServiceState(
                name=entry.get("Service") or entry.get("Name") or "unknown",
                state=(entry.get("State") or "unknown").lower(),
                status=entry.get("Status"),
            ))
        return states

    def count_services(self) -> int:
        """Counts the services declared in the compose file."""
        output = self._run_compose_command(["config", "--services"])
        return len([line for line in output.splitlines() if line.strip()])

    def count_running_containers(self) -> int:
        """Counts running containers belonging to the compose project."""
        label = f"{COMPOSE_PROJECT_LABEL}={self.config.project_name}"
        if self.client:
            try:
                containers = self.client.containers.list(filters={"label": label, "status": "running"})
                return len(containers)
            except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
                log.debug(f"Docker API container count failed, falling back to CLI: {e}")

        output = self._run_command(["docker", "ps", "-q", "--filter", f"label={label}"])
        return len([line for line in output.splitlines() if line.strip()])
