import docker
import shutil
import subprocess
from pathlib import Path

COMPOSE_FILE = """\
services:
  core:
    image: busybox:1.36
    command: ["sleep", "600"]
  envoy:
    image: busybox:1.36
    command: ["sleep", "600"]
"""


def is_docker_available() -> bool:
    """Check if Docker is available and running."""
    try:
        client = docker.from_env()
        client.ping()
        return True
    except docker.errors.DockerException:
        return False


def is_git_available() -> bool:
    return shutil.which("git") is not None


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=str(repo),
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def configure_identity(repo: Path):
    git(repo, "config", "user.email", "node-operator@example.com")
    git(repo, "config", "user.name", "Node Operator")


def create_origin(root: Path) -> Path:
    """Creates a source repository on branch main with a compose file and one release tag."""
    origin = root / "origin"
    origin.mkdir()
    git(origin, "init")
    configure_identity(origin)
    git(origin, "checkout", "-B", "main")
    (origin / "docker-compose.yaml").write_text(COMPOSE_FILE)
    (origin / "README.md").write_text("gateway node\n")
    git(origin, "add", "-A")
    git(origin, "commit", "-m", "Initial release")
    git(origin, "tag", "r45")
    return origin


def clone_node(origin: Path, root: Path) -> Path:
    node = root / "ar-io-node"
    subprocess.run(["git", "clone", str(origin), str(node)], capture_output=True, check=True)
    configure_identity(node)
    return node


def publish_release(origin: Path, tag: str):
    """Adds a commit to origin/main and tags it."""
    (origin / "CHANGELOG.md").write_text(f"{tag}\n")
    git(origin, "add", "-A")
    git(origin, "commit", "-m", f"Release {tag}")
    git(origin, "tag", tag)
