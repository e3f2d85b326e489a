import pytest

from gateway_node_cli.schemas import AppConfig
from tests.integration.helpers import clone_node, create_origin, is_git_available

# --- Shared Fixtures ---


@pytest.fixture
def origin_repo(tmp_path):
    if not is_git_available():
        pytest.skip("git not available")
    return create_origin(tmp_path)


@pytest.fixture
def node_checkout(origin_repo, tmp_path):
    """A clone of origin_repo, standing in for the operator's node directory."""
    return clone_node(origin_repo, tmp_path)


@pytest.fixture
def integration_config(node_checkout, tmp_path):
    return AppConfig(
        node_path=str(node_checkout),
        project_name=f"gateway-node-it-{tmp_path.name}".lower().replace("_", "-"),
        info_urls=[],
        verify_delay=2,
    )
