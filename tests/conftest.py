import pytest
from unittest.mock import MagicMock

from gateway_node_cli.plan import UpdatePlan
from gateway_node_cli.schemas import AppConfig, ServiceHealthSnapshot, ServiceState


@pytest.fixture
def mock_display():
    """Fixture for a mocked Display object."""
    return MagicMock()


@pytest.fixture
def node_dir(tmp_path):
    """A minimal node checkout: a .git directory and a compose file."""
    node = tmp_path / "ar-io-node"
    (node / ".git").mkdir(parents=True)
    (node / "docker-compose.yaml").write_text("services: {}\n")
    return node


@pytest.fixture
def app_config(node_dir):
    """AppConfig pointing at the temporary node checkout, with no verify delay."""
    return AppConfig(node_path=str(node_dir), verify_delay=0)


@pytest.fixture
def mock_git_client():
    """Fixture for a mocked GitClient with a clean checkout on main."""
    client = MagicMock()
    client.status.return_value = []
    client.current_branch.return_value = "main"
    client.head.side_effect = ["aaaaaaaa11111111", "bbbbbbbb22222222"]
    return client


@pytest.fixture
def mock_docker_client():
    """Fixture for a mocked DockerClient whose stack comes back fully running."""
    client = MagicMock()
    client.pull_images.return_value = "core Pulled\nenvoy Pulled\n"
    client.get_service_states.return_value = [
        ServiceState(name="core", state="running"),
        ServiceState(name="envoy", state="running"),
    ]
    return client


@pytest.fixture
def plan():
    return UpdatePlan()


@pytest.fixture
def mock_app_context():
    """Fixture to mock the AppContext and its components."""
    mock_context = MagicMock()
    mock_context.stack_manager = MagicMock()
    mock_context.display = MagicMock()
    mock_context.config = MagicMock()
    mock_context.config.fell_back_to_defaults = False
    return mock_context


@pytest.fixture
def healthy_snapshot():
    return ServiceHealthSnapshot(
        running_count=2,
        total_count=2,
        services=[
            ServiceState(name="core", state="running", status="Up 5 seconds"),
            ServiceState(name="envoy", state="running", status="Up 5 seconds"),
        ],
    )
