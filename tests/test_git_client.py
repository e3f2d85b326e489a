from unittest.mock import patch
import pytest
import subprocess

from gateway_node_cli.errors import CommandError
from gateway_node_cli.git_client import GitClient
from gateway_node_cli.schemas import AppConfig, ErrorKind


def _completed(stdout="", stderr="", returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def git_client(tmp_path):
    return GitClient(AppConfig(node_path=str(tmp_path)))


@patch('subprocess.run')
def test_runs_in_node_checkout(mock_run, git_client, tmp_path):
    mock_run.return_value = _completed("main\n")

    assert git_client.current_branch() == "main"

    args, kwargs = mock_run.call_args
    assert args[0] == ["git", "rev-parse", "--abbrev-ref", "HEAD"]
    assert kwargs["cwd"] == str(tmp_path)
    assert kwargs["timeout"] == 120


@patch('subprocess.run')
def test_status_parses_porcelain(mock_run, git_client):
    mock_run.return_value = _completed(
        " M docker-compose.yaml\n"
        "?? .env.local\n"
        "R  old-name.txt -> new-name.txt\n"
        'A  "with space.txt"\n'
    )

    assert git_client.status() == ["docker-compose.yaml", ".env.local", "new-name.txt", "with space.txt"]


@patch('subprocess.run')
def test_status_clean(mock_run, git_client):
    mock_run.return_value = _completed("")

    assert git_client.status() == []


@patch('subprocess.run')
def test_describe_revision_prefers_exact_tag(mock_run, git_client):
    mock_run.return_value = _completed("r48\n")

    assert git_client.describe_revision() == "r48"
    mock_run.assert_called_once()


@patch('subprocess.run')
def test_describe_revision_falls_back_to_short_hash(mock_run, git_client):
    mock_run.side_effect = [
        _completed(stderr="fatal: no tag exactly matches", returncode=128),
        _completed("abc1234\n"),
    ]

    assert git_client.describe_revision() == "abc1234"


@patch('subprocess.run')
def test_describe_revision_unknown(mock_run, git_client):
    mock_run.return_value = _completed(stderr="fatal: not a git repository", returncode=128)

    assert git_client.describe_revision() is None


@patch('subprocess.run')
def test_pull_targets_remote_and_branch(mock_run, git_client):
    mock_run.return_value = _completed("Already up to date.\n")

    assert git_client.pull() == "Already up to date."
    assert mock_run.call_args[0][0] == ["git", "pull", "origin", "main"]


@patch('subprocess.run')
def test_stash_includes_untracked(mock_run, git_client):
    mock_run.return_value = _completed()

    git_client.stash("gateway-node-update-20261019-120000")

    assert mock_run.call_args[0][0] == [
        "git", "stash", "push", "--include-untracked", "-m", "gateway-node-update-20261019-120000"
    ]


@patch('subprocess.run')
def test_discard_commands(mock_run, git_client):
    mock_run.return_value = _completed()

    git_client.reset_hard()
    git_client.clean_untracked()

    assert [c[0][0] for c in mock_run.call_args_list] == [
        ["git", "reset", "--hard", "HEAD"],
        ["git", "clean", "-fd"],
    ]


@patch('subprocess.run')
def test_failure_raises_with_output(mock_run, git_client):
    mock_run.return_value = _completed(stderr="fatal: could not read Username: terminal prompts disabled", returncode=128)

    with pytest.raises(CommandError) as exc_info:
        git_client.fetch()

    assert exc_info.value.returncode == 128
    assert "could not read Username" in exc_info.value.output


@patch('subprocess.run')
def test_missing_git_binary(mock_run, git_client):
    mock_run.side_effect = FileNotFoundError(2, "No such file or directory", "git")

    with pytest.raises(CommandError) as exc_info:
        git_client.head()

    assert exc_info.value.kind == ErrorKind.TOOL_NOT_FOUND


@patch('subprocess.run')
def test_git_timeout(mock_run, git_client):
    mock_run.side_effect = subprocess.TimeoutExpired(cmd=["git", "fetch"], timeout=120)

    with pytest.raises(CommandError) as exc_info:
        git_client.fetch()

    assert exc_info.value.kind == ErrorKind.TIMEOUT
