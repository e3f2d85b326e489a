import pytest
import requests
import subprocess
from unittest.mock import MagicMock, patch

from gateway_node_cli.docker_client import DockerClient
from gateway_node_cli.errors import CommandError, PreconditionError, UpdateAbortedError, UpdateError
from gateway_node_cli.schemas import (
    ChangeStrategy,
    ErrorKind,
    ServiceState,
    UpdateOptions,
    UpdateStage,
    VersionCheck,
    VersionFacts,
)
from gateway_node_cli.update_pipeline import UpdatePipeline
from gateway_node_cli.versioning import compare_versions

DOCKER_MUTATIONS = ["pull_images", "build_images", "stop_services", "start_services", "prune_system"]
GIT_MUTATIONS = ["fetch", "stash", "create_branch", "checkout", "add_all", "commit", "reset_hard", "clean_untracked", "pull"]


def _version_check(deployed, latest, local=None):
    facts = VersionFacts(deployed=deployed, local=local, latest=latest)
    return VersionCheck(facts=facts, comparison=compare_versions(facts))


@pytest.fixture
def mock_resolver():
    resolver = MagicMock()
    resolver.resolve.return_value = _version_check("r45", "r48")
    return resolver


@pytest.fixture
def pipeline(app_config, mock_git_client, mock_docker_client, mock_resolver):
    return UpdatePipeline(
        app_config,
        git_client=mock_git_client,
        docker_client=mock_docker_client,
        resolver=mock_resolver,
    )


def _assert_no_mutation(git_client, docker_client):
    for name in GIT_MUTATIONS:
        getattr(git_client, name).assert_not_called()
    for name in DOCKER_MUTATIONS:
        getattr(docker_client, name).assert_not_called()


# =============================================================================
# Happy Path
# =============================================================================

def test_update_from_behind_release(pipeline, mock_git_client, mock_docker_client):
    result = pipeline.execute(UpdateOptions())

    assert result.success is True
    assert result.stage == UpdateStage.SUCCESS
    assert result.repository_updated is True
    assert result.images_updated is True
    assert result.built_from_source is False
    assert result.health.running_count == 2
    assert result.version_check.facts.deployed == "r45"
    mock_git_client.pull.assert_called_once_with("main")
    mock_docker_client.stop_services.assert_called_once_with(remove_volumes=True)
    mock_docker_client.start_services.assert_called_once()
    mock_docker_client.prune_system.assert_not_called()
    assert "Skipped resource prune" in result.steps


def test_stages_run_in_order(pipeline, mock_git_client, mock_docker_client):
    calls = []
    mock_git_client.pull.side_effect = lambda *args: calls.append("pull")
    mock_docker_client.pull_images.side_effect = lambda: calls.append("images") or "Pulled"
    mock_docker_client.stop_services.side_effect = lambda **kwargs: calls.append("down")
    mock_docker_client.prune_system.side_effect = lambda: calls.append("prune") or 0
    mock_docker_client.start_services.side_effect = lambda: calls.append("up")

    pipeline.execute(UpdateOptions(perform_prune=True))

    assert calls == ["pull", "images", "down", "prune", "up"]


def test_prune_only_when_requested(pipeline, mock_docker_client):
    mock_docker_client.prune_system.return_value = 0

    result = pipeline.execute(UpdateOptions(perform_prune=True))

    mock_docker_client.prune_system.assert_called_once()
    assert "Skipped resource prune" not in result.steps


def test_prune_failure_does_not_fail_update(pipeline, mock_docker_client):
    mock_docker_client.prune_system.side_effect = CommandError(["docker", "system", "prune"], "")

    result = pipeline.execute(UpdateOptions(perform_prune=True))

    assert result.success is True
    mock_docker_client.start_services.assert_called_once()


def test_switches_to_canonical_branch(pipeline, mock_git_client):
    mock_git_client.current_branch.return_value = "feature/custom-observer"

    result = pipeline.execute(UpdateOptions())

    mock_git_client.checkout.assert_called_once_with("main")
    assert "Switched from branch 'feature/custom-observer' to 'main'" in result.steps


def test_unchanged_head_reports_repository_not_updated(pipeline, mock_git_client):
    mock_git_client.head.side_effect = ["aaaaaaaa11111111", "aaaaaaaa11111111"]

    result = pipeline.execute(UpdateOptions())

    assert result.success is True
    assert result.repository_updated is False


# =============================================================================
# Short Circuit
# =============================================================================

def test_up_to_date_short_circuits_without_side_effects(pipeline, mock_resolver, mock_git_client, mock_docker_client):
    mock_resolver.resolve.return_value = _version_check("r48", "r48")

    result = pipeline.execute(UpdateOptions(perform_prune=True))

    assert result.success is True
    assert result.stage == UpdateStage.SHORT_CIRCUIT
    assert result.health is None
    _assert_no_mutation(mock_git_client, mock_docker_client)
    mock_git_client.status.assert_not_called()


def test_second_run_short_circuits(pipeline, mock_resolver, mock_git_client, mock_docker_client):
    mock_resolver.resolve.side_effect = [_version_check("r45", "r48"), _version_check("r48", "r48")]

    first = pipeline.execute(UpdateOptions())
    mock_git_client.reset_mock()
    mock_docker_client.reset_mock()
    second = pipeline.execute(UpdateOptions())

    assert first.stage == UpdateStage.SUCCESS
    assert second.stage == UpdateStage.SHORT_CIRCUIT
    _assert_no_mutation(mock_git_client, mock_docker_client)


def test_force_skips_version_check(pipeline, mock_resolver, mock_docker_client):
    mock_resolver.resolve.return_value = _version_check("r48", "r48")

    result = pipeline.execute(UpdateOptions(force_update=True))

    mock_resolver.resolve.assert_not_called()
    assert result.stage == UpdateStage.SUCCESS
    assert result.version_check.skipped is True
    mock_docker_client.start_services.assert_called_once()


def test_unknown_versions_still_update(pipeline, mock_resolver):
    mock_resolver.resolve.return_value = _version_check(None, None)

    result = pipeline.execute(UpdateOptions())

    assert result.stage == UpdateStage.SUCCESS


# =============================================================================
# Local Changes
# =============================================================================

def test_abort_with_local_changes(pipeline, mock_git_client, mock_docker_client):
    mock_git_client.status.return_value = ["docker-compose.yaml"]

    with pytest.raises(UpdateAbortedError) as exc_info:
        pipeline.execute(UpdateOptions(handle_changes=ChangeStrategy.ABORT))

    assert exc_info.value.change_set == ["docker-compose.yaml"]
    assert exc_info.value.stage == UpdateStage.RECONCILE
    assert exc_info.value.steps[-1].startswith("Update failed during reconcile")
    _assert_no_mutation(mock_git_client, mock_docker_client)


def test_config_default_strategy_applies(app_config, mock_git_client, mock_docker_client, mock_resolver):
    config = app_config.model_copy(update={"default_change_strategy": ChangeStrategy.ABORT})
    pipeline = UpdatePipeline(config, mock_git_client, mock_docker_client, mock_resolver)
    mock_git_client.status.return_value = ["a.txt"]

    with pytest.raises(UpdateAbortedError):
        pipeline.execute(UpdateOptions())


def test_archive_ref_reported(pipeline, mock_git_client):
    mock_git_client.status.return_value = ["a.txt"]

    result = pipeline.execute(UpdateOptions(handle_changes=ChangeStrategy.ARCHIVE))

    assert result.archive_ref.startswith("local-changes-")
    assert result.change_set == ["a.txt"]


# =============================================================================
# Failures
# =============================================================================

def test_missing_node_directory(app_config, mock_git_client, mock_docker_client, mock_resolver, tmp_path):
    config = app_config.model_copy(update={"node_path": str(tmp_path / "missing")})
    pipeline = UpdatePipeline(config, mock_git_client, mock_docker_client, mock_resolver)

    with pytest.raises(PreconditionError) as exc_info:
        pipeline.execute(UpdateOptions())

    assert exc_info.value.stage == UpdateStage.START
    assert exc_info.value.kind == ErrorKind.PRECONDITION
    mock_resolver.resolve.assert_not_called()


def test_missing_compose_file(app_config, node_dir, mock_git_client, mock_docker_client, mock_resolver):
    (node_dir / "docker-compose.yaml").unlink()
    pipeline = UpdatePipeline(app_config, mock_git_client, mock_docker_client, mock_resolver)

    with pytest.raises(PreconditionError):
        pipeline.execute(UpdateOptions())


def test_manifest_unknown_builds_from_source(pipeline, mock_docker_client):
    mock_docker_client.pull_images.return_value = "observer manifest unknown"
    mock_docker_client.build_images.return_value = "built"

    result = pipeline.execute(UpdateOptions())

    assert result.success is True
    assert result.built_from_source is True


def test_image_failure_leaves_stack_running(pipeline, mock_docker_client):
    mock_docker_client.pull_images.return_value = "observer manifest unknown"
    mock_docker_client.build_images.side_effect = CommandError(["docker", "compose", "build"], "error")

    with pytest.raises(UpdateError) as exc_info:
        pipeline.execute(UpdateOptions())

    assert exc_info.value.stage == UpdateStage.IMAGE_REFRESH
    mock_docker_client.stop_services.assert_not_called()
    mock_docker_client.start_services.assert_not_called()


def test_git_pull_failure(pipeline, mock_git_client, mock_docker_client):
    mock_git_client.pull.side_effect = CommandError(["git", "pull"], "fatal: unable to access: Connection timed out")

    with pytest.raises(UpdateError) as exc_info:
        pipeline.execute(UpdateOptions())

    assert exc_info.value.stage == UpdateStage.VC_PULL
    assert exc_info.value.kind == ErrorKind.TIMEOUT
    mock_docker_client.pull_images.assert_not_called()


def test_teardown_failure_attempts_bring_up(pipeline, mock_docker_client):
    mock_docker_client.stop_services.side_effect = CommandError(["docker", "compose", "down"], "error during connect")

    with pytest.raises(UpdateError) as exc_info:
        pipeline.execute(UpdateOptions())

    assert exc_info.value.stage == UpdateStage.TEARDOWN
    mock_docker_client.start_services.assert_called_once()
    assert "Started services in detached mode" in exc_info.value.steps


def test_bring_up_failure(pipeline, mock_docker_client):
    mock_docker_client.start_services.side_effect = CommandError(["docker", "compose", "up", "-d"], "")

    with pytest.raises(UpdateError) as exc_info:
        pipeline.execute(UpdateOptions())

    assert exc_info.value.stage == UpdateStage.BRING_UP
    assert "Stopped services and removed stack volumes" in exc_info.value.steps


def test_partial_failure_below_threshold(pipeline, mock_docker_client):
    mock_docker_client.get_service_states.return_value = [
        ServiceState(name="core", state="running"),
        ServiceState(name="envoy", state="running"),
        ServiceState(name="observer", state="running"),
        ServiceState(name="redis", state="exited"),
        ServiceState(name="clickhouse", state="exited"),
    ]

    result = pipeline.execute(UpdateOptions())

    assert result.success is False
    assert result.stage == UpdateStage.PARTIAL_FAILURE
    assert result.failed_stage == UpdateStage.VERIFY
    assert result.error_kind == ErrorKind.VERIFICATION_SHORTFALL
    assert "3/5" in result.message


def test_exactly_at_threshold_succeeds(pipeline, mock_docker_client):
    mock_docker_client.get_service_states.return_value = [
        ServiceState(name=f"svc{i}", state="running" if i < 4 else "exited") for i in range(5)
    ]

    result = pipeline.execute(UpdateOptions())

    assert result.success is True


@patch("gateway_node_cli.update_pipeline.time.sleep")
def test_waits_before_verifying(mock_sleep, app_config, mock_git_client, mock_docker_client, mock_resolver):
    config = app_config.model_copy(update={"verify_delay": 2.5})
    pipeline = UpdatePipeline(config, mock_git_client, mock_docker_client, mock_resolver)

    pipeline.execute(UpdateOptions())

    mock_sleep.assert_called_once_with(2.5)


# =============================================================================
# Failures After Teardown
# =============================================================================

@patch("subprocess.run")
@patch("docker.from_env")
def test_prune_losing_daemon_connection_still_brings_stack_up(
    mock_docker_from_env, mock_run, app_config, mock_git_client, mock_resolver
):
    mock_docker_from_env.return_value.containers.prune.side_effect = requests.exceptions.ConnectionError(
        "Connection aborted"
    )
    mock_run.return_value = subprocess.CompletedProcess(
        args=[], returncode=0, stdout='[{"Service": "core", "State": "running"}]'
    )
    docker_client = DockerClient(app_config)
    pipeline = UpdatePipeline(app_config, mock_git_client, docker_client, mock_resolver)

    result = pipeline.execute(UpdateOptions(perform_prune=True))

    assert result.success is True
    assert "Resource prune failed (generic); continuing" in result.steps
    assert "Started services in detached mode" in result.steps
    compose_commands = [call[0][0][6:] for call in mock_run.call_args_list]
    assert ["up", "-d"] in compose_commands


def test_unexpected_prune_error_brings_stack_up_and_is_reported(pipeline, mock_docker_client):
    mock_docker_client.prune_system.side_effect = RuntimeError("socket closed")

    with pytest.raises(UpdateError) as exc_info:
        pipeline.execute(UpdateOptions(perform_prune=True))

    error = exc_info.value
    assert error.stage == UpdateStage.PRUNE
    assert error.kind == ErrorKind.GENERIC
    assert "socket closed" in error.message
    mock_docker_client.start_services.assert_called_once()
    assert "Started services in detached mode" in error.steps


def test_unexpected_teardown_error_brings_stack_up(pipeline, mock_docker_client):
    mock_docker_client.stop_services.side_effect = OSError("broken pipe")

    with pytest.raises(UpdateError) as exc_info:
        pipeline.execute(UpdateOptions())

    assert exc_info.value.stage == UpdateStage.TEARDOWN
    assert exc_info.value.kind == ErrorKind.GENERIC
    mock_docker_client.start_services.assert_called_once()


def test_failed_recovery_keeps_original_error(pipeline, mock_docker_client):
    mock_docker_client.stop_services.side_effect = CommandError(["docker", "compose", "down"], "error during connect")
    mock_docker_client.start_services.side_effect = RuntimeError("daemon gone")

    with pytest.raises(UpdateError) as exc_info:
        pipeline.execute(UpdateOptions())

    assert exc_info.value.stage == UpdateStage.TEARDOWN
    assert "Failed to stop the node stack" in exc_info.value.message
    assert "Recovery bring-up also failed; the stack may be down" in exc_info.value.steps


def test_unexpected_verify_error_is_reported_at_verify(app_config, mock_git_client, mock_docker_client, mock_resolver):
    verifier = MagicMock()
    verifier.verify.side_effect = KeyError("State")
    pipeline = UpdatePipeline(app_config, mock_git_client, mock_docker_client, mock_resolver, verifier=verifier)

    with pytest.raises(UpdateError) as exc_info:
        pipeline.execute(UpdateOptions())

    assert exc_info.value.stage == UpdateStage.VERIFY
    assert exc_info.value.kind == ErrorKind.GENERIC
    assert exc_info.value.steps[-1].startswith("Update failed during verify")
    mock_docker_client.start_services.assert_called_once()
