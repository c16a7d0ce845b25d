from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from repo_batch import pipelines
from repo_batch.models import Job
from repo_batch.pipelines import (
    DockerBuildPipeline,
    EnvironmentCheckError,
    NpmInstallPipeline,
    Pipeline,
    get_pipeline,
)


def test_state_file_names_per_pipeline(tmp_path) -> None:
    docker = get_pipeline("docker").paths(tmp_path)
    assert docker.queue_file == tmp_path / "docker_build_queue.txt"
    assert docker.progress_file == tmp_path / "docker_build_progress.txt"
    assert docker.log_dir == tmp_path / "build_logs"
    assert docker.errors_file == tmp_path / "docker_build_errors.txt"

    npm = get_pipeline("npm").paths(tmp_path)
    assert npm.queue_file == tmp_path / "npm_install_queue.txt"
    assert npm.progress_file == tmp_path / "npm_install_progress.txt"
    assert npm.log_dir == tmp_path / "npm_install_logs"
    assert npm.errors_file == tmp_path / "npm_install_errors.txt"


def test_unknown_pipeline_raises() -> None:
    with pytest.raises(ValueError):
        get_pipeline("maven")


def test_image_name_is_sanitized() -> None:
    assert (
        DockerBuildPipeline.image_name_for("My_Service.API", "1700000000")
        == "my-service.api:build-test-1700000000"
    )


def test_docker_invocation_uses_file_flag_for_variants(tmp_path) -> None:
    pipeline = DockerBuildPipeline()
    default = pipeline.build_invocation(Job("svc", str(tmp_path / "svc" / "Dockerfile")))
    assert default.command[:2] == ["docker", "build"]
    assert "-f" not in default.command
    assert default.command[-1] == "."
    assert default.cwd == tmp_path / "svc"
    assert default.details[0].startswith("Image name: svc:build-test-")

    variant = pipeline.build_invocation(
        Job("svc", str(tmp_path / "svc" / "docker" / "Dockerfile.prod"))
    )
    assert variant.command[2:4] == ["-f", "Dockerfile.prod"]
    assert variant.cwd == tmp_path / "svc" / "docker"


def test_log_path_is_keyed_by_identity(tmp_path) -> None:
    pipeline = DockerBuildPipeline()
    root = pipeline.log_path_for(Job("svc", "repos/svc/Dockerfile"), tmp_path)
    nested = pipeline.log_path_for(Job("svc", "repos/svc/api/Dockerfile"), tmp_path)

    assert root == tmp_path / "svc_build.log"
    assert nested == tmp_path / "svc__api_Dockerfile_build.log"

    npm = NpmInstallPipeline().log_path_for(Job("web", "repos/web/package.json"), tmp_path)
    assert npm == tmp_path / "web_npm_install.log"


def test_npm_cleanup_only_removes_tree_created_by_the_attempt(tmp_path) -> None:
    pipeline = NpmInstallPipeline()
    repo = tmp_path / "web"
    repo.mkdir()
    (repo / "package.json").write_text("{}")

    invocation = pipeline.build_invocation(Job("web", str(repo / "package.json")))
    assert invocation.command == ["npm", "install"]
    (repo / "node_modules" / "dep").mkdir(parents=True)
    pipeline.cleanup(invocation)
    assert not (repo / "node_modules").exists()

    # A pre-existing tree is left alone.
    (repo / "node_modules").mkdir()
    invocation = pipeline.build_invocation(Job("web", str(repo / "package.json")))
    pipeline.cleanup(invocation)
    assert (repo / "node_modules").is_dir()


def test_docker_environment_check_requires_docker(monkeypatch) -> None:
    monkeypatch.setattr(pipelines.shutil, "which", lambda name: None)
    with pytest.raises(EnvironmentCheckError, match="Docker is not installed"):
        DockerBuildPipeline().check_environment()


def test_docker_environment_check_requires_running_daemon(monkeypatch) -> None:
    monkeypatch.setattr(pipelines.shutil, "which", lambda name: f"/usr/bin/{name}")

    def fake_run(cmd, **kwargs):
        if cmd[1] == "info":
            raise subprocess.CalledProcessError(1, cmd, output="", stderr="daemon down")
        return subprocess.CompletedProcess(cmd, 0, stdout="Docker version 24.0.0\n", stderr="")

    monkeypatch.setattr(pipelines.subprocess, "run", fake_run)
    with pytest.raises(EnvironmentCheckError, match="daemon is not running"):
        DockerBuildPipeline().check_environment()


def test_npm_environment_check_reports_versions(monkeypatch) -> None:
    monkeypatch.setattr(pipelines.shutil, "which", lambda name: f"/usr/bin/{name}")
    versions = {"node": "v20.11.0\n", "npm": "10.2.4\n"}
    monkeypatch.setattr(
        pipelines.subprocess,
        "run",
        lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 0, stdout=versions[cmd[0]]),
    )
    assert NpmInstallPipeline().check_environment() == ["node v20.11.0", "npm 10.2.4"]


def test_docker_cleanup_failure_is_only_a_warning(monkeypatch, caplog) -> None:
    def failing_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, stderr="image is in use")

    monkeypatch.setattr(pipelines.subprocess, "run", failing_run)
    pipeline = DockerBuildPipeline()
    pipeline.cleanup(pipeline.build_invocation(Job("svc", "repos/svc/Dockerfile")))
    assert "Failed to remove image" in caplog.text


def test_log_path_separates_nested_directory_named_like_the_repo(tmp_path) -> None:
    pipeline = DockerBuildPipeline()
    root = pipeline.log_path_for(Job("api", "repos/api/Dockerfile"), tmp_path)
    nested = pipeline.log_path_for(Job("api", "repos/api/api/Dockerfile"), tmp_path)

    assert root == tmp_path / "api_build.log"
    assert nested == tmp_path / "api__api_Dockerfile_build.log"


def test_log_path_uses_repos_dir_when_given(tmp_path) -> None:
    pipeline = DockerBuildPipeline()
    repos = Path("/srv/api/repos")
    root = pipeline.log_path_for(Job("api", "/srv/api/repos/api/Dockerfile"), tmp_path, repos)
    nested = pipeline.log_path_for(
        Job("api", "/srv/api/repos/api/api/Dockerfile"), tmp_path, repos
    )

    assert root == tmp_path / "api_build.log"
    assert nested == tmp_path / "api__api_Dockerfile_build.log"


def test_pipeline_base_requires_tool_specific_overrides() -> None:
    with pytest.raises(TypeError):
        Pipeline()  # type: ignore[abstract]
