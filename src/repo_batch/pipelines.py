"""
repo_batch.pipelines - External tool boundary for each batch pipeline

A pipeline knows how to recognise its target files, which command to run for
a job, which tools must be installed, what its state files are called, and
which artifacts to remove after a successful attempt. The queue, ledger,
executor and requeue code are shared and never look at tool specifics.
"""

from __future__ import annotations

import abc
import logging
import re
import shutil
import subprocess  # nosec: B404 - the pipelines wrap external build tools
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .log_header import HeaderGrammar
from .models import Job

logger = logging.getLogger("repo_batch.pipelines")

TOOL_CHECK_TIMEOUT_SEC = 10
DOCKER_RMI_TIMEOUT_SEC = 120

# Sub-directories never searched for targets.
EXCLUDED_DIR_NAMES = frozenset({"node_modules", ".git", "dist", "build"})


class EnvironmentCheckError(RuntimeError):
    """A required external tool is missing or unusable; the run must not start."""


@dataclass(frozen=True)
class PipelinePaths:
    queue_file: Path
    progress_file: Path
    log_dir: Path
    errors_file: Path


@dataclass
class Invocation:
    """One concrete command for one job, plus whatever cleanup needs later."""

    command: List[str]
    cwd: Path
    details: List[str] = field(default_factory=list)
    artifacts: Dict[str, str] = field(default_factory=dict)


class Pipeline(abc.ABC):
    """
    Tool-specific half of a batch. Subclasses must override
    ``matches_target``, ``check_environment`` and ``build_invocation``.
    """

    name: str = ""
    description: str = ""
    grammar: HeaderGrammar
    tool_label: str = ""
    log_suffix: str = ""
    log_kind: str = ""
    error_title: str = ""
    default_target_name: str = ""
    queue_file_name: str = ""
    progress_file_name: str = ""
    log_dir_name: str = ""
    errors_file_name: str = ""

    def paths(self, state_dir: Path) -> PipelinePaths:
        return PipelinePaths(
            queue_file=state_dir / self.queue_file_name,
            progress_file=state_dir / self.progress_file_name,
            log_dir=state_dir / self.log_dir_name,
            errors_file=state_dir / self.errors_file_name,
        )

    @abc.abstractmethod
    def matches_target(self, file_name: str) -> bool:
        """Whether a file with this name is a target of the pipeline."""

    @abc.abstractmethod
    def check_environment(self) -> List[str]:
        """
        Verify the required tools; return human-readable version lines.

        Raises EnvironmentCheckError when anything is missing.
        """

    @abc.abstractmethod
    def build_invocation(self, job: Job) -> Invocation:
        """Command, working directory and artifacts for one job."""

    def cleanup(self, invocation: Invocation) -> None:
        """Remove transient artifacts left by a successful attempt."""

    def log_path_for(self, job: Job, log_dir: Path, repos_dir: Optional[Path] = None) -> Path:
        """
        Per-job log path, keyed by identity.

        Any target other than exactly ``<repo>/<default file>`` gets its
        repository-relative path folded into the name, so two targets of one
        repository never share a log. Pass ``repos_dir`` when known; without
        it the repository root is the first path component equal to the
        identity.
        """
        stem = _safe_name(job.identity)
        relative = _relative_to_repo(job, repos_dir)
        if relative != self.default_target_name:
            stem = f"{stem}__{_safe_name(relative.replace('/', '_'))}"
        return log_dir / f"{stem}_{self.log_suffix}.log"


def _safe_name(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "-", value.strip())
    return cleaned or "job"


def _relative_to_repo(job: Job, repos_dir: Optional[Path] = None) -> str:
    target = Path(job.target_path)
    if repos_dir is not None:
        try:
            return target.relative_to(repos_dir / job.identity).as_posix()
        except ValueError:
            pass
    parts = target.parts
    if job.identity in parts[:-1]:
        idx = parts.index(job.identity)
        return "/".join(parts[idx + 1 :])
    # Not under a directory named after the identity: use the whole path.
    return "/".join(p for p in parts if p != target.anchor)


def _run_version_check(cmd: List[str]) -> str:
    try:
        process = subprocess.run(  # nosec: B603
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=TOOL_CHECK_TIMEOUT_SEC,
        )
    except FileNotFoundError as exc:
        raise EnvironmentCheckError(f"{cmd[0]} is not installed or not on PATH.") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or exc.stdout or "").strip()
        raise EnvironmentCheckError(
            f"'{' '.join(cmd)}' failed (RC {exc.returncode}): {detail}"
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise EnvironmentCheckError(f"'{' '.join(cmd)}' timed out.") from exc
    return process.stdout.strip()


class DockerBuildPipeline(Pipeline):
    name = "docker"
    description = "Build a Docker image for every Dockerfile, removing each image on success."
    grammar = HeaderGrammar(label="Build log", target_label="Dockerfile")
    tool_label = "Build"
    log_suffix = "build"
    log_kind = "build"
    error_title = "Docker Build Errors Report"
    default_target_name = "Dockerfile"
    queue_file_name = "docker_build_queue.txt"
    progress_file_name = "docker_build_progress.txt"
    log_dir_name = "build_logs"
    errors_file_name = "docker_build_errors.txt"

    def matches_target(self, file_name: str) -> bool:
        lowered = file_name.lower()
        return lowered == "dockerfile" or lowered.startswith("dockerfile.")

    def check_environment(self) -> List[str]:
        if shutil.which("docker") is None:
            raise EnvironmentCheckError("Docker is not installed. Please install Docker first.")
        version = _run_version_check(["docker", "--version"])
        try:
            _run_version_check(["docker", "info"])
        except EnvironmentCheckError as exc:
            raise EnvironmentCheckError(
                "Docker daemon is not running. Please start Docker first."
            ) from exc
        logger.info("Docker found: %s", version)
        return [version]

    @staticmethod
    def image_name_for(identity: str, run_tag: Optional[str] = None) -> str:
        base = re.sub(r"[^a-z0-9.-]", "-", identity.lower()) or "image"
        tag = run_tag or str(int(time.time()))
        return f"{base}:build-test-{tag}"

    def build_invocation(self, job: Job) -> Invocation:
        target = Path(job.target_path)
        image = self.image_name_for(job.identity)
        command = ["docker", "build"]
        if target.name != self.default_target_name:
            command.extend(["-f", target.name])
        command.extend(["-t", image, "."])
        return Invocation(
            command=command,
            cwd=target.parent,
            details=[f"Image name: {image}"],
            artifacts={"image": image},
        )

    def cleanup(self, invocation: Invocation) -> None:
        image = invocation.artifacts.get("image")
        if not image:
            return
        logger.info("Removing image %s to save space...", image)
        try:
            subprocess.run(  # nosec: B603
                ["docker", "rmi", image],
                capture_output=True,
                text=True,
                check=True,
                timeout=DOCKER_RMI_TIMEOUT_SEC,
            )
        except subprocess.CalledProcessError as exc:
            logger.warning("Failed to remove image %s: %s", image, (exc.stderr or "").strip())
        except subprocess.TimeoutExpired:
            logger.warning("Timed out removing image %s.", image)
        except FileNotFoundError:
            logger.warning("Docker command not found while removing image %s.", image)
        else:
            logger.info("Image %s removed.", image)


class NpmInstallPipeline(Pipeline):
    name = "npm"
    description = "Run npm install next to every package.json, removing node_modules on success."
    grammar = HeaderGrammar(label="NPM Install log", target_label="Package.json")
    tool_label = "NPM install"
    log_suffix = "npm_install"
    log_kind = "install"
    error_title = "NPM Install Errors Report"
    default_target_name = "package.json"
    queue_file_name = "npm_install_queue.txt"
    progress_file_name = "npm_install_progress.txt"
    log_dir_name = "npm_install_logs"
    errors_file_name = "npm_install_errors.txt"

    def matches_target(self, file_name: str) -> bool:
        return file_name == "package.json"

    def check_environment(self) -> List[str]:
        versions = []
        for tool in ("node", "npm"):
            if shutil.which(tool) is None:
                raise EnvironmentCheckError(
                    f"{tool} is not installed. Please install Node.js and npm first."
                )
            versions.append(f"{tool} {_run_version_check([tool, '--version'])}")
        logger.info("Found %s", ", ".join(versions))
        return versions

    def build_invocation(self, job: Job) -> Invocation:
        workdir = Path(job.target_path).parent
        node_modules = workdir / "node_modules"
        artifacts = {}
        # Only a tree this attempt created is removed afterwards.
        if not node_modules.exists():
            artifacts["node_modules"] = str(node_modules)
        return Invocation(
            command=["npm", "install"],
            cwd=workdir,
            details=[f"Working directory: {workdir}"],
            artifacts=artifacts,
        )

    def cleanup(self, invocation: Invocation) -> None:
        raw = invocation.artifacts.get("node_modules")
        if not raw:
            return
        tree = Path(raw)
        if not tree.is_dir():
            return
        try:
            shutil.rmtree(tree)
        except OSError as exc:
            logger.warning("Failed to remove %s: %s", tree, exc)
        else:
            logger.info("Removed %s to save space.", tree)


PIPELINES: Dict[str, Pipeline] = {
    DockerBuildPipeline.name: DockerBuildPipeline(),
    NpmInstallPipeline.name: NpmInstallPipeline(),
}


def get_pipeline(name: str) -> Pipeline:
    try:
        return PIPELINES[name]
    except KeyError:
        raise ValueError(
            f"Unknown pipeline {name!r}; expected one of {', '.join(sorted(PIPELINES))}."
        ) from None


def log_dir_names() -> frozenset[str]:
    return frozenset(p.log_dir_name for p in PIPELINES.values())
