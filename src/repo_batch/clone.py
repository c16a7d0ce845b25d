from __future__ import annotations

import logging
import shutil
import subprocess  # nosec: B404 - git clone of enumerated repositories
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

import httpx

from .config import DEFAULT_CLONE_TIMEOUT_SECONDS, GitHubConfig

logger = logging.getLogger("repo_batch.clone")

GITHUB_REQUEST_TIMEOUT_SEC = 30.0
GITHUB_USER_AGENT = "repo-batch"


class CloneError(RuntimeError):
    pass


@dataclass
class CloneSummary:
    total: int = 0
    cloned: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def check_git() -> str:
    if shutil.which("git") is None:
        raise CloneError("git is required but not installed. Please install git.")
    return "git"


def fetch_org_repositories(
    config: GitHubConfig, *, client: Optional[httpx.Client] = None
) -> List[str]:
    """
    Return the names of every repository in the organisation.

    Pages through ``/orgs/<org>/repos`` until a page comes back shorter than
    ``per_page``. API error payloads (``{"message": ...}``) raise CloneError.
    """
    headers = {
        "Accept": "application/vnd.github+json",
        "User-Agent": GITHUB_USER_AGENT,
    }
    if config.token:
        headers["Authorization"] = f"Bearer {config.token}"

    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=httpx.Timeout(GITHUB_REQUEST_TIMEOUT_SEC))

    url = f"{config.api_url}/orgs/{config.org}/repos"
    names: List[str] = []
    page = 1
    try:
        while True:
            logger.info("Fetching page %d of %s repositories...", page, config.org)
            try:
                response = client.get(
                    url,
                    params={"page": page, "per_page": config.per_page, "type": "all"},
                    headers=headers,
                )
            except httpx.TimeoutException as exc:
                raise CloneError(f"GitHub API timed out on page {page}.") from exc
            except httpx.HTTPError as exc:
                raise CloneError(f"Failed to fetch page {page} from GitHub API: {exc}") from exc

            try:
                payload = response.json()
            except ValueError as exc:
                raise CloneError(
                    f"GitHub API returned non-JSON content (status {response.status_code})."
                ) from exc

            if isinstance(payload, dict):
                message = payload.get("message") or (
                    f"unexpected payload (status {response.status_code})"
                )
                raise CloneError(f"GitHub API error: {message}")
            if response.status_code >= 400:
                raise CloneError(f"GitHub API returned status {response.status_code}.")

            page_names = [
                item["name"] for item in payload if isinstance(item, dict) and item.get("name")
            ]
            names.extend(page_names)
            logger.info("Found %d repositories on page %d", len(page_names), page)
            if len(payload) < config.per_page:
                break
            page += 1
    finally:
        if owns_client:
            client.close()
    return names


def clone_repository(
    org: str,
    name: str,
    repos_dir: Path,
    *,
    timeout_seconds: int = DEFAULT_CLONE_TIMEOUT_SECONDS,
) -> str:
    """
    Clone one repository; return ``"cloned"``, ``"skipped"`` or ``"failed"``.

    An existing directory is never touched.
    """
    target_dir = repos_dir / name
    if target_dir.exists():
        logger.warning("Repository %s already exists in %s. Skipping...", name, target_dir)
        return "skipped"

    url = f"https://github.com/{org}/{name}.git"
    logger.info("Cloning repository: %s", name)
    try:
        subprocess.run(  # nosec: B603
            ["git", "clone", url, str(target_dir)],
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except subprocess.CalledProcessError as exc:
        logger.error("Failed to clone %s: %s", name, (exc.stderr or "").strip())
        return "failed"
    except subprocess.TimeoutExpired:
        logger.error("Cloning %s timed out after %ss.", name, timeout_seconds)
        shutil.rmtree(target_dir, ignore_errors=True)
        return "failed"
    logger.info("Successfully cloned %s", name)
    return "cloned"


def clone_all(org: str, names: Iterable[str], repos_dir: Path) -> CloneSummary:
    repos_dir.mkdir(parents=True, exist_ok=True)
    summary = CloneSummary()
    for name in names:
        summary.total += 1
        status = clone_repository(org, name, repos_dir)
        getattr(summary, status).append(name)
    return summary
