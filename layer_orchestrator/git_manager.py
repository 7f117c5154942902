"""
Repository materializer.

Ensures a layer's source repository is present under the workspace at
the requested branch. Calling ensure_repository twice for the same URL
and branch is safe: an existing checkout is fetched and hard-reset
instead of re-cloned.

``file://`` URLs point at a local checkout that is used in place.
"""

import logging
import re
from pathlib import Path
from typing import Optional

import layer_orchestrator.constants as CONSTANTS
from layer_orchestrator.command_runner import CommandRunner
from layer_orchestrator.core.exceptions import RemoteOperationFailed

logger = logging.getLogger(__name__)

_REPO_NAME_PATTERN = re.compile(r"/([^/]+?)(\.git)?/?$")


def extract_repo_name(repo_url: str) -> str:
    """
    Derive a directory name from a repository URL.

    Example:
        >>> extract_repo_name("https://github.com/near/mpc.git")
        'mpc'
    """
    match = _REPO_NAME_PATTERN.search(repo_url)
    if not match:
        raise ValueError(f"Cannot derive repository name from URL: {repo_url}")
    return match.group(1)


class GitManager:
    """
    Clones or updates repositories under a workspace root.

    Args:
        workspace_root: Directory that holds cloned repositories
        runner: CommandRunner for git and npm
    """

    def __init__(self, workspace_root: str | Path, runner: CommandRunner):
        self.workspace_root = Path(workspace_root)
        self.runner = runner

    def local_path(self, repo_url: str, repo_name: Optional[str] = None) -> Path:
        """Where ensure_repository puts (or found) a repository, without touching it."""
        if repo_url.startswith("file://"):
            return Path(repo_url[len("file://"):])
        return self.workspace_root / (repo_name or extract_repo_name(repo_url))

    def ensure_repository(
        self,
        repo_url: str,
        branch: str = CONSTANTS.DEFAULT_BRANCH,
        repo_name: Optional[str] = None
    ) -> Path:
        """
        Make sure a repository is available locally at ``branch``.

        Args:
            repo_url: Git URL or file:// path
            branch: Branch to check out
            repo_name: Directory name override (default: derived from URL)

        Returns:
            Local path of the repository

        Raises:
            RemoteOperationFailed: If clone/update fails or the result is not a git repository
        """
        if repo_url.startswith("file://"):
            local_path = Path(repo_url[len("file://"):])
            logger.info(f"Using local repository: {local_path}")
            if not local_path.exists():
                raise RemoteOperationFailed(
                    "Locate local repository", f"{local_path} does not exist"
                )
            self._verify_repository(local_path)
            logger.info(f"✓ Local repository ready: {local_path}")
            return local_path

        name = repo_name or extract_repo_name(repo_url)
        local_path = self.local_path(repo_url, name)
        logger.info(f"Ensuring repository: {name} ({repo_url})")

        if local_path.exists():
            self._update(local_path, branch)
        else:
            self._clone(repo_url, local_path, branch)

        self._verify_repository(local_path)
        logger.info(f"✓ Repository ready: {name}")
        return local_path

    def _git(self, args, cwd: Optional[Path], operation: str):
        outcome = self.runner.run("git", args, cwd=cwd, timeout=CONSTANTS.GIT_TIMEOUT)
        if not outcome.success:
            raise RemoteOperationFailed(operation, outcome.error_text, exit_code=outcome.exit_code)
        return outcome

    def _clone(self, repo_url: str, local_path: Path, branch: str):
        logger.info(f"Cloning repository: {repo_url} -> {local_path}")
        local_path.parent.mkdir(parents=True, exist_ok=True)
        self._git(
            ["clone", "--branch", branch, repo_url, str(local_path)],
            cwd=None,
            operation=f"git clone {repo_url}",
        )

    def _update(self, local_path: Path, branch: str):
        logger.info(f"Updating repository at {local_path}")
        self._git(["fetch", "origin"], cwd=local_path, operation="git fetch")
        self._git(["checkout", branch], cwd=local_path, operation=f"git checkout {branch}")
        self._git(
            ["reset", "--hard", f"origin/{branch}"],
            cwd=local_path,
            operation=f"git reset to origin/{branch}",
        )

    def _verify_repository(self, local_path: Path):
        if not (local_path / ".git").exists():
            raise RemoteOperationFailed(
                "Verify repository", f"Not a valid git repository: {local_path}"
            )
        if (local_path / "package.json").exists():
            self.install_node_dependencies(local_path)

    def install_node_dependencies(self, project_path: Path, force: bool = False) -> bool:
        """
        Run ``npm install`` when node_modules is missing.

        npm failures are logged and do not fail the caller.

        Returns:
            True if dependencies are present afterwards
        """
        if (project_path / "node_modules").exists() and not force:
            logger.debug(f"node_modules already present in {project_path}")
            return True

        logger.info(f"Installing npm dependencies in {project_path}...")
        outcome = self.runner.run(
            "npm", ["install"],
            cwd=project_path,
            timeout=CONSTANTS.NPM_INSTALL_TIMEOUT,
            stream_output=True,
        )
        if not outcome.success:
            logger.warning(f"npm install failed in {project_path}, continuing: {outcome.error_text[:200]}")
            return False
        logger.info("✓ npm dependencies installed")
        return True
