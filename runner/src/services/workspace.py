"""
Run-scoped working trees.
"""

import logging
import os
import shutil
import subprocess
import tempfile
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

class WorkspaceError(Exception):
    """Raised when a working tree could not be prepared."""
    pass

def clone_repository(clone_url: str, commit_sha: str, root: Optional[str] = None) -> str:
    """
    Clone repository to a fresh temporary directory.
    Returns path to cloned repo.
    """
    temp_dir = tempfile.mkdtemp(prefix="plangate_", dir=root or None)
    repo_path = os.path.join(temp_dir, "repo")

    try:
        subprocess.run(
            ["git", "clone", "--depth", "1", clone_url, repo_path],
            check=True,
            capture_output=True,
            timeout=120
        )

        # Checkout specific commit if provided
        if commit_sha:
            subprocess.run(
                ["git", "fetch", "--depth", "1", "origin", commit_sha],
                cwd=repo_path,
                capture_output=True,
                timeout=60
            )
            subprocess.run(
                ["git", "checkout", commit_sha],
                cwd=repo_path,
                check=True,
                capture_output=True,
                timeout=30
            )

        return repo_path
    except subprocess.TimeoutExpired:
        cleanup_workspace(repo_path)
        raise WorkspaceError("Repository clone timed out")
    except subprocess.CalledProcessError as e:
        cleanup_workspace(repo_path)
        raise WorkspaceError(f"Failed to clone repository: {e.stderr.decode()}")

def copy_tree(source_path: str, root: Optional[str] = None) -> str:
    """Copy a local configuration tree so the run can modify it freely."""
    temp_dir = tempfile.mkdtemp(prefix="plangate_", dir=root or None)
    repo_path = os.path.join(temp_dir, "repo")
    try:
        shutil.copytree(source_path, repo_path, ignore=shutil.ignore_patterns(".terraform"))
    except OSError as e:
        cleanup_workspace(repo_path)
        raise WorkspaceError(f"Failed to copy {source_path}: {e}")
    return repo_path

def prepare_workspace(repo_info: Dict[str, Any], root: Optional[str] = None) -> str:
    """Give the run its own copy of the configuration tree."""
    if repo_info.get("local_path"):
        return copy_tree(repo_info["local_path"], root)
    if repo_info.get("clone_url"):
        return clone_repository(repo_info["clone_url"], repo_info.get("commit_sha", ""), root)
    raise WorkspaceError("Job has neither a clone URL nor a local path")

def cleanup_workspace(repo_path: str):
    """Remove a run's working tree and its temp parent."""
    if repo_path and os.path.exists(os.path.dirname(repo_path)):
        shutil.rmtree(os.path.dirname(repo_path), ignore_errors=True)
        logger.debug(f"Removed workspace {repo_path}")
