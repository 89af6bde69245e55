"""Git operations for DockUp Agent"""

import logging
from pathlib import Path
from typing import Tuple, Union

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from ..constants import DeployDefaults
from ..error_handling import RemoteLookupError

logger = logging.getLogger(__name__)


def get_remote_url(repo_path: Union[str, Path], remote: str = DeployDefaults.REMOTE_NAME) -> str:
    """Read ``remote.<remote>.url`` from the checkout's git configuration.

    Args:
        repo_path: Path of the application checkout
        remote: Remote name, ``origin`` by default

    Returns:
        The configured URL, stripped of surrounding whitespace

    Raises:
        RemoteLookupError: If the path is not a git checkout or the remote
            has no URL
    """
    try:
        repo = Repo(repo_path)
        url = repo.git.config("--get", f"remote.{remote}.url")
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise RemoteLookupError(f"not a git repository: {repo_path} ({e})") from e
    except GitCommandError as e:
        raise RemoteLookupError(f"failed to get remote URL for {repo_path}: {e}") from e

    url = url.strip()
    if not url:
        raise RemoteLookupError(f"remote '{remote}' has no URL in {repo_path}")
    return url


def git_set_remote_url(url: str, remote: str = DeployDefaults.REMOTE_NAME) -> Tuple[str, ...]:
    return ("git", "remote", "set-url", remote, url)


def git_fetch(branch: str, remote: str = DeployDefaults.REMOTE_NAME) -> Tuple[str, ...]:
    return ("git", "fetch", remote, branch)


def git_reset_hard(branch: str, remote: str = DeployDefaults.REMOTE_NAME) -> Tuple[str, ...]:
    return ("git", "reset", "--hard", f"{remote}/{branch}")
