"""Git operations for DockUp Agent"""

from .operations import get_remote_url, git_fetch, git_reset_hard, git_set_remote_url

__all__ = [
    "get_remote_url",
    "git_set_remote_url",
    "git_fetch",
    "git_reset_hard",
]
