"""Version control adapters."""

from persevere.vcs.base import FileChange, RepositorySnapshot, VersionControl
from persevere.vcs.github import GitHubVersionControl
from persevere.vcs.memory import InMemoryVersionControl

__all__ = [
    "FileChange",
    "GitHubVersionControl",
    "InMemoryVersionControl",
    "RepositorySnapshot",
    "VersionControl",
]
