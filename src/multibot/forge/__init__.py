"""Git forge access.

This package provides the remote object client the engine talks to:
    - ForgeClient: Protocol of logical forge operations
    - GitHubClient: httpx-based GitHub REST implementation
    - Response shapes for file content, tree listings and pull requests
"""

from __future__ import annotations

from .client import (
    FileContent,
    ForgeClient,
    GitHubClient,
    PullRequestRef,
    TreeListing,
    error_from_response,
)

__all__ = [
    "FileContent",
    "ForgeClient",
    "GitHubClient",
    "PullRequestRef",
    "TreeListing",
    "error_from_response",
]
