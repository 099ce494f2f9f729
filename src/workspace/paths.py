"""Path sandboxing for virtual workspace paths."""

import os
import re
from pathlib import Path
from typing import Union

from utils.errors import PathEscapeError, PathTraversalError


_REPEATED_SLASHES = re.compile(r"/{2,}")


class PathSandbox:
    """
    Maps virtual workspace paths ("/notes/a.md") onto a host root directory.

    Every resolved host path is checked to stay under the root after symlink
    resolution, so a link inside the workspace cannot point the caller at
    arbitrary host files.
    """

    def __init__(self, root_dir: Union[str, Path], label: str = "workspace filesystem"):
        """
        Initialize sandbox.

        Args:
            root_dir: Host directory acting as the workspace "/"
            label: Human readable name used in error messages
        """
        self.root_dir = os.path.realpath(os.fspath(root_dir))
        self.label = label

    @staticmethod
    def normalize(raw_path: str) -> str:
        """
        Normalize a raw tool argument into a workspace path.

        Args:
            raw_path: Path as supplied by the caller (leading "/" optional)

        Returns:
            Workspace path starting with "/"

        Raises:
            PathTraversalError: Path contains ".." or starts with "~"
        """
        candidate = (raw_path or "").replace("\\", "/")
        if candidate.startswith("~"):
            raise PathTraversalError("Path traversal not allowed")

        with_slash = candidate if candidate.startswith("/") else f"/{candidate}"
        if ".." in with_slash or with_slash.startswith("~"):
            raise PathTraversalError("Path traversal not allowed")

        return _REPEATED_SLASHES.sub("/", with_slash)

    def resolve_to_host(self, workspace_path: str) -> str:
        """
        Resolve a workspace path to an absolute host path inside the root.

        Args:
            workspace_path: Raw or normalized workspace path

        Returns:
            Absolute host path

        Raises:
            PathTraversalError: Path fails normalization
            PathEscapeError: Resolved path is outside the sandbox root
        """
        normalized = self.normalize(workspace_path)
        relative = normalized.lstrip("/")
        full = os.path.realpath(os.path.join(self.root_dir, relative))

        relative_to_root = os.path.relpath(full, self.root_dir)
        if (
            relative_to_root == os.pardir
            or relative_to_root.startswith(os.pardir + os.sep)
            or os.path.isabs(relative_to_root)
        ):
            raise PathEscapeError(f"Path outside {self.label} root")
        return full

    def to_workspace_path(self, host_path: Union[str, Path]) -> str:
        """Map a host path under the root back to its workspace path."""
        relative = os.path.relpath(os.fspath(host_path), self.root_dir)
        if relative == os.curdir:
            return "/"
        return "/" + relative.replace(os.sep, "/")
