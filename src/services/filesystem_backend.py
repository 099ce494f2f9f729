"""Local filesystem backend confined to a sandboxed workspace root."""

import asyncio
import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from storage.models import FileInfo, FileStat, ReadVersion
from utils.errors import (
    EditError,
    FileTooLargeError,
    NotFoundError,
    PathEscapeError,
    PathTraversalError,
    ValidationError,
)
from workspace.paths import PathSandbox


logger = logging.getLogger("workspace-runtime.filesystem")


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class LocalFilesystemBackend:
    """
    Performs read/write/stat/glob against the host filesystem.

    All arguments are workspace paths; they are resolved through the
    PathSandbox so no operation reaches outside the root directory. Blocking
    calls run in a worker thread so the event loop stays responsive.
    """

    def __init__(self, sandbox: PathSandbox, max_file_size_mb: float = 25):
        """
        Initialize filesystem backend.

        Args:
            sandbox: Sandbox for the workspace filesystem root
            max_file_size_mb: Largest file read() will load
        """
        self.sandbox = sandbox
        self.max_file_size_bytes = int(max_file_size_mb * 1024 * 1024)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(self, path: str, offset: Optional[int] = None, limit: Optional[int] = None) -> str:
        """
        Read a text file, optionally a window of lines.

        Args:
            path: Workspace file path
            offset: 0-based first line to return
            limit: Maximum number of lines to return

        Raises:
            NotFoundError: File does not exist
            FileTooLargeError: File exceeds max_file_size_mb
        """
        return await asyncio.to_thread(self._read_sync, path, offset, limit)

    def _read_sync(self, path: str, offset: Optional[int], limit: Optional[int]) -> str:
        host = self.sandbox.resolve_to_host(path)
        if not os.path.exists(host):
            raise NotFoundError(f"File not found: {self.sandbox.normalize(path)}")
        if os.path.isdir(host):
            raise ValidationError(f"Path is a directory: {self.sandbox.normalize(path)}")

        size = os.path.getsize(host)
        if size > self.max_file_size_bytes:
            raise FileTooLargeError(
                f"File {self.sandbox.normalize(path)} is {size} bytes; "
                f"limit is {self.max_file_size_bytes} bytes"
            )

        with open(host, "r", encoding="utf-8", errors="replace", newline="") as handle:
            content = handle.read()

        if offset is None and limit is None:
            return content

        lines = content.splitlines(keepends=True)
        start = offset or 0
        end = start + limit if limit is not None else len(lines)
        return "".join(lines[start:end])

    async def stat(self, path: str) -> FileStat:
        """Return metadata for a path; raises NotFoundError if missing."""
        return await asyncio.to_thread(self._stat_sync, path)

    def _stat_sync(self, path: str) -> FileStat:
        normalized = self.sandbox.normalize(path)
        host = self.sandbox.resolve_to_host(normalized)
        try:
            st = os.stat(host)
        except FileNotFoundError:
            raise NotFoundError(f"Path not found: {normalized}")

        return FileStat(
            path=normalized,
            is_dir=os.path.isdir(host),
            size=st.st_size,
            mtime_ns=st.st_mtime_ns,
            modified_at=_iso(st.st_mtime),
            created_at=_iso(getattr(st, "st_birthtime", st.st_ctime)),
        )

    async def version(self, path: str) -> Optional[ReadVersion]:
        """Return the ReadVersion of a path, or None if it does not exist."""
        try:
            file_stat = await self.stat(path)
        except NotFoundError:
            return None
        return file_stat.to_read_version()

    async def exists(self, path: str) -> bool:
        return await self.version(path) is not None

    async def ls_info(self, path: str = "/") -> List[FileInfo]:
        """List the direct children of a workspace directory."""
        return await asyncio.to_thread(self._ls_sync, path)

    def _ls_sync(self, path: str) -> List[FileInfo]:
        host = self.sandbox.resolve_to_host(path)
        if not os.path.isdir(host):
            raise NotFoundError(f"Directory not found: {self.sandbox.normalize(path)}")

        entries = []
        with os.scandir(host) as it:
            for entry in sorted(it, key=lambda e: e.name):
                info = self._file_info(entry.path)
                if info is not None:
                    entries.append(info)
        return entries

    async def glob_info(self, pattern: str, path: str = "/") -> List[FileInfo]:
        """
        Find entries under ``path`` matching a glob pattern.

        Args:
            pattern: Glob such as "**/*" or "**/*.md"
            path: Workspace directory to search under

        Returns:
            Matching entries (files and directories), sorted by path
        """
        return await asyncio.to_thread(self._glob_sync, pattern, path)

    def _glob_sync(self, pattern: str, path: str) -> List[FileInfo]:
        base = self.sandbox.resolve_to_host(path or "/")
        if not os.path.isdir(base):
            return []

        pattern = (pattern or "**/*").lstrip("/")
        if ".." in pattern:
            raise ValidationError("Glob pattern must not contain '..'")

        matches = []
        for candidate in sorted(Path(base).glob(pattern)):
            info = self._file_info(str(candidate))
            if info is not None:
                matches.append(info)
        return matches

    async def grep_raw(
        self,
        pattern: str,
        path: str = "/",
        glob: Optional[str] = None,
        max_matches: int = 500
    ) -> List[Dict[str, Any]]:
        """
        Search file contents for a regular expression.

        Returns:
            List of {path, line, text} with 1-indexed line numbers
        """
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise ValidationError(f"Invalid regex pattern: {e}") from e

        files = [f for f in await self.glob_info(glob or "**/*", path) if not f.is_dir]
        return await asyncio.to_thread(self._grep_sync, regex, files, max_matches)

    def _grep_sync(self, regex: "re.Pattern[str]", files: List[FileInfo], max_matches: int) -> List[Dict[str, Any]]:
        matches: List[Dict[str, Any]] = []
        for info in files:
            if info.size is not None and info.size > self.max_file_size_bytes:
                continue
            host = self.sandbox.resolve_to_host(info.path)
            with open(host, "r", encoding="utf-8", errors="replace") as handle:
                for line_no, line in enumerate(handle, start=1):
                    if regex.search(line):
                        matches.append({"path": info.path, "line": line_no, "text": line.rstrip("\r\n")})
                        if len(matches) >= max_matches:
                            return matches
        return matches

    async def list_tree(self, path: str = "/", max_depth: int = 4) -> List[FileInfo]:
        """List entries recursively; directory paths carry a trailing "/"."""
        return await asyncio.to_thread(self._tree_sync, path, max_depth)

    def _tree_sync(self, path: str, max_depth: int) -> List[FileInfo]:
        root = self.sandbox.resolve_to_host(path)
        if not os.path.isdir(root):
            raise NotFoundError(f"Directory not found: {self.sandbox.normalize(path)}")

        results: List[FileInfo] = []

        def walk(directory: str, depth: int) -> None:
            if depth > max_depth:
                return
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
            for entry in entries:
                info = self._file_info(entry.path)
                if info is None:
                    continue
                if info.is_dir:
                    results.append(FileInfo(path=info.path.rstrip("/") + "/", is_dir=True))
                    walk(entry.path, depth + 1)
                else:
                    results.append(info)

        walk(root, 0)
        return results

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def write(self, path: str, content: str, create_parent_dirs: bool = True) -> None:
        """Write a text file, replacing any existing content."""
        await asyncio.to_thread(self._write_sync, path, content, create_parent_dirs)

    def _write_sync(self, path: str, content: str, create_parent_dirs: bool) -> None:
        host = self.sandbox.resolve_to_host(path)
        if os.path.isdir(host):
            raise ValidationError(f"Path is a directory: {self.sandbox.normalize(path)}")
        parent = os.path.dirname(host)
        if create_parent_dirs:
            os.makedirs(parent, exist_ok=True)
        elif not os.path.isdir(parent):
            raise NotFoundError(f"Parent directory does not exist for {self.sandbox.normalize(path)}")

        with open(host, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        logger.debug(f"Wrote {len(content)} chars to {self.sandbox.normalize(path)}")

    async def edit(self, path: str, old_string: str, new_string: str, replace_all: bool = False) -> Dict[str, int]:
        """
        Replace ``old_string`` with ``new_string`` in a file.

        Raises:
            EditError: old_string missing, or ambiguous without replace_all
        """
        return await asyncio.to_thread(self._edit_sync, path, old_string, new_string, replace_all)

    def _edit_sync(self, path: str, old_string: str, new_string: str, replace_all: bool) -> Dict[str, int]:
        normalized = self.sandbox.normalize(path)
        if not old_string:
            raise EditError("old_string must not be empty")

        content = self._read_sync(normalized, None, None)
        occurrences = content.count(old_string)
        if occurrences == 0:
            raise EditError(f"String not found in {normalized}")
        if occurrences > 1 and not replace_all:
            raise EditError(
                f"String occurs {occurrences} times in {normalized}; "
                "pass replace_all=true or include more context"
            )

        if replace_all:
            updated = content.replace(old_string, new_string)
        else:
            updated = content.replace(old_string, new_string, 1)
        self._write_sync(normalized, updated, create_parent_dirs=False)
        return {"occurrences": occurrences if replace_all else 1}

    async def mkdir(self, path: str, recursive: bool = True) -> None:
        await asyncio.to_thread(self._mkdir_sync, path, recursive)

    def _mkdir_sync(self, path: str, recursive: bool) -> None:
        host = self.sandbox.resolve_to_host(path)
        try:
            if recursive:
                os.makedirs(host, exist_ok=True)
            else:
                os.mkdir(host)
        except FileNotFoundError:
            raise NotFoundError(f"Parent directory does not exist for {self.sandbox.normalize(path)}")
        except FileExistsError:
            raise ValidationError(f"Path already exists: {self.sandbox.normalize(path)}")

    async def delete(self, path: str, recursive: bool = False) -> None:
        """Delete a file, or a directory (non-empty ones need recursive)."""
        await asyncio.to_thread(self._delete_sync, path, recursive)

    def _delete_sync(self, path: str, recursive: bool) -> None:
        normalized = self.sandbox.normalize(path)
        if normalized == "/":
            raise ValidationError("Cannot delete the workspace root")

        host = self.sandbox.resolve_to_host(normalized)
        if not os.path.lexists(host):
            raise NotFoundError(f"Path not found: {normalized}")

        if os.path.isdir(host) and not os.path.islink(host):
            if recursive:
                shutil.rmtree(host)
            else:
                try:
                    os.rmdir(host)
                except OSError:
                    raise ValidationError(f"Directory not empty: {normalized}; pass recursive=true")
        else:
            os.unlink(host)
        logger.debug(f"Deleted {normalized}")

    async def rmdir(self, path: str, recursive: bool = False) -> bool:
        """Remove a directory. A missing path is not an error; returns whether it existed."""
        return await asyncio.to_thread(self._rmdir_sync, path, recursive)

    def _rmdir_sync(self, path: str, recursive: bool) -> bool:
        normalized = self.sandbox.normalize(path)
        host = self.sandbox.resolve_to_host(normalized)
        if not os.path.lexists(host):
            return False
        if not os.path.isdir(host) or os.path.islink(host):
            raise ValidationError(f"Not a directory: {normalized}")
        self._delete_sync(normalized, recursive)
        return True

    # ------------------------------------------------------------------

    def _file_info(self, host_path: str) -> Optional[FileInfo]:
        """Build a FileInfo, skipping entries (e.g. symlinks) that resolve outside the root."""
        workspace_path = self.sandbox.to_workspace_path(host_path)
        try:
            self.sandbox.resolve_to_host(workspace_path)
        except (PathEscapeError, PathTraversalError):
            logger.debug(f"Skipping entry outside sandbox: {workspace_path}")
            return None

        try:
            st = os.stat(host_path)
        except OSError:
            return None

        is_dir = os.path.isdir(host_path)
        return FileInfo(
            path=workspace_path,
            is_dir=is_dir,
            size=None if is_dir else st.st_size,
            modified_at=_iso(st.st_mtime),
        )

