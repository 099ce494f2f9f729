"""
MCP tools for the sandboxed workspace filesystem.

All paths are workspace paths starting with "/". Mutating tools honour the
read-only flag, and tools whose policy sets require_read_before_write need a
fresh read_file in the same operation before they run.
"""

import logging
from typing import Any, Dict, Optional

from utils.errors import ValidationError
from workspace.context import ToolContext
from workspace.runtime import WorkspaceRuntime


logger = logging.getLogger("workspace-runtime.filesystem_tools")

TOOLKIT = "filesystem"


async def ls(runtime: WorkspaceRuntime, ctx: ToolContext, path: str = "/") -> Dict[str, Any]:
    """List files and directories in a workspace directory."""
    async with runtime.tool_call(TOOLKIT, "ls", ctx):
        normalized = runtime.normalize_workspace_path(path)
        entries = await runtime.with_timeout(runtime.get_filesystem_backend().ls_info(normalized))
        return {"path": normalized, "entries": [e.to_dict() for e in entries]}


async def read_file(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    path: str,
    offset: Optional[int] = None,
    limit: Optional[int] = None
) -> Dict[str, Any]:
    """
    Read a text file and record the read for this operation.

    Args:
        runtime: Workspace runtime
        ctx: Tool call context
        path: Workspace file path
        offset: 0-based line offset
        limit: Max lines to read
    """
    if offset is not None and offset < 0:
        raise ValidationError("offset must be >= 0")
    if limit is not None and limit < 1:
        raise ValidationError("limit must be a positive integer")

    async with runtime.tool_call(TOOLKIT, "read_file", ctx):
        normalized = runtime.normalize_workspace_path(path)
        content = await runtime.with_timeout(
            runtime.get_filesystem_backend().read(normalized, offset, limit)
        )
        await runtime.record_read(ctx.operation_key, normalized)
        return {"path": normalized, "content": content}


async def write_file(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    path: str,
    content: str,
    overwrite: bool = False,
    create_parent_dirs: bool = True
) -> Dict[str, Any]:
    """Write a file; existing files need overwrite=True."""
    async with runtime.tool_call(TOOLKIT, "write_file", ctx, mutates=True) as policy:
        normalized = runtime.normalize_workspace_path(path)
        backend = runtime.get_filesystem_backend()

        if policy.read_before_write:
            await runtime.assert_read_before_write(ctx.operation_key, normalized)

        exists = await backend.exists(normalized)
        if exists and not overwrite:
            raise ValidationError(f"File already exists: {normalized}")

        await runtime.with_timeout(backend.write(normalized, content, create_parent_dirs))
        await runtime.record_write(ctx.operation_key, normalized)
        return {"path": normalized, "overwritten": exists}


async def edit_file(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    path: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False
) -> Dict[str, Any]:
    """Edit a file by replacing a specific string."""
    async with runtime.tool_call(TOOLKIT, "edit_file", ctx, mutates=True) as policy:
        normalized = runtime.normalize_workspace_path(path)

        if policy.read_before_write:
            await runtime.assert_read_before_write(ctx.operation_key, normalized)

        result = await runtime.with_timeout(
            runtime.get_filesystem_backend().edit(normalized, old_string, new_string, replace_all)
        )
        await runtime.record_write(ctx.operation_key, normalized)
        return {"path": normalized, **result}


async def delete_file(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    path: str,
    recursive: bool = False
) -> Dict[str, Any]:
    """Delete a file or directory."""
    async with runtime.tool_call(TOOLKIT, "delete_file", ctx, mutates=True) as policy:
        normalized = runtime.normalize_workspace_path(path)

        if policy.read_before_write:
            await runtime.assert_read_before_write(ctx.operation_key, normalized)

        await runtime.with_timeout(runtime.get_filesystem_backend().delete(normalized, recursive))
        runtime.read_tracker.forget(ctx.operation_key, normalized)
        return {"path": normalized, "deleted": True}


async def rmdir(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    path: str,
    recursive: bool = False
) -> Dict[str, Any]:
    """Remove a directory; non-empty ones need recursive=True."""
    async with runtime.tool_call(TOOLKIT, "rmdir", ctx, mutates=True):
        normalized = runtime.normalize_workspace_path(path)
        existed = await runtime.with_timeout(runtime.get_filesystem_backend().rmdir(normalized, recursive))
        return {"path": normalized, "deleted": existed}


async def mkdir(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    path: str,
    recursive: bool = True
) -> Dict[str, Any]:
    """Create a directory."""
    async with runtime.tool_call(TOOLKIT, "mkdir", ctx, mutates=True):
        normalized = runtime.normalize_workspace_path(path)
        await runtime.with_timeout(runtime.get_filesystem_backend().mkdir(normalized, recursive))
        return {"path": normalized, "created": True}


async def stat(runtime: WorkspaceRuntime, ctx: ToolContext, path: str) -> Dict[str, Any]:
    """Get metadata for a workspace file or directory."""
    async with runtime.tool_call(TOOLKIT, "stat", ctx):
        normalized = runtime.normalize_workspace_path(path)
        info = await runtime.with_timeout(runtime.get_filesystem_backend().stat(normalized))
        return {
            "path": info.path,
            "is_dir": info.is_dir,
            "size": info.size,
            "modified_at": info.modified_at,
            "created_at": info.created_at,
        }


async def glob(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    pattern: str,
    path: str = "/"
) -> Dict[str, Any]:
    """Find files matching a glob pattern."""
    async with runtime.tool_call(TOOLKIT, "glob", ctx):
        normalized = runtime.normalize_workspace_path(path)
        matches = await runtime.with_timeout(
            runtime.get_filesystem_backend().glob_info(pattern, normalized)
        )
        return {"pattern": pattern, "matches": [m.to_dict() for m in matches]}


async def grep(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    pattern: str,
    path: str = "/",
    glob: Optional[str] = None
) -> Dict[str, Any]:
    """Search for a regex pattern in workspace files."""
    async with runtime.tool_call(TOOLKIT, "grep", ctx):
        normalized = runtime.normalize_workspace_path(path)
        matches = await runtime.with_timeout(
            runtime.get_filesystem_backend().grep_raw(pattern, normalized, glob)
        )
        return {"pattern": pattern, "matches": matches}


async def list_tree(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    path: str = "/",
    max_depth: int = 4
) -> Dict[str, Any]:
    """List files and directories recursively."""
    return await _list_tree(runtime, ctx, "list_tree", path, max_depth)


async def list_files(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    path: str = "/",
    max_depth: int = 4
) -> Dict[str, Any]:
    """Alias for list_tree with its own policy entry."""
    return await _list_tree(runtime, ctx, "list_files", path, max_depth)


async def _list_tree(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    tool_name: str,
    path: str,
    max_depth: int
) -> Dict[str, Any]:
    if max_depth < 0 or max_depth > 20:
        raise ValidationError("max_depth must be between 0 and 20")

    async with runtime.tool_call(TOOLKIT, tool_name, ctx):
        normalized = runtime.normalize_workspace_path(path)
        entries = await runtime.with_timeout(
            runtime.get_filesystem_backend().list_tree(normalized, max_depth)
        )
        return {"path": normalized, "entries": [{"path": e.path, "is_dir": e.is_dir} for e in entries]}
