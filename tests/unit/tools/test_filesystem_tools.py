"""Unit tests for filesystem MCP tools."""

import os
import pytest

from tools import filesystem_tools
from workspace.context import ToolContext
from workspace.policy import ToolPolicyResolver
from workspace.runtime import WorkspaceRuntime
from utils.errors import (
    ApprovalRequiredError,
    EditError,
    PathTraversalError,
    ReadOnlyWorkspaceError,
    ReadRequiredError,
    StaleReadError,
    ToolDisabledError,
    ValidationError,
)


async def seed(runtime, path, content):
    await runtime.get_filesystem_backend().write(path, content)


# ============================================================================
# Read Tests
# ============================================================================

@pytest.mark.asyncio
async def test_read_file(runtime, ctx):
    """Test reading returns normalized path and content."""
    await seed(runtime, "/notes/a.md", "hello")

    result = await filesystem_tools.read_file(runtime, ctx, "notes//a.md")

    assert result == {"path": "/notes/a.md", "content": "hello"}


@pytest.mark.asyncio
async def test_read_file_invalid_window(runtime, ctx):
    """Test negative offsets and non-positive limits are rejected."""
    with pytest.raises(ValidationError):
        await filesystem_tools.read_file(runtime, ctx, "/a.txt", offset=-1)
    with pytest.raises(ValidationError):
        await filesystem_tools.read_file(runtime, ctx, "/a.txt", limit=0)


@pytest.mark.asyncio
async def test_read_file_traversal(runtime, ctx):
    """Test traversal attempts fail."""
    with pytest.raises(PathTraversalError):
        await filesystem_tools.read_file(runtime, ctx, "../../etc/passwd")


@pytest.mark.asyncio
async def test_read_does_not_need_approval(runtime):
    """Test read tools run for unapproved contexts."""
    await seed(runtime, "/a.txt", "x")
    unapproved = ToolContext(operation_id="op-1")

    result = await filesystem_tools.read_file(runtime, unapproved, "/a.txt")

    assert result["content"] == "x"


# ============================================================================
# Read-before-write Tests
# ============================================================================

@pytest.mark.asyncio
async def test_edit_without_read(runtime, ctx):
    """Test editing an unread file raises ReadRequiredError."""
    await seed(runtime, "/a.txt", "hello world")

    with pytest.raises(ReadRequiredError):
        await filesystem_tools.edit_file(runtime, ctx, "/a.txt", "world", "there")


@pytest.mark.asyncio
async def test_read_then_edit(runtime, ctx):
    """Test editing after a read in the same operation."""
    await seed(runtime, "/a.txt", "hello world")

    await filesystem_tools.read_file(runtime, ctx, "/a.txt")
    result = await filesystem_tools.edit_file(runtime, ctx, "/a.txt", "world", "there")

    assert result == {"path": "/a.txt", "occurrences": 1}
    assert await runtime.get_filesystem_backend().read("/a.txt") == "hello there"


@pytest.mark.asyncio
async def test_consecutive_edits_after_one_read(runtime, ctx):
    """Test the operation's own edit does not invalidate its read."""
    await seed(runtime, "/a.txt", "one two")
    await filesystem_tools.read_file(runtime, ctx, "/a.txt")

    await filesystem_tools.edit_file(runtime, ctx, "/a.txt", "one", "1")
    await filesystem_tools.edit_file(runtime, ctx, "/a.txt", "two", "2")

    assert await runtime.get_filesystem_backend().read("/a.txt") == "1 2"


@pytest.mark.asyncio
async def test_edit_after_external_change_is_stale(runtime, ctx):
    """Test a concurrent change between read and edit is detected."""
    await seed(runtime, "/a.txt", "hello")
    await filesystem_tools.read_file(runtime, ctx, "/a.txt")

    host = runtime.resolve_workspace_path_to_host("/a.txt")
    with open(host, "a", encoding="utf-8") as handle:
        handle.write(" world, changed elsewhere")

    with pytest.raises(StaleReadError):
        await filesystem_tools.edit_file(runtime, ctx, "/a.txt", "hello", "bye")


@pytest.mark.asyncio
async def test_read_in_other_operation_does_not_count(runtime, ctx):
    """Test reads are scoped to their operation."""
    await seed(runtime, "/a.txt", "hello")
    await filesystem_tools.read_file(runtime, ctx, "/a.txt")

    other = ToolContext(operation_id="op-2", approved=True)
    with pytest.raises(ReadRequiredError):
        await filesystem_tools.edit_file(runtime, other, "/a.txt", "hello", "bye")


@pytest.mark.asyncio
async def test_delete_requires_read(runtime, ctx):
    """Test delete_file follows read-before-write and forgets the record."""
    await seed(runtime, "/a.txt", "hello")

    with pytest.raises(ReadRequiredError):
        await filesystem_tools.delete_file(runtime, ctx, "/a.txt")

    await filesystem_tools.read_file(runtime, ctx, "/a.txt")
    result = await filesystem_tools.delete_file(runtime, ctx, "/a.txt")

    assert result == {"path": "/a.txt", "deleted": True}
    assert not os.path.exists(runtime.resolve_workspace_path_to_host("/a.txt"))


@pytest.mark.asyncio
async def test_edit_missing_string_keeps_file(runtime, ctx):
    """Test a failed edit leaves the file untouched."""
    await seed(runtime, "/a.txt", "hello")
    await filesystem_tools.read_file(runtime, ctx, "/a.txt")

    with pytest.raises(EditError):
        await filesystem_tools.edit_file(runtime, ctx, "/a.txt", "absent", "x")

    assert await runtime.get_filesystem_backend().read("/a.txt") == "hello"


# ============================================================================
# Write Tests
# ============================================================================

@pytest.mark.asyncio
async def test_write_new_file(runtime, ctx):
    """Test write_file creates files without a prior read by default."""
    result = await filesystem_tools.write_file(runtime, ctx, "/new/a.txt", "content")

    assert result == {"path": "/new/a.txt", "overwritten": False}


@pytest.mark.asyncio
async def test_write_existing_requires_overwrite(runtime, ctx):
    """Test existing files need overwrite=True."""
    await seed(runtime, "/a.txt", "old")

    with pytest.raises(ValidationError, match="File already exists"):
        await filesystem_tools.write_file(runtime, ctx, "/a.txt", "new")

    result = await filesystem_tools.write_file(runtime, ctx, "/a.txt", "new", overwrite=True)
    assert result["overwritten"] is True


@pytest.mark.asyncio
async def test_write_requires_approval(runtime):
    """Test write_file needs approval under the default policy."""
    unapproved = ToolContext(operation_id="op-1")

    with pytest.raises(ApprovalRequiredError):
        await filesystem_tools.write_file(runtime, unapproved, "/a.txt", "x")


@pytest.mark.asyncio
async def test_read_only_workspace(workspace_dirs, ctx):
    """Test mutating tools fail on a read-only workspace."""
    fs_root, sandbox_root = workspace_dirs
    runtime = WorkspaceRuntime(
        id="ro",
        filesystem_root_dir=str(fs_root),
        sandbox_root_dir=str(sandbox_root),
        read_only=True,
    )
    await runtime.init()

    with pytest.raises(ReadOnlyWorkspaceError):
        await filesystem_tools.write_file(runtime, ctx, "/a.txt", "x")
    with pytest.raises(ReadOnlyWorkspaceError):
        await filesystem_tools.mkdir(runtime, ctx, "/dir")

    assert (await filesystem_tools.ls(runtime, ctx, "/"))["entries"] == []


# ============================================================================
# Listing Tests
# ============================================================================

@pytest.mark.asyncio
async def test_ls_and_stat(runtime, ctx):
    """Test listing and stat output shapes."""
    await seed(runtime, "/docs/a.md", "hello")

    listing = await filesystem_tools.ls(runtime, ctx, "/docs")
    info = await filesystem_tools.stat(runtime, ctx, "/docs/a.md")

    assert listing["path"] == "/docs"
    assert [e["path"] for e in listing["entries"]] == ["/docs/a.md"]
    assert info["size"] == 5
    assert info["is_dir"] is False


@pytest.mark.asyncio
async def test_glob_grep_tree(runtime, ctx):
    """Test glob, grep and list_tree tools."""
    await seed(runtime, "/src/app.py", "def run():\n    return 1\n")
    await seed(runtime, "/README.md", "# Project\n")

    globbed = await filesystem_tools.glob(runtime, ctx, "**/*.py")
    grepped = await filesystem_tools.grep(runtime, ctx, "return", "/")
    tree = await filesystem_tools.list_tree(runtime, ctx, "/")

    assert [m["path"] for m in globbed["matches"]] == ["/src/app.py"]
    assert grepped["matches"] == [{"path": "/src/app.py", "line": 2, "text": "    return 1"}]
    assert [e["path"] for e in tree["entries"]] == ["/README.md", "/src/", "/src/app.py"]


@pytest.mark.asyncio
async def test_list_tree_depth_bounds(runtime, ctx):
    """Test max_depth is bounded."""
    with pytest.raises(ValidationError, match="max_depth"):
        await filesystem_tools.list_tree(runtime, ctx, "/", max_depth=21)


@pytest.mark.asyncio
async def test_list_files_matches_list_tree(runtime, ctx):
    """Test list_files returns the same listing as list_tree."""
    await seed(runtime, "/src/app.py", "x")

    tree = await filesystem_tools.list_tree(runtime, ctx, "/")
    files = await filesystem_tools.list_files(runtime, ctx, "/")

    assert files == tree


@pytest.mark.asyncio
async def test_list_files_has_own_policy(workspace_dirs, ctx):
    """Test disabling list_files leaves list_tree available."""
    fs_root, sandbox_root = workspace_dirs
    runtime = WorkspaceRuntime(
        id="ws",
        filesystem_root_dir=str(fs_root),
        sandbox_root_dir=str(sandbox_root),
        policies=ToolPolicyResolver.from_dict({"filesystem": {"tools": {"list_files": {"enabled": False}}}}),
    )
    await runtime.init()

    with pytest.raises(ToolDisabledError):
        await filesystem_tools.list_files(runtime, ctx, "/")
    assert (await filesystem_tools.list_tree(runtime, ctx, "/"))["entries"] == []


@pytest.mark.asyncio
async def test_rmdir(runtime, ctx):
    """Test rmdir removes empty directories and needs recursive for full ones."""
    await filesystem_tools.mkdir(runtime, ctx, "/empty")
    await seed(runtime, "/full/a.txt", "x")

    assert await filesystem_tools.rmdir(runtime, ctx, "/empty") == {"path": "/empty", "deleted": True}
    with pytest.raises(ValidationError, match="not empty"):
        await filesystem_tools.rmdir(runtime, ctx, "/full")

    result = await filesystem_tools.rmdir(runtime, ctx, "/full", recursive=True)

    assert result == {"path": "/full", "deleted": True}
    assert (await filesystem_tools.ls(runtime, ctx, "/"))["entries"] == []


@pytest.mark.asyncio
async def test_rmdir_missing_and_file(runtime, ctx):
    """Test a missing directory is not an error while a file is rejected."""
    await seed(runtime, "/a.txt", "x")

    assert await filesystem_tools.rmdir(runtime, ctx, "/missing") == {"path": "/missing", "deleted": False}
    with pytest.raises(ValidationError, match="Not a directory"):
        await filesystem_tools.rmdir(runtime, ctx, "/a.txt")


@pytest.mark.asyncio
async def test_rmdir_read_only(workspace_dirs, ctx):
    """Test rmdir is a mutating tool."""
    fs_root, sandbox_root = workspace_dirs
    runtime = WorkspaceRuntime(
        id="ro",
        filesystem_root_dir=str(fs_root),
        sandbox_root_dir=str(sandbox_root),
        read_only=True,
    )
    await runtime.init()

    with pytest.raises(ReadOnlyWorkspaceError):
        await filesystem_tools.rmdir(runtime, ctx, "/dir")


@pytest.mark.asyncio
async def test_mkdir(runtime, ctx):
    """Test mkdir creates directories."""
    result = await filesystem_tools.mkdir(runtime, ctx, "/a/b")

    assert result == {"path": "/a/b", "created": True}
    assert os.path.isdir(runtime.resolve_workspace_path_to_host("/a/b"))
