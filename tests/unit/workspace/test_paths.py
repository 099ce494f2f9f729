"""Unit tests for PathSandbox."""

import os
import pytest

from workspace.paths import PathSandbox
from utils.errors import PathEscapeError, PathTraversalError


# ============================================================================
# Normalization Tests
# ============================================================================

@pytest.mark.parametrize("raw,expected", [
    ("notes/a.md", "/notes/a.md"),
    ("/notes/a.md", "/notes/a.md"),
    ("//notes///a.md", "/notes/a.md"),
    ("notes\\sub\\a.md", "/notes/sub/a.md"),
    ("", "/"),
    ("/", "/"),
])
def test_normalize(raw, expected):
    """Test normalization adds a leading slash and collapses separators."""
    assert PathSandbox.normalize(raw) == expected


@pytest.mark.parametrize("raw", [
    "../etc/passwd",
    "/a/../../b",
    "..",
    "~/secrets",
    "~root",
    "..\\windows",
    "/notes/a..b.md",
])
def test_normalize_rejects_traversal(raw):
    """Test any '..' or leading '~' is rejected before touching the host."""
    with pytest.raises(PathTraversalError, match="Path traversal not allowed"):
        PathSandbox.normalize(raw)


def test_normalize_is_idempotent():
    """Test normalizing a normalized path is a no-op."""
    once = PathSandbox.normalize("a//b\\c")
    assert PathSandbox.normalize(once) == once


# ============================================================================
# Host Resolution Tests
# ============================================================================

def test_resolve_to_host_inside_root(tmp_path):
    """Test a workspace path maps under the root directory."""
    sandbox = PathSandbox(tmp_path)

    host = sandbox.resolve_to_host("/notes/a.md")

    assert host == os.path.join(os.path.realpath(tmp_path), "notes", "a.md")


def test_resolve_root(tmp_path):
    """Test '/' maps to the root itself."""
    sandbox = PathSandbox(tmp_path)
    assert sandbox.resolve_to_host("/") == os.path.realpath(tmp_path)


def test_resolve_rejects_symlink_escape(tmp_path):
    """Test a symlink pointing outside the root cannot be followed."""
    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    (outside / "secret.txt").write_text("secret")
    os.symlink(outside, root / "link")

    sandbox = PathSandbox(root, "workspace filesystem")

    with pytest.raises(PathEscapeError, match="Path outside workspace filesystem root"):
        sandbox.resolve_to_host("/link/secret.txt")


def test_resolve_allows_symlink_inside_root(tmp_path):
    """Test symlinks that stay within the root are allowed."""
    (tmp_path / "real").mkdir()
    os.symlink(tmp_path / "real", tmp_path / "alias")

    sandbox = PathSandbox(tmp_path)

    assert sandbox.resolve_to_host("/alias/x.txt") == os.path.join(
        os.path.realpath(tmp_path), "real", "x.txt"
    )


def test_resolve_rejects_traversal(tmp_path):
    """Test resolution normalizes first and rejects traversal."""
    sandbox = PathSandbox(tmp_path)
    with pytest.raises(PathTraversalError):
        sandbox.resolve_to_host("/../outside")


def test_to_workspace_path(tmp_path):
    """Test host paths map back to workspace paths."""
    sandbox = PathSandbox(tmp_path)

    assert sandbox.to_workspace_path(sandbox.root_dir) == "/"
    assert sandbox.to_workspace_path(os.path.join(sandbox.root_dir, "a", "b.txt")) == "/a/b.txt"
