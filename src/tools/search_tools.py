"""
MCP tools for workspace search.

Provides 3 tools:
- workspace_index: Index filesystem files under a workspace path
- workspace_index_content: Index raw content under a virtual path
- workspace_search: BM25, vector, or hybrid search over indexed content
"""

import logging
from typing import Any, Dict

from services.search_index import SEARCH_MODES, SearchIndex, extract_snippet
from storage.models import IndexedDocument
from utils.errors import FileTooLargeError, ValidationError
from workspace.context import ToolContext
from workspace.runtime import WorkspaceRuntime


logger = logging.getLogger("workspace-runtime.search_tools")

TOOLKIT = "search"


async def workspace_index(
    runtime: WorkspaceRuntime,
    index: SearchIndex,
    ctx: ToolContext,
    path: str,
    glob: str = "**/*",
    max_files: int = 200
) -> Dict[str, Any]:
    """
    Index workspace filesystem files under a path.

    Args:
        runtime: Workspace runtime
        index: Search index receiving the documents
        ctx: Tool call context
        path: Workspace directory path starting with /
        glob: Glob filter relative to path
        max_files: Maximum files read and indexed

    Returns:
        Dict with indexed count and totalFound (all glob matches)
    """
    if max_files < 1:
        raise ValidationError("max_files must be a positive integer")

    async with runtime.tool_call(TOOLKIT, "workspace_index", ctx):
        backend = runtime.get_filesystem_backend()
        normalized = runtime.normalize_workspace_path(path)

        matches = await runtime.with_timeout(backend.glob_info(glob, normalized))
        files = [m for m in matches if not m.is_dir][:max_files]

        indexed = 0
        for file in files:
            ctx.ensure_active()
            try:
                content = await runtime.with_timeout(backend.read(file.path))
            except FileTooLargeError as e:
                logger.warning(f"Skipping oversized file during indexing: {e}")
                continue
            await index.upsert(IndexedDocument(path=file.path, content=content, source="filesystem"))
            indexed += 1

        logger.info(f"Workspace search indexed files: indexed={indexed} path={normalized} glob={glob}")
        return {"indexed": indexed, "totalFound": len(matches)}


async def workspace_index_content(
    runtime: WorkspaceRuntime,
    index: SearchIndex,
    ctx: ToolContext,
    path: str,
    content: str,
    source: str = "manual"
) -> Dict[str, Any]:
    """Index raw content under a virtual path; no filesystem I/O."""
    async with runtime.tool_call(TOOLKIT, "workspace_index_content", ctx):
        normalized = runtime.normalize_workspace_path(path)
        await index.upsert(IndexedDocument(path=normalized, content=content, source=source))
        return {"indexed": True, "path": normalized}


def _validate_search_args(
    query: str,
    mode: str,
    top_k: int,
    min_score: float,
    snippet_length: int,
    vector_weight: float
) -> None:
    if not query:
        raise ValidationError("Query must not be empty")
    if mode not in SEARCH_MODES:
        raise ValidationError(f"Invalid mode '{mode}'. Must be one of: {', '.join(SEARCH_MODES)}")
    if top_k < 1:
        raise ValidationError("top_k must be a positive integer")
    if not 0.0 <= min_score <= 1.0:
        raise ValidationError("min_score must be between 0.0 and 1.0")
    if snippet_length < 1:
        raise ValidationError("snippet_length must be a positive integer")
    if not 0.0 <= vector_weight <= 1.0:
        raise ValidationError("vector_weight must be between 0.0 and 1.0")


async def workspace_search(
    runtime: WorkspaceRuntime,
    index: SearchIndex,
    ctx: ToolContext,
    query: str,
    mode: str = "hybrid",
    top_k: int = 5,
    min_score: float = 0.0,
    include_content: bool = True,
    snippet_length: int = 200,
    vector_weight: float = 0.6
) -> Dict[str, Any]:
    """
    Search indexed workspace content.

    Args:
        runtime: Workspace runtime
        index: Search index
        ctx: Tool call context
        query: Search query
        mode: "bm25", "vector" or "hybrid"
        top_k: Maximum results (positive)
        min_score: Drop hits scoring below this after ranking
        include_content: Return full document content with each hit
        snippet_length: Maximum snippet characters
        vector_weight: Vector share of the hybrid score (0-1)

    Returns:
        Dict with query and results list
    """
    _validate_search_args(query, mode, top_k, min_score, snippet_length, vector_weight)

    async with runtime.tool_call(TOOLKIT, "workspace_search", ctx):
        hits = await index.search(query, mode=mode, top_k=top_k, vector_weight=vector_weight)

        results = []
        for hit in hits:
            if hit.score < min_score:
                continue

            doc = index.get(hit.path)
            content = doc.content if doc else ""
            snippet, (start_line, end_line) = extract_snippet(content, query, snippet_length)

            score_details = {}
            if hit.bm25_score is not None:
                score_details["bm25"] = hit.bm25_score
            if hit.vector_score is not None:
                score_details["vector"] = hit.vector_score

            result = {
                "path": hit.path,
                "score": hit.score,
                "scoreDetails": score_details,
                "snippet": snippet,
                "lineRange": [start_line, end_line],
            }
            if include_content:
                result["content"] = content
            results.append(result)

        logger.debug(f"Workspace search: mode={mode} query={query!r} results={len(results)}")
        return {"query": query, "results": results}
