"""
Workspace Runtime MCP Server - Streamable HTTP Transport

A Model Context Protocol server giving tool-calling agents a sandboxed,
policy-governed workspace filesystem plus hybrid (BM25 + vector) search over
its content.

Toolkits:
- filesystem: ls, read_file, write_file, edit_file, delete_file, rmdir,
  mkdir, stat, glob, grep, list_tree, list_files
- search: workspace_index, workspace_index_content, workspace_search
- sandbox: execute_command
- skills: workspace_list_skills, workspace_search_skills, workspace_read_skill,
  workspace_activate_skill, workspace_deactivate_skill,
  workspace_read_skill_reference, workspace_read_skill_script,
  workspace_read_skill_asset, workspace_skills_prompt

Usage:
    python server.py

Configuration via .env file or environment variables (see config.py)
"""

__version__ = "1.0.0"

import os
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional

import uvicorn
from starlette.applications import Starlette
from starlette.routing import Route, Mount
from starlette.responses import JSONResponse, RedirectResponse
from dotenv import load_dotenv

from mcp.server.fastmcp import FastMCP
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager

load_dotenv()

from config import Config, load_config, validate_config
from services.embedding_service import EmbeddingService
from services.search_index import HybridSearchIndex
from storage.chroma_client import ChromaClientManager, get_workspace_collection
from storage.vector_store import ChromaVectorStore, InMemoryVectorStore, VectorStore
from tools import filesystem_tools, sandbox_tools, search_tools, skills_tools
from tools.skills_tools import SkillActivations
from utils.errors import WorkspaceError, error_response
from utils.logging import setup_logging
from workspace.context import LoggingToolObserver, ToolContext
from workspace.runtime import WorkspaceRuntime, create_workspace_runtime


logger = logging.getLogger("workspace-runtime")

TOOL_NAMES = {
    "filesystem": [
        "ls", "read_file", "write_file", "edit_file", "delete_file", "rmdir",
        "mkdir", "stat", "glob", "grep", "list_tree", "list_files",
    ],
    "search": ["workspace_index", "workspace_index_content", "workspace_search"],
    "sandbox": ["execute_command"],
    "skills": [
        "workspace_list_skills", "workspace_search_skills", "workspace_read_skill",
        "workspace_activate_skill", "workspace_deactivate_skill",
        "workspace_read_skill_reference", "workspace_read_skill_script",
        "workspace_read_skill_asset", "workspace_skills_prompt",
    ],
}

mcp = FastMCP(f"Workspace Runtime v{__version__}")

# Global services (initialized in lifespan)
config: Optional[Config] = None
runtime: Optional[WorkspaceRuntime] = None
embedding_service: Optional[EmbeddingService] = None
vector_store: Optional[VectorStore] = None
search_index: Optional[HybridSearchIndex] = None
chroma_manager: Optional[ChromaClientManager] = None
session_manager: Optional[StreamableHTTPSessionManager] = None
skill_activations = SkillActivations()


def _context(operation_id: Optional[str], conversation_id: Optional[str] = None) -> ToolContext:
    return ToolContext(
        operation_id=operation_id,
        conversation_id=conversation_id,
        approved=config.auto_approve if config else False,
    )


async def _invoke(call: Callable[[], Awaitable[Dict[str, Any]]]) -> Dict[str, Any]:
    """Run a tool call and convert failures into structured results."""
    if runtime is None or search_index is None:
        return {"error": "Server not ready", "error_code": "NOT_READY", "recoverable": True}
    try:
        return await call()
    except WorkspaceError as e:
        logger.info(f"Tool call failed: {e.error_code}: {e}")
        return error_response(e)
    except Exception as e:
        logger.error(f"Tool call crashed: {e}", exc_info=True)
        return {"error": str(e), "error_code": "INTERNAL_ERROR", "recoverable": False}


# ============================================================================
# SEARCH TOOLS
# ============================================================================

@mcp.tool()
async def workspace_index(
    path: str = "/",
    glob: str = "**/*",
    max_files: int = 200,
    operation_id: Optional[str] = None
) -> dict:
    """
    Index workspace filesystem files under a path (optionally filtered by glob).

    Use workspace_index before searching filesystem content.

    Args:
        path: Workspace directory path starting with /
        glob: Glob filter, e.g. **/*.md
        max_files: Maximum number of files to index
        operation_id: Optional id grouping related tool calls
    """
    return await _invoke(lambda: search_tools.workspace_index(
        runtime, search_index, _context(operation_id), path, glob, max_files
    ))


@mcp.tool()
async def workspace_index_content(
    path: str,
    content: str,
    source: str = "manual",
    operation_id: Optional[str] = None
) -> dict:
    """
    Index raw content under a virtual path for later search.

    Args:
        path: Virtual path to store content under
        content: Raw content
        source: Free-form origin label
        operation_id: Optional id grouping related tool calls
    """
    return await _invoke(lambda: search_tools.workspace_index_content(
        runtime, search_index, _context(operation_id), path, content, source
    ))


@mcp.tool()
async def workspace_search(
    query: str,
    mode: str = "hybrid",
    top_k: int = 5,
    min_score: float = 0.0,
    include_content: bool = True,
    snippet_length: int = 200,
    vector_weight: float = 0.6,
    operation_id: Optional[str] = None
) -> dict:
    """
    Search indexed workspace content using BM25, vector, or hybrid search.

    Set include_content=false for snippet-only output to keep token usage low.

    Args:
        query: Search query
        mode: One of: bm25, vector, hybrid
        top_k: Maximum results (positive)
        min_score: Minimum normalized score (0-1)
        include_content: Include full document content
        snippet_length: Maximum snippet characters
        vector_weight: Weight of vector similarity in hybrid mode (0-1)
        operation_id: Optional id grouping related tool calls
    """
    return await _invoke(lambda: search_tools.workspace_search(
        runtime, search_index, _context(operation_id), query, mode, top_k,
        min_score, include_content, snippet_length, vector_weight
    ))


# ============================================================================
# FILESYSTEM TOOLS
# ============================================================================

@mcp.tool()
async def ls(path: str = "/", operation_id: Optional[str] = None) -> dict:
    """List files and directories in a workspace directory."""
    return await _invoke(lambda: filesystem_tools.ls(runtime, _context(operation_id), path))


@mcp.tool()
async def read_file(
    path: str,
    offset: Optional[int] = None,
    limit: Optional[int] = None,
    operation_id: Optional[str] = None
) -> dict:
    """
    Read a text file from the workspace filesystem.

    Pass the same operation_id to a later edit_file/delete_file; those tools
    require a fresh read of the file within the same operation.

    Args:
        path: Workspace file path starting with /
        offset: 0-based line offset
        limit: Max lines to read
        operation_id: Id grouping related tool calls
    """
    return await _invoke(lambda: filesystem_tools.read_file(
        runtime, _context(operation_id), path, offset, limit
    ))


@mcp.tool()
async def write_file(
    path: str,
    content: str,
    overwrite: bool = False,
    create_parent_dirs: bool = True,
    operation_id: Optional[str] = None
) -> dict:
    """Write a file into the workspace filesystem."""
    return await _invoke(lambda: filesystem_tools.write_file(
        runtime, _context(operation_id), path, content, overwrite, create_parent_dirs
    ))


@mcp.tool()
async def edit_file(
    path: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
    operation_id: Optional[str] = None
) -> dict:
    """Edit a file by replacing a specific string. Requires read_file first."""
    return await _invoke(lambda: filesystem_tools.edit_file(
        runtime, _context(operation_id), path, old_string, new_string, replace_all
    ))


@mcp.tool()
async def delete_file(
    path: str,
    recursive: bool = False,
    operation_id: Optional[str] = None
) -> dict:
    """Delete a file or directory from the workspace filesystem. Requires read_file first."""
    return await _invoke(lambda: filesystem_tools.delete_file(
        runtime, _context(operation_id), path, recursive
    ))


@mcp.tool()
async def rmdir(path: str, recursive: bool = False, operation_id: Optional[str] = None) -> dict:
    """Remove a directory from the workspace filesystem. Non-empty directories need recursive=true."""
    return await _invoke(lambda: filesystem_tools.rmdir(runtime, _context(operation_id), path, recursive))


@mcp.tool()
async def mkdir(path: str, recursive: bool = True, operation_id: Optional[str] = None) -> dict:
    """Create a directory in the workspace filesystem."""
    return await _invoke(lambda: filesystem_tools.mkdir(runtime, _context(operation_id), path, recursive))


@mcp.tool()
async def stat(path: str, operation_id: Optional[str] = None) -> dict:
    """Get metadata for a workspace file or directory."""
    return await _invoke(lambda: filesystem_tools.stat(runtime, _context(operation_id), path))


@mcp.tool()
async def glob(pattern: str, path: str = "/", operation_id: Optional[str] = None) -> dict:
    """Find files in the workspace filesystem matching a glob pattern, e.g. **/*.md."""
    return await _invoke(lambda: filesystem_tools.glob(runtime, _context(operation_id), pattern, path))


@mcp.tool()
async def grep(
    pattern: str,
    path: str = "/",
    glob: Optional[str] = None,
    operation_id: Optional[str] = None
) -> dict:
    """Search for a regex pattern in workspace files."""
    return await _invoke(lambda: filesystem_tools.grep(
        runtime, _context(operation_id), pattern, path, glob
    ))


@mcp.tool()
async def list_tree(path: str = "/", max_depth: int = 4, operation_id: Optional[str] = None) -> dict:
    """List files and directories recursively."""
    return await _invoke(lambda: filesystem_tools.list_tree(
        runtime, _context(operation_id), path, max_depth
    ))


@mcp.tool()
async def list_files(path: str = "/", max_depth: int = 4, operation_id: Optional[str] = None) -> dict:
    """Alias for list_tree."""
    return await _invoke(lambda: filesystem_tools.list_files(
        runtime, _context(operation_id), path, max_depth
    ))


# ============================================================================
# SANDBOX TOOLS
# ============================================================================

@mcp.tool()
async def execute_command(
    command: str,
    cwd: Optional[str] = None,
    timeout_ms: int = 10_000,
    env: Optional[Dict[str, str]] = None,
    max_output_kb: int = 64,
    operation_id: Optional[str] = None
) -> dict:
    """
    Execute a shell command inside the workspace sandbox root.

    Use for short-lived tasks; pass only required env vars and keep timeouts tight.
    """
    return await _invoke(lambda: sandbox_tools.execute_command(
        runtime, _context(operation_id), command, cwd, timeout_ms, env, max_output_kb
    ))


# ============================================================================
# SKILLS TOOLS
# ============================================================================

@mcp.tool()
async def workspace_list_skills(operation_id: Optional[str] = None) -> dict:
    """List available workspace skills (folders under /skills holding a SKILL.md)."""
    return await _invoke(lambda: skills_tools.workspace_list_skills(runtime, _context(operation_id)))


@mcp.tool()
async def workspace_search_skills(query: str, top_k: int = 10, operation_id: Optional[str] = None) -> dict:
    """Search skills by name, description and body (substring match)."""
    return await _invoke(lambda: skills_tools.workspace_search_skills(
        runtime, _context(operation_id), query, top_k
    ))


@mcp.tool()
async def workspace_read_skill(skill_id: str, operation_id: Optional[str] = None) -> dict:
    """Read the full SKILL.md for a skill."""
    return await _invoke(lambda: skills_tools.workspace_read_skill(runtime, _context(operation_id), skill_id))


@mcp.tool()
async def workspace_activate_skill(
    skill_id: str,
    conversation_id: Optional[str] = None,
    operation_id: Optional[str] = None
) -> dict:
    """
    Activate a skill for a conversation.

    Active skills are injected by workspace_skills_prompt.

    Args:
        skill_id: Skill id as listed by workspace_list_skills
        conversation_id: Conversation the activation belongs to
        operation_id: Optional id grouping related tool calls
    """
    return await _invoke(lambda: skills_tools.workspace_activate_skill(
        runtime, skill_activations, _context(operation_id, conversation_id), skill_id
    ))


@mcp.tool()
async def workspace_deactivate_skill(
    skill_id: str,
    conversation_id: Optional[str] = None,
    operation_id: Optional[str] = None
) -> dict:
    """Deactivate a skill for a conversation."""
    return await _invoke(lambda: skills_tools.workspace_deactivate_skill(
        runtime, skill_activations, _context(operation_id, conversation_id), skill_id
    ))


@mcp.tool()
async def workspace_read_skill_reference(skill_id: str, file: str, operation_id: Optional[str] = None) -> dict:
    """Read a skill reference file (allowlisted in SKILL.md). file is relative to the skill directory."""
    return await _invoke(lambda: skills_tools.workspace_read_skill_reference(
        runtime, _context(operation_id), skill_id, file
    ))


@mcp.tool()
async def workspace_read_skill_script(skill_id: str, file: str, operation_id: Optional[str] = None) -> dict:
    """Read a skill script file (allowlisted in SKILL.md). file is relative to the skill directory."""
    return await _invoke(lambda: skills_tools.workspace_read_skill_script(
        runtime, _context(operation_id), skill_id, file
    ))


@mcp.tool()
async def workspace_read_skill_asset(skill_id: str, file: str, operation_id: Optional[str] = None) -> dict:
    """Read a skill asset file (allowlisted in SKILL.md). file is relative to the skill directory."""
    return await _invoke(lambda: skills_tools.workspace_read_skill_asset(
        runtime, _context(operation_id), skill_id, file
    ))


@mcp.tool()
async def workspace_skills_prompt(conversation_id: Optional[str] = None, operation_id: Optional[str] = None) -> dict:
    """Render the SKILL.md files of a conversation's active skills as a <workspace_skills> prompt block."""
    return await _invoke(lambda: skills_tools.workspace_skills_prompt(
        runtime, skill_activations, _context(operation_id, conversation_id)
    ))


@mcp.tool()
async def workspace_policies() -> dict:
    """Show the effective policy (enabled, approval, read-before-write) of every tool."""
    if runtime is None:
        return {"error": "Server not ready", "error_code": "NOT_READY", "recoverable": True}
    return {
        "workspace_id": runtime.id,
        "read_only": runtime.read_only,
        "policies": {
            toolkit: {name: runtime.get_policy(toolkit, name).to_dict() for name in names}
            for toolkit, names in TOOL_NAMES.items()
        },
    }


# ============================================================================
# LIFECYCLE
# ============================================================================

def _create_vector_store(cfg: Config) -> VectorStore:
    global chroma_manager

    if cfg.vector_backend == "chroma":
        chroma_manager = ChromaClientManager(host=cfg.chroma_host, port=cfg.chroma_port)
        chroma_health = chroma_manager.health_check()
        if chroma_health["status"] != "healthy":
            raise RuntimeError(f"ChromaDB unhealthy: {chroma_health.get('error')}")
        logger.info(f"  ChromaDB: OK (latency={chroma_health.get('latency_ms')}ms)")

        collection = get_workspace_collection(
            chroma_manager.get_client(), cfg.chroma_collection, cfg.workspace_id
        )
        return ChromaVectorStore(collection)

    logger.info("  Vector store: in-memory")
    return InMemoryVectorStore()


@asynccontextmanager
async def lifespan(app):
    """Application lifespan - startup/shutdown."""
    global config, runtime, embedding_service, vector_store, search_index, session_manager

    try:
        config = load_config()
        validate_config(config)
        setup_logging(config.log_level)

        logger.info(f"Starting Workspace Runtime v{__version__}")
        logger.info(f"  Workspace: {config.workspace_id} at {config.workspace_root}")
        logger.info(f"  Embeddings: {config.openai_embed_model} ({config.openai_embed_dims} dims)")

        runtime = create_workspace_runtime(config)
        runtime.add_observer(LoggingToolObserver())
        await runtime.init()

        embedding_service = EmbeddingService(
            api_key=config.openai_api_key,
            model=config.openai_embed_model,
            dimensions=config.openai_embed_dims,
            timeout=config.openai_timeout,
            max_retries=config.openai_max_retries
        )

        vector_store = _create_vector_store(config)
        search_index = HybridSearchIndex(embedding_service, vector_store)

        session_manager = StreamableHTTPSessionManager(
            app=mcp._mcp_server,
            json_response=False,
            stateless=False,
        )

        async with session_manager.run():
            logger.info(f"Workspace Runtime ready at http://0.0.0.0:{config.mcp_port}/mcp/")
            yield

    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        raise

    finally:
        if runtime is not None:
            await runtime.destroy()
        if chroma_manager is not None:
            chroma_manager.close()

    logger.info(f"Workspace Runtime v{__version__} stopped")


async def health(request):
    """Health check endpoint."""
    health_data = {
        "status": "ok",
        "service": "workspace-runtime",
        "version": __version__,
    }

    if runtime:
        health_data["workspace"] = {
            "id": runtime.id,
            "read_only": runtime.read_only,
            "tracked_operations": runtime.read_tracker.operation_count,
        }

    if search_index:
        health_data["index"] = {"documents": search_index.document_count}

    if chroma_manager:
        health_data["chromadb"] = chroma_manager.health_check()

    return JSONResponse(health_data)


async def mcp_slash_redirect(request):
    """Redirect /mcp to /mcp/ relatively so the client keeps its scheme/host."""
    return RedirectResponse(url="/mcp/", status_code=307)


class MCPHandler:
    """ASGI handler for MCP requests."""

    async def __call__(self, scope, receive, send):
        if session_manager:
            await session_manager.handle_request(scope, receive, send)
        else:
            response = JSONResponse({"error": "Server not ready"}, status_code=503)
            await response(scope, receive, send)


app = Starlette(
    debug=os.getenv("LOG_LEVEL") == "DEBUG",
    routes=[
        Route("/", health),
        Route("/health", health),
        Route("/mcp", mcp_slash_redirect, methods=["GET", "POST", "DELETE", "OPTIONS"]),
        Mount("/mcp", app=MCPHandler()),
    ],
    lifespan=lifespan,
)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        cfg = load_config()
        port = cfg.mcp_port
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        port = 3000

    logger.info(f"Starting Workspace Runtime v{__version__} on port {port}")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        log_level=os.getenv("LOG_LEVEL", "INFO").lower(),
    )
