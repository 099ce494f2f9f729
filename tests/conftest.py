"""Pytest configuration and shared fixtures."""

import pytest
import pytest_asyncio
import os
import sys
import zlib
from unittest.mock import Mock, MagicMock
from typing import List

# Add src directory to Python path for imports
SRC_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)


# ============================================================================
# Environment Setup
# ============================================================================

@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """Set required environment variables for all tests."""
    monkeypatch.setenv("OPENAI_API_KEY", "test-api-key-12345")
    monkeypatch.setenv("OPENAI_EMBED_MODEL", "text-embedding-3-small")
    monkeypatch.setenv("OPENAI_EMBED_DIMS", "1536")
    monkeypatch.setenv("CHROMA_HOST", "localhost")
    monkeypatch.setenv("CHROMA_PORT", "8001")
    monkeypatch.setenv("MCP_PORT", "3000")
    for name in (
        "WORKSPACE_ID",
        "WORKSPACE_ROOT",
        "WORKSPACE_SKILLS_SEED_DIR",
        "WORKSPACE_READ_ONLY",
        "WORKSPACE_AUTO_APPROVE",
        "WORKSPACE_TOOL_CONFIG",
        "VECTOR_BACKEND",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config(tmp_path):
    """Create a test configuration object."""
    from config import Config
    return Config(
        openai_api_key="test-api-key-12345",
        openai_embed_model="text-embedding-3-small",
        openai_embed_dims=1536,
        openai_timeout=30,
        openai_max_retries=3,
        workspace_id="test-workspace",
        workspace_root=str(tmp_path / "workspace"),
        skills_seed_dir=None,
        operation_timeout_ms=30000,
        max_file_size_mb=25,
        read_only=False,
        auto_approve=True,
        tool_config_path=None,
        read_tracker_ttl_seconds=3600,
        read_tracker_max_operations=1024,
        vector_backend="memory",
        chroma_host="localhost",
        chroma_port=8001,
        chroma_collection="workspace_documents",
        mcp_port=3000,
        log_level="INFO"
    )


# ============================================================================
# OpenAI Mock Fixtures
# ============================================================================

@pytest.fixture
def mock_openai_client():
    """Mock OpenAI client for testing."""
    mock_client = MagicMock()

    # Mock embedding response
    mock_embedding_data = Mock()
    mock_embedding_data.embedding = [0.1] * 1536

    mock_response = Mock()
    mock_response.data = [mock_embedding_data]

    mock_client.embeddings.create.return_value = mock_response

    return mock_client


@pytest.fixture
def embedding_service(mock_openai_client):
    """Create EmbeddingService with mocked OpenAI client."""
    from services.embedding_service import EmbeddingService
    service = EmbeddingService(
        api_key="test-api-key-12345",
        model="text-embedding-3-small",
        dimensions=1536,
        timeout=30,
        max_retries=3
    )
    service.client = mock_openai_client
    return service


class FakeEmbeddingProvider:
    """Deterministic bag-of-words embeddings; records every embedded text."""

    def __init__(self, dimensions: int = 64):
        self.dimensions = dimensions
        self.calls: List[str] = []

    def vector_for(self, text: str) -> List[float]:
        from services.search_index import tokenize
        vector = [0.0] * self.dimensions
        for token in tokenize(text):
            vector[zlib.crc32(token.encode("utf-8")) % self.dimensions] += 1.0
        return vector

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        return self.vector_for(text)


@pytest.fixture
def fake_embeddings():
    """Deterministic embedding provider."""
    return FakeEmbeddingProvider()


# ============================================================================
# ChromaDB Mock Fixtures
# ============================================================================

@pytest.fixture
def mock_chroma_collection():
    """Mock ChromaDB collection for testing."""
    mock_collection = MagicMock()
    mock_collection.name = "workspace_documents"
    mock_collection.upsert.return_value = None
    mock_collection.count.return_value = 0
    mock_collection.query.return_value = {
        "ids": [[]],
        "metadatas": [[]],
        "distances": [[]]
    }
    return mock_collection


@pytest.fixture
def mock_chroma_client(mock_chroma_collection):
    """Mock ChromaDB client for testing."""
    mock_client = MagicMock()
    mock_client.heartbeat.return_value = True
    mock_client.get_or_create_collection.return_value = mock_chroma_collection
    return mock_client


# ============================================================================
# Search Fixtures
# ============================================================================

@pytest.fixture
def vector_store():
    """Empty in-memory vector store."""
    from storage.vector_store import InMemoryVectorStore
    return InMemoryVectorStore()


@pytest.fixture
def search_index(fake_embeddings, vector_store):
    """Hybrid index over fake embeddings and an in-memory vector store."""
    from services.search_index import HybridSearchIndex
    return HybridSearchIndex(fake_embeddings, vector_store)


# ============================================================================
# Workspace Fixtures
# ============================================================================

@pytest.fixture
def workspace_dirs(tmp_path):
    """Host directories for the workspace filesystem and sandbox roots."""
    fs_root = tmp_path / "fs"
    sandbox_root = tmp_path / "sandbox"
    return fs_root, sandbox_root


@pytest_asyncio.fixture
async def runtime(workspace_dirs):
    """Initialized WorkspaceRuntime with default policies."""
    from workspace.runtime import WorkspaceRuntime
    fs_root, sandbox_root = workspace_dirs
    workspace_runtime = WorkspaceRuntime(
        id="test-workspace",
        filesystem_root_dir=str(fs_root),
        sandbox_root_dir=str(sandbox_root),
    )
    await workspace_runtime.init()
    yield workspace_runtime
    await workspace_runtime.destroy()


@pytest.fixture
def ctx():
    """Approved tool context for operation op-1."""
    from workspace.context import ToolContext
    return ToolContext(operation_id="op-1", approved=True)
