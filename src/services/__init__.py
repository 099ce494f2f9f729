"""Services module for the Workspace Runtime."""

from services.embedding_service import EmbeddingService
from services.filesystem_backend import LocalFilesystemBackend
from services.search_index import HybridSearchIndex, SearchIndex

__all__ = [
    "EmbeddingService",
    "LocalFilesystemBackend",
    "HybridSearchIndex",
    "SearchIndex",
]
