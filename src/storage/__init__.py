"""Storage module for the Workspace Runtime."""

from storage.chroma_client import ChromaClientManager, get_workspace_collection
from storage.models import (
    ReadVersion,
    IndexedDocument,
    SearchHit,
    VectorHit,
    FileInfo,
    FileStat,
)
from storage.vector_store import VectorStore, InMemoryVectorStore, ChromaVectorStore

__all__ = [
    "ChromaClientManager",
    "get_workspace_collection",
    "ReadVersion",
    "IndexedDocument",
    "SearchHit",
    "VectorHit",
    "FileInfo",
    "FileStat",
    "VectorStore",
    "InMemoryVectorStore",
    "ChromaVectorStore",
]
