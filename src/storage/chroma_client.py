"""ChromaDB client management for the Workspace Runtime."""

import logging
import time
from typing import Optional

import chromadb
from chromadb.api import ClientAPI
from chromadb.api.models.Collection import Collection


logger = logging.getLogger("workspace-runtime.storage")


class ChromaClientManager:
    """Manages ChromaDB client lifecycle and connectivity."""

    def __init__(self, host: str, port: int):
        """
        Initialize ChromaDB client manager.

        Args:
            host: ChromaDB host address
            port: ChromaDB port number
        """
        self._client: Optional[ClientAPI] = None
        self.host = host
        self.port = port

    def get_client(self) -> ClientAPI:
        """
        Get or create ChromaDB client.

        Raises:
            ConnectionError: If cannot connect to ChromaDB
        """
        if self._client is None:
            try:
                self._client = chromadb.HttpClient(
                    host=self.host,
                    port=self.port
                )
                # Test connection
                self._client.heartbeat()
                logger.info(f"Connected to ChromaDB at {self.host}:{self.port}")
            except Exception as e:
                self._client = None
                raise ConnectionError(
                    f"Cannot connect to ChromaDB at {self.host}:{self.port}. "
                    f"Ensure ChromaDB is running. Error: {e}"
                ) from e

        return self._client

    def health_check(self) -> dict:
        """
        Check ChromaDB connectivity and health.

        Returns:
            Dict with status and optional error message
        """
        try:
            client = self.get_client()
            latency_start = time.time()
            client.heartbeat()
            latency_ms = int((time.time() - latency_start) * 1000)

            return {
                "status": "healthy",
                "host": self.host,
                "port": self.port,
                "latency_ms": latency_ms
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "host": self.host,
                "port": self.port,
                "error": str(e)
            }

    def close(self):
        """Close ChromaDB client connection."""
        if self._client is not None:
            self._client = None
            logger.info("ChromaDB client closed")


def get_workspace_collection(client: ClientAPI, name: str, workspace_id: str) -> Collection:
    """
    Get or create the collection holding workspace document vectors.

    Args:
        client: ChromaDB client
        name: Collection name
        workspace_id: Owning workspace, recorded in collection metadata

    Returns:
        Collection using cosine distance
    """
    return client.get_or_create_collection(
        name=name,
        embedding_function=None,  # We provide our own embeddings
        metadata={
            "description": "Workspace documents indexed for hybrid search",
            "workspace_id": workspace_id,
            "hnsw:space": "cosine",
        }
    )
