"""Data models for the Workspace Runtime."""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any


@dataclass(frozen=True)
class ReadVersion:
    """Fingerprint of a file's on-disk state at the moment of a read."""
    modified_at_ns: int
    size_bytes: int


@dataclass
class IndexedDocument:
    """Unit of searchable content keyed by workspace path."""
    path: str
    content: str
    source: str = "filesystem"


@dataclass
class SearchHit:
    """Ranked search result with per-signal score details."""
    path: str
    score: float
    bm25_score: Optional[float] = None
    vector_score: Optional[float] = None


@dataclass
class VectorHit:
    """Nearest-neighbour result returned by a vector store."""
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FileInfo:
    """Directory listing / glob entry."""
    path: str
    is_dir: bool
    size: Optional[int] = None
    modified_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"path": self.path, "is_dir": self.is_dir}
        if self.size is not None:
            data["size"] = self.size
        if self.modified_at is not None:
            data["modified_at"] = self.modified_at
        return data


@dataclass
class FileStat:
    """Metadata for a workspace file or directory."""
    path: str
    is_dir: bool
    size: int
    mtime_ns: int
    modified_at: str
    created_at: str

    def to_read_version(self) -> ReadVersion:
        return ReadVersion(modified_at_ns=self.mtime_ns, size_bytes=self.size)
