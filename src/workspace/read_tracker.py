"""Read-before-write tracking across tool calls of one logical operation."""

import logging
import threading
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, Optional

from storage.models import ReadVersion
from utils.errors import ReadRequiredError, StaleReadError


logger = logging.getLogger("workspace-runtime.read_tracker")


StatFunction = Callable[[str], Awaitable[Optional[ReadVersion]]]


class _OperationReads:
    __slots__ = ("versions", "touched_at")

    def __init__(self, touched_at: float):
        self.versions: Dict[str, ReadVersion] = {}
        self.touched_at = touched_at


class ReadTracker:
    """
    Records the last observed version of each path read per operation.

    Entries are bounded: operations idle longer than ``ttl_seconds`` expire,
    and at most ``max_operations`` operations are retained (least recently
    used evicted first). An evicted operation behaves as if nothing was read,
    so a later write fails with ReadRequiredError rather than succeeding
    silently.
    """

    def __init__(
        self,
        stat: StatFunction,
        ttl_seconds: float = 3600.0,
        max_operations: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize read tracker.

        Args:
            stat: Async callable returning the current ReadVersion of a
                workspace path, or None when the path does not exist
            ttl_seconds: Idle lifetime of an operation's records
            max_operations: Maximum number of operations tracked
            clock: Monotonic time source
        """
        self._stat = stat
        self.ttl_seconds = ttl_seconds
        self.max_operations = max_operations
        self._clock = clock
        self._operations: "OrderedDict[str, _OperationReads]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def operation_count(self) -> int:
        with self._lock:
            self._expire(self._clock())
            return len(self._operations)

    async def record_read(self, operation_key: str, path: str) -> Optional[ReadVersion]:
        """
        Capture the current version of ``path`` for ``operation_key``.

        A read of a nonexistent path does not establish a baseline.
        """
        version = await self._stat(path)
        if version is None:
            return None

        with self._lock:
            now = self._clock()
            self._expire(now)
            reads = self._operations.get(operation_key)
            if reads is None:
                reads = _OperationReads(now)
                self._operations[operation_key] = reads
            reads.versions[path] = version
            reads.touched_at = now
            self._operations.move_to_end(operation_key)
            self._evict_overflow()

        logger.debug(f"Recorded read: op={operation_key} path={path} size={version.size_bytes}")
        return version

    async def assert_read_before_write(self, operation_key: str, path: str) -> None:
        """
        Verify ``path`` was read in this operation and is unchanged since.

        Raises:
            ReadRequiredError: No prior read recorded for (operation, path)
            StaleReadError: Path vanished or its mtime/size changed
        """
        with self._lock:
            now = self._clock()
            self._expire(now)
            reads = self._operations.get(operation_key)
            prior = reads.versions.get(path) if reads else None
            if reads is not None:
                reads.touched_at = now
                self._operations.move_to_end(operation_key)

        if prior is None:
            raise ReadRequiredError(
                f"Read-before-write required for {path}. Call read_file first."
            )

        current = await self._stat(path)
        if current is None:
            raise StaleReadError(
                f"Read-before-write required for {path}. File no longer exists."
            )

        if current != prior:
            logger.info(
                f"Stale read detected: op={operation_key} path={path} "
                f"size={prior.size_bytes}->{current.size_bytes}"
            )
            raise StaleReadError(
                f"Read-before-write required for {path}. File changed since last read; re-read it."
            )

    async def record_write(self, operation_key: str, path: str) -> None:
        """Refresh the baseline after this operation wrote ``path`` itself."""
        version = await self._stat(path)
        if version is None:
            self.forget(operation_key, path)
            return

        with self._lock:
            reads = self._operations.get(operation_key)
            if reads is not None and path in reads.versions:
                reads.versions[path] = version

    def forget(self, operation_key: str, path: Optional[str] = None) -> None:
        """Drop one path's record, or the whole operation when path is None."""
        with self._lock:
            if path is None:
                self._operations.pop(operation_key, None)
                return
            reads = self._operations.get(operation_key)
            if reads is not None:
                reads.versions.pop(path, None)

    def clear(self) -> None:
        with self._lock:
            self._operations.clear()

    def _expire(self, now: float) -> None:
        if self.ttl_seconds <= 0:
            return
        # OrderedDict is kept in touch order, so expired entries are at the front
        while self._operations:
            key, reads = next(iter(self._operations.items()))
            if now - reads.touched_at < self.ttl_seconds:
                break
            del self._operations[key]
            logger.debug(f"Expired read records for op={key}")

    def _evict_overflow(self) -> None:
        while self.max_operations > 0 and len(self._operations) > self.max_operations:
            key, _ = self._operations.popitem(last=False)
            logger.debug(f"Evicted read records for op={key}")
