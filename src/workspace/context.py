"""Explicit per-call tool context and lifecycle observers."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from utils.errors import OperationCancelledError
from utils.logging import StructuredLogger


@dataclass
class ToolContext:
    """
    Context threaded through every tool call.

    Args:
        operation_id: Logical unit of work spanning several tool calls
        conversation_id: Conversation used for the fallback operation key
        tool_call_id: Individual tool call used for the fallback operation key
        cancel_event: Set when the surrounding operation was aborted
        approved: Whether the caller already approved tools that need it
    """
    operation_id: Optional[str] = None
    conversation_id: Optional[str] = None
    tool_call_id: Optional[str] = None
    cancel_event: Optional[asyncio.Event] = None
    approved: bool = False

    @property
    def operation_key(self) -> str:
        if self.operation_id:
            return self.operation_id
        return f"{self.conversation_id or 'unknown'}:{self.tool_call_id or 'unknown'}"

    @property
    def is_active(self) -> bool:
        return self.cancel_event is None or not self.cancel_event.is_set()

    def ensure_active(self) -> None:
        """Raise OperationCancelledError if the operation was aborted."""
        if not self.is_active:
            raise OperationCancelledError("Operation has been cancelled")


@dataclass
class ToolEvent:
    """Lifecycle event dispatched to observers."""
    toolkit: str
    tool: str
    operation_key: str
    duration_ms: Optional[int] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ToolObserver:
    """Receives tool lifecycle events. Subclasses override what they need."""

    def on_start(self, event: ToolEvent) -> None:
        pass

    def on_end(self, event: ToolEvent) -> None:
        pass


class LoggingToolObserver(ToolObserver):
    """Emits structured log records for tool starts and ends."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = StructuredLogger(logger or logging.getLogger("workspace-runtime.tools"))

    def on_start(self, event: ToolEvent) -> None:
        self.log.debug(
            "tool.start",
            {"toolkit": event.toolkit, "tool": event.tool, "operation": event.operation_key},
        )

    def on_end(self, event: ToolEvent) -> None:
        extra = {
            "toolkit": event.toolkit,
            "tool": event.tool,
            "operation": event.operation_key,
            "duration_ms": event.duration_ms,
        }
        if event.succeeded:
            self.log.info("tool.end", extra)
        else:
            extra["error"] = str(event.error)
            extra["error_type"] = type(event.error).__name__
            self.log.warning("tool.end", extra)
