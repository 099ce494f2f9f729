"""Workspace sandboxing, tool policies and read tracking."""

from workspace.paths import PathSandbox
from workspace.policy import DEFAULT_TOOL_CONFIG, ToolPolicy, ToolPolicyResolver
from workspace.context import LoggingToolObserver, ToolContext, ToolEvent, ToolObserver
from workspace.read_tracker import ReadTracker

__all__ = [
    "PathSandbox",
    "DEFAULT_TOOL_CONFIG",
    "ToolPolicy",
    "ToolPolicyResolver",
    "LoggingToolObserver",
    "ToolContext",
    "ToolEvent",
    "ToolObserver",
    "ReadTracker",
]
