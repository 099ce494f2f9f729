"""Workspace runtime: sandbox, policies, read tracking and lifecycle."""

import asyncio
import logging
import os
import shutil
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, List, Optional, TypeVar

from services.filesystem_backend import LocalFilesystemBackend
from utils.errors import (
    ApprovalRequiredError,
    OperationTimeoutError,
    ReadOnlyWorkspaceError,
    ToolDisabledError,
)
from workspace.context import ToolContext, ToolEvent, ToolObserver
from workspace.paths import PathSandbox
from workspace.policy import ToolPolicy, ToolPolicyResolver
from workspace.read_tracker import ReadTracker


logger = logging.getLogger("workspace-runtime.runtime")

T = TypeVar("T")


class WorkspaceRuntime:
    """
    Facade composing the path sandboxes, tool policies and read tracker.

    One runtime serves one workspace; tool functions receive it together with
    an explicit ToolContext and never reach for global state.
    """

    def __init__(
        self,
        id: str,
        filesystem_root_dir: str,
        sandbox_root_dir: str,
        policies: Optional[ToolPolicyResolver] = None,
        skills_seed_dir: Optional[str] = None,
        operation_timeout_ms: int = 30_000,
        max_file_size_mb: float = 25,
        read_only: bool = False,
        read_tracker_ttl_seconds: float = 3600.0,
        read_tracker_max_operations: int = 1024,
    ):
        """
        Initialize workspace runtime.

        Args:
            id: Workspace identifier
            filesystem_root_dir: Host directory exposed as the workspace "/"
            sandbox_root_dir: Host directory used as command working root
            policies: Tool policy resolver (defaults to DEFAULT_TOOL_CONFIG)
            skills_seed_dir: Directory copied to /skills on first init
            operation_timeout_ms: Upper bound for a single I/O step
            max_file_size_mb: Largest readable file
            read_only: Reject every mutating filesystem tool
            read_tracker_ttl_seconds: Idle lifetime of read records
            read_tracker_max_operations: Maximum operations with read records
        """
        self.id = id
        self.filesystem_root_dir = os.path.abspath(filesystem_root_dir)
        self.sandbox_root_dir = os.path.abspath(sandbox_root_dir)
        self.skills_seed_dir = skills_seed_dir
        self.operation_timeout_ms = operation_timeout_ms
        self.read_only = read_only
        self.policies = policies or ToolPolicyResolver.default()

        # Roots may not exist yet; sandboxes resolve them lazily after init()
        self._max_file_size_mb = max_file_size_mb
        self._filesystem_sandbox: Optional[PathSandbox] = None
        self._command_sandbox: Optional[PathSandbox] = None
        self._backend: Optional[LocalFilesystemBackend] = None

        self.read_tracker = ReadTracker(
            stat=self._path_version,
            ttl_seconds=read_tracker_ttl_seconds,
            max_operations=read_tracker_max_operations,
        )
        self._observers: List[ToolObserver] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Create both roots and seed /skills when configured."""
        await asyncio.to_thread(os.makedirs, self.filesystem_root_dir, exist_ok=True)
        await asyncio.to_thread(os.makedirs, self.sandbox_root_dir, exist_ok=True)

        if self.skills_seed_dir:
            await self._seed_skills_if_missing()

        logger.info(
            f"Workspace '{self.id}' ready: fs={self.filesystem_root_dir} "
            f"sandbox={self.sandbox_root_dir} read_only={self.read_only}"
        )

    async def destroy(self) -> None:
        self.read_tracker.clear()
        logger.info(f"Workspace '{self.id}' destroyed")

    async def _seed_skills_if_missing(self) -> None:
        skills_root = os.path.join(self.filesystem_root_dir, "skills")
        if os.path.exists(skills_root):
            return
        if not os.path.isdir(self.skills_seed_dir):
            logger.warning(f"Skills seed directory not found: {self.skills_seed_dir}")
            return

        await asyncio.to_thread(shutil.copytree, self.skills_seed_dir, skills_root)
        logger.info(f"Seeded skills from {self.skills_seed_dir}")

    # ------------------------------------------------------------------
    # Sandboxes / backend
    # ------------------------------------------------------------------

    @property
    def filesystem_sandbox(self) -> PathSandbox:
        if self._filesystem_sandbox is None:
            self._filesystem_sandbox = PathSandbox(self.filesystem_root_dir, "workspace filesystem")
        return self._filesystem_sandbox

    @property
    def command_sandbox(self) -> PathSandbox:
        if self._command_sandbox is None:
            self._command_sandbox = PathSandbox(self.sandbox_root_dir, "sandbox")
        return self._command_sandbox

    def get_filesystem_backend(self) -> LocalFilesystemBackend:
        if self._backend is None:
            self._backend = LocalFilesystemBackend(self.filesystem_sandbox, self._max_file_size_mb)
        return self._backend

    def normalize_workspace_path(self, raw_path: str) -> str:
        return PathSandbox.normalize(raw_path)

    def resolve_workspace_path_to_host(self, workspace_path: str) -> str:
        return self.filesystem_sandbox.resolve_to_host(workspace_path)

    def resolve_sandbox_cwd(self, workspace_cwd: Optional[str] = None) -> str:
        """Resolve a command working directory inside the sandbox root."""
        if not workspace_cwd:
            return self.command_sandbox.root_dir
        return self.command_sandbox.resolve_to_host(workspace_cwd)

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def get_policy(self, toolkit: str, tool_name: str) -> ToolPolicy:
        return self.policies.policy_for(toolkit, tool_name)

    # ------------------------------------------------------------------
    # Read-before-write
    # ------------------------------------------------------------------

    async def _path_version(self, workspace_path: str):
        return await self.get_filesystem_backend().version(workspace_path)

    async def record_read(self, operation_key: str, workspace_path: str) -> None:
        await self.read_tracker.record_read(operation_key, self.normalize_workspace_path(workspace_path))

    async def assert_read_before_write(self, operation_key: str, workspace_path: str) -> None:
        await self.read_tracker.assert_read_before_write(
            operation_key, self.normalize_workspace_path(workspace_path)
        )

    async def record_write(self, operation_key: str, workspace_path: str) -> None:
        await self.read_tracker.record_write(operation_key, self.normalize_workspace_path(workspace_path))

    # ------------------------------------------------------------------
    # Tool call plumbing
    # ------------------------------------------------------------------

    def add_observer(self, observer: ToolObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: ToolObserver) -> None:
        self._observers.remove(observer)

    @asynccontextmanager
    async def tool_call(
        self,
        toolkit: str,
        tool_name: str,
        ctx: ToolContext,
        mutates: bool = False,
        enabled_by_default: bool = True,
    ) -> AsyncIterator[ToolPolicy]:
        """
        Wrap one tool execution.

        Checks liveness, resolves and enforces the policy, and dispatches
        on_start/on_end to observers. Yields the effective policy.

        Raises:
            OperationCancelledError: Operation aborted before the call
            ToolDisabledError: Policy disables the tool
            ApprovalRequiredError: Policy needs approval the context lacks
            ReadOnlyWorkspaceError: Mutating tool on a read-only workspace
        """
        ctx.ensure_active()

        policy = self.get_policy(toolkit, tool_name)
        if not policy.is_enabled(enabled_by_default):
            raise ToolDisabledError(f"Tool '{tool_name}' is disabled for this workspace")
        if mutates and self.read_only:
            raise ReadOnlyWorkspaceError("Workspace filesystem is read-only")
        if policy.approval_required and not ctx.approved:
            raise ApprovalRequiredError(f"Tool '{tool_name}' requires approval")

        event = ToolEvent(toolkit=toolkit, tool=tool_name, operation_key=ctx.operation_key)
        for observer in self._observers:
            observer.on_start(event)

        start = time.monotonic()
        try:
            yield policy
        except BaseException as e:
            event.error = e
            raise
        finally:
            event.duration_ms = int((time.monotonic() - start) * 1000)
            for observer in self._observers:
                observer.on_end(event)

    async def with_timeout(self, awaitable: Awaitable[T], timeout_ms: Optional[int] = None) -> T:
        """Await ``awaitable`` bounded by the operation timeout."""
        limit = timeout_ms if timeout_ms is not None else self.operation_timeout_ms
        try:
            return await asyncio.wait_for(awaitable, timeout=limit / 1000)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(f"Operation timed out after {limit}ms") from e


def create_workspace_runtime(config) -> WorkspaceRuntime:
    """
    Build a runtime from application Config.

    Args:
        config: config.Config instance

    Returns:
        Uninitialized WorkspaceRuntime (call init())
    """
    if config.tool_config_path:
        policies = ToolPolicyResolver.from_file(config.tool_config_path)
    else:
        policies = ToolPolicyResolver.default()

    return WorkspaceRuntime(
        id=config.workspace_id,
        filesystem_root_dir=os.path.join(config.workspace_root, "fs"),
        sandbox_root_dir=os.path.join(config.workspace_root, "sandbox"),
        policies=policies,
        skills_seed_dir=config.skills_seed_dir,
        operation_timeout_ms=config.operation_timeout_ms,
        max_file_size_mb=config.max_file_size_mb,
        read_only=config.read_only,
        read_tracker_ttl_seconds=config.read_tracker_ttl_seconds,
        read_tracker_max_operations=config.read_tracker_max_operations,
    )
