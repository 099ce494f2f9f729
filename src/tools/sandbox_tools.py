"""MCP tool for short-lived command execution inside the sandbox root."""

import asyncio
import logging
import os
import signal
import time
from typing import Any, Dict, Optional, Tuple

from utils.errors import NotFoundError, ValidationError
from workspace.context import ToolContext
from workspace.runtime import WorkspaceRuntime


logger = logging.getLogger("workspace-runtime.sandbox_tools")

TOOLKIT = "sandbox"


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def truncate_output(text: str, max_chars: int) -> Tuple[str, bool]:
    if len(text) <= max_chars:
        return text, False
    return text[:max_chars] + "\n...<truncated>", True


async def execute_command(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    command: str,
    cwd: Optional[str] = None,
    timeout_ms: int = 10_000,
    env: Optional[Dict[str, str]] = None,
    max_output_kb: int = 64
) -> Dict[str, Any]:
    """
    Execute a shell command inside the workspace sandbox root.

    Args:
        runtime: Workspace runtime
        ctx: Tool call context
        command: Command to execute
        cwd: Workspace-relative working directory (default: sandbox root)
        timeout_ms: Kill the command after this long (capped by the runtime)
        env: Extra environment variables
        max_output_kb: Truncate stdout/stderr beyond this size

    Returns:
        Dict with stdout, stderr, exitCode, durationMs, timedOut and
        truncation flags
    """
    if not command or not command.strip():
        raise ValidationError("command must not be empty")
    if timeout_ms < 1 or max_output_kb < 1:
        raise ValidationError("timeout_ms and max_output_kb must be positive integers")

    async with runtime.tool_call(TOOLKIT, "execute_command", ctx):
        working_dir = runtime.resolve_sandbox_cwd(cwd)
        if not os.path.isdir(working_dir):
            raise NotFoundError(f"Sandbox directory not found: {cwd}")
        effective_timeout = min(timeout_ms, runtime.operation_timeout_ms) / 1000
        logger.info(f"Sandbox execute_command: cwd={working_dir} command={command!r}")

        process_env = dict(os.environ)
        if env:
            process_env.update(env)

        start = time.monotonic()
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=working_dir,
            env=process_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )

        timed_out = False
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=effective_timeout
            )
        except asyncio.TimeoutError:
            timed_out = True
            _kill_process_group(process)
            stdout_bytes, stderr_bytes = await process.communicate()
        except asyncio.CancelledError:
            logger.info(f"Sandbox command cancelled, killing process group {process.pid}")
            _kill_process_group(process)
            await process.wait()
            raise

        duration_ms = int((time.monotonic() - start) * 1000)
        max_chars = max_output_kb * 1024
        stdout, stdout_truncated = truncate_output(stdout_bytes.decode("utf-8", errors="replace"), max_chars)
        stderr, stderr_truncated = truncate_output(stderr_bytes.decode("utf-8", errors="replace"), max_chars)

        return {
            "stdout": stdout,
            "stderr": stderr,
            "exitCode": process.returncode,
            "durationMs": duration_ms,
            "timedOut": timed_out,
            "stdoutTruncated": stdout_truncated,
            "stderrTruncated": stderr_truncated,
        }
