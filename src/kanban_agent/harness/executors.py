"""
Agent CLI executors.

An executor spawns one agent process per invocation, streams its output
to a live sink while accumulating it, and resolves to a ProcessResult.
Failures to spawn, non-zero exits and timeouts are all reported through
the result rather than raised.

Supported CLIs:
- claude: Anthropic Claude Code CLI (opus, sonnet, haiku)
"""

import asyncio
import codecs
import logging
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional

from .models import AgentModel, Task

logger = logging.getLogger(__name__)

# Reported when the executable could not be started at all
SPAWN_FAILED_EXIT_CODE = 127

# Only stderr lines containing this marker (any case) are surfaced
STDERR_ERROR_MARKER = "error"

READ_CHUNK_SIZE = 4096

# How often a running process checks whether its run was cancelled
CANCEL_POLL_SECONDS = 0.1

OutputSink = Callable[[str], None]
SpawnHook = Callable[[asyncio.subprocess.Process], None]
CancelCheck = Callable[[], bool]


@dataclass
class AgentInvocation:
    """Everything needed to start one agent process."""
    prompt: str
    cwd: Optional[str] = None
    model: str = AgentModel.OPUS.value
    allowed_tools: list[str] = field(default_factory=list)
    output_format: Optional[str] = None
    timeout: Optional[float] = None  # seconds; None means no deadline


@dataclass
class ProcessResult:
    """Captured output and exit status of one agent process."""
    output: str
    exit_code: Optional[int]  # None when the process was killed by a signal
    timed_out: bool = False
    error: Optional[str] = None  # Set when the process could not be spawned
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def spawn_failed(self) -> bool:
        return self.error is not None


def terminate_process(process: asyncio.subprocess.Process) -> bool:
    """Send SIGTERM to a process that has not exited yet.

    Returns:
        True if a signal was sent
    """
    if process.returncode is not None:
        return False
    try:
        process.terminate()
    except ProcessLookupError:
        return False
    return True


class BaseCLIExecutor(ABC):
    """Base class for agent CLI executors."""

    CLI_NAME: str = ""

    def __init__(
        self,
        cli_path: Optional[str] = None,
        allowed_tools: Optional[list[str]] = None,
        shell_tool: str = "Bash",
        default_model: str = AgentModel.OPUS.value,
        terminate_grace_seconds: float = 5.0,
    ):
        self.cli_path = cli_path or self.CLI_NAME
        self.allowed_tools = allowed_tools or ["Read", "Edit", "Write", "Glob", "Grep"]
        self.shell_tool = shell_tool
        self.default_model = default_model
        self.terminate_grace_seconds = terminate_grace_seconds

    def check_cli_available(self) -> bool:
        """Check if the CLI is installed and available."""
        return shutil.which(self.cli_path) is not None

    def task_invocation(self, task: Task, prompt: str) -> AgentInvocation:
        """Build the invocation for working on a task.

        The shell tool is only granted when the task allows shell commands.
        """
        tools = list(self.allowed_tools)
        if task.allow_shell_commands and self.shell_tool not in tools:
            tools.append(self.shell_tool)

        model = task.claude_model.value if task.claude_model else self.default_model
        return AgentInvocation(
            prompt=prompt,
            cwd=task.project_directory or None,
            model=model,
            allowed_tools=tools,
        )

    @abstractmethod
    def _build_command(self, invocation: AgentInvocation) -> list[str]:
        """Build the CLI command. Override in subclasses."""
        pass

    async def run(
        self,
        invocation: AgentInvocation,
        on_output: Optional[OutputSink] = None,
        on_spawn: Optional[SpawnHook] = None,
        is_cancelled: Optional[CancelCheck] = None,
    ) -> ProcessResult:
        """Run one agent process to completion.

        Args:
            invocation: What to run and where
            on_output: Receives every captured chunk as it arrives
            on_spawn: Receives the process right after it starts, before
                any output is read, so it can be registered for cancellation
            is_cancelled: Polled while the process runs; once it returns True
                the process is terminated, then killed after the grace period

        Returns:
            ProcessResult with the full captured output
        """
        cmd = self._build_command(invocation)
        start_time = time.monotonic()

        logger.info(f"Starting {self.CLI_NAME or cmd[0]}: {cmd[0]} (cwd={invocation.cwd or '.'})")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=invocation.cwd or None,
            )
        except OSError as e:
            logger.error(f"Failed to start {cmd[0]}: {e}")
            return ProcessResult(
                output="",
                exit_code=SPAWN_FAILED_EXIT_CODE,
                error=str(e),
                duration_seconds=time.monotonic() - start_time,
            )

        if on_spawn is not None:
            on_spawn(process)

        chunks: list[str] = []

        def emit(text: str) -> None:
            chunks.append(text)
            if on_output is not None:
                on_output(text)

        watchdog = None
        if is_cancelled is not None:
            watchdog = asyncio.ensure_future(self._watch_cancel(process, is_cancelled))

        timed_out = False
        try:
            if invocation.timeout:
                await asyncio.wait_for(self._pump(process, emit), timeout=invocation.timeout)
            else:
                await self._pump(process, emit)
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning(f"{cmd[0]} (pid {process.pid}) timed out after {invocation.timeout}s")
            await self._stop(process)
        except asyncio.CancelledError:
            await self._stop(process)
            raise
        finally:
            if watchdog is not None:
                watchdog.cancel()
                await asyncio.gather(watchdog, return_exceptions=True)

        returncode = process.returncode
        exit_code = returncode if returncode is not None and returncode >= 0 else None
        duration = time.monotonic() - start_time
        logger.info(f"{cmd[0]} (pid {process.pid}) exited with code {exit_code} after {duration:.1f}s")

        return ProcessResult(
            output="".join(chunks),
            exit_code=exit_code,
            timed_out=timed_out,
            duration_seconds=duration,
        )

    async def _pump(self, process: asyncio.subprocess.Process, emit: OutputSink) -> None:
        await asyncio.gather(
            self._read_stdout(process.stdout, emit),
            self._read_stderr(process.stderr, emit),
        )
        await process.wait()

    @staticmethod
    async def _read_stdout(stream: asyncio.StreamReader, emit: OutputSink) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            text = decoder.decode(data, final=not data)
            if text:
                emit(text)
            if not data:
                break

    @staticmethod
    async def _read_stderr(stream: asyncio.StreamReader, emit: OutputSink) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            pending += decoder.decode(data, final=not data)
            lines = pending.splitlines(keepends=True)
            if data and lines and not lines[-1].endswith(("\n", "\r")):
                pending = lines.pop()
            else:
                pending = ""
            for line in lines:
                if STDERR_ERROR_MARKER in line.lower():
                    emit(f"\n[stderr] {line}")
            if not data:
                break

    async def _watch_cancel(self, process: asyncio.subprocess.Process, is_cancelled: CancelCheck) -> None:
        while process.returncode is None:
            if is_cancelled():
                logger.info(f"Run cancelled, stopping pid {process.pid}")
                await self._stop(process)
                return
            await asyncio.sleep(CANCEL_POLL_SECONDS)

    async def _stop(self, process: asyncio.subprocess.Process) -> None:
        """Terminate, then kill if the process ignores SIGTERM."""
        if not terminate_process(process):
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.terminate_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"pid {process.pid} ignored SIGTERM, killing")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()


class ClaudeExecutor(BaseCLIExecutor):
    """Run tasks through the Claude Code CLI in non-interactive print mode."""

    CLI_NAME = "claude"

    def __init__(
        self,
        cli_path: Optional[str] = None,
        permission_mode: str = "bypassPermissions",
        allowed_tools: Optional[list[str]] = None,
        shell_tool: str = "Bash",
        default_model: str = AgentModel.OPUS.value,
        terminate_grace_seconds: float = 5.0,
    ):
        super().__init__(
            cli_path=cli_path,
            allowed_tools=allowed_tools,
            shell_tool=shell_tool,
            default_model=default_model,
            terminate_grace_seconds=terminate_grace_seconds,
        )
        self.permission_mode = permission_mode

    def _build_command(self, invocation: AgentInvocation) -> list[str]:
        """Build the Claude CLI command."""
        cmd = [
            self.cli_path,
            "-p", invocation.prompt,
            "--permission-mode", self.permission_mode,
        ]

        if invocation.allowed_tools:
            cmd.extend(["--allowedTools", " ".join(invocation.allowed_tools)])

        if invocation.output_format:
            cmd.extend(["--output-format", invocation.output_format])

        cmd.extend(["--model", invocation.model or self.default_model])
        return cmd


def create_executor(config) -> ClaudeExecutor:
    """Create the agent executor described by an OrchestratorConfig."""
    executor = ClaudeExecutor(
        cli_path=config.cli_path,
        permission_mode=config.permission_mode,
        allowed_tools=list(config.allowed_tools),
        shell_tool=config.shell_tool,
        default_model=config.default_model,
        terminate_grace_seconds=config.terminate_grace_seconds,
    )
    if not executor.check_cli_available():
        logger.warning(f"{executor.cli_path} CLI not found in PATH")
    return executor
