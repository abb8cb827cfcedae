"""Process runner with cooperative cancellation and a single typed outcome.

devctl runtime module v0.1.0

This module provides:
- One supervised child process per run
- Inherited or captured standard streams (stdout/stderr drained concurrently)
- Cooperative cancellation (SIGTERM -> timeout -> SIGKILL), waiting for the
  child's real termination
- Cancel-safe cleanup using asyncio.shield

Key design points:
- Every run resolves to exactly one ProcessResult: EXITED, SIGNALED,
  SPAWN_FAILED or CANCELLED
- If the child already has a return code when cancellation is observed,
  the exit result wins
- Once the child is gone, pipes are read for at most drain_timeout, so a
  background process that inherited them cannot hold the run open
- A set ``kill`` event skips the SIGTERM grace period
- Cancelling the awaiting task still terminates the child, then
  CancelledError propagates
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from .types import CancelSignal, ProcessResult, ProcessSpec, StdioMode

__all__ = [
    "ProcessRunner",
    "run_command",
    "IS_WINDOWS",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL
DEFAULT_DRAIN_TIMEOUT = 1.0  # seconds to keep reading pipes after the child is gone

_READ_SIZE = 4096


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


async def _cancel_task(task: asyncio.Task[Any]) -> None:
    if not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


@dataclass
class ProcessRunner:
    """Process runner resolving each run to one ProcessResult.

    Example:
        runner = ProcessRunner()
        cancel = asyncio.Event()
        result = await runner.run(
            ProcessSpec(argv=["docker", "compose", "up"]),
            cancel=cancel,
        )
        if not result.ok:
            print(result.describe())
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT

    async def run(
        self,
        spec: ProcessSpec,
        *,
        cancel: CancelSignal | None = None,
        kill: CancelSignal | None = None,
        on_stdout: Callable[[bytes], None] | None = None,
        on_stderr: Callable[[bytes], None] | None = None,
    ) -> ProcessResult:
        """Run the subprocess and wait for its outcome.

        Args:
            spec: Process specification
            cancel: Optional event; once set, the child is asked to terminate
            kill: Optional event; once set during termination, the child is
                killed without waiting out term_timeout
            on_stdout: Optional callback for stdout chunks (capture mode)
            on_stderr: Optional callback for stderr chunks (capture mode)

        Returns:
            The single outcome of the run
        """
        if cancel is not None and cancel.is_set():
            logger.debug(f"Cancelled before start: {spec.display}")
            return ProcessResult.was_cancelled()

        capture = spec.stdio == StdioMode.CAPTURE
        if spec.stdin_bytes is not None:
            stdin = asyncio.subprocess.PIPE
        elif capture:
            stdin = asyncio.subprocess.DEVNULL
        else:
            stdin = None

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdin=stdin,
                stdout=asyncio.subprocess.PIPE if capture else None,
                stderr=asyncio.subprocess.PIPE if capture else None,
                **self._build_subprocess_kwargs(spec),
            )
        except OSError as e:
            cause = f"{type(e).__name__}: {e}"
            logger.debug(f"Failed to start {spec.argv[0]}: {cause}")
            return ProcessResult.spawn_failed(cause)

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={spec.argv[0]} cwd={spec.cwd} stdio={spec.stdio.value}"
        )

        tasks: list[asyncio.Task[Any]] = []
        stdout_buffer = bytearray()
        stderr_buffer = bytearray()
        cancelled = False

        try:
            if process.stdout is not None:
                tasks.append(asyncio.create_task(
                    self._drain(process.stdout, stdout_buffer, on_stdout)
                ))
            if process.stderr is not None:
                tasks.append(asyncio.create_task(
                    self._drain(process.stderr, stderr_buffer, on_stderr)
                ))
            if spec.stdin_bytes is not None and process.stdin is not None:
                tasks.append(asyncio.create_task(self._feed_stdin(process, spec.stdin_bytes)))

            cancelled = await self._wait_or_cancel(process, cancel, kill)

            # After a cancel the pipes only get the drain window
            await self._await_pipes(process, tasks, None if cancelled else cancel)

        finally:
            await self._safe_cleanup(process, tasks, kill)

        output = {
            "stdout": bytes(stdout_buffer),
            "stderr": bytes(stderr_buffer),
            "pid": process.pid,
        }
        returncode = process.returncode

        if cancelled:
            logger.info(f"Subprocess cancelled pid={process.pid} returncode={returncode}")
            return ProcessResult.was_cancelled(**output)

        assert returncode is not None
        logger.debug(f"Subprocess completed pid={process.pid} returncode={returncode}")

        if returncode < 0:
            return ProcessResult.signaled(_signal_name(-returncode), **output)
        return ProcessResult.exited(returncode, **output)

    async def _wait_or_cancel(
        self,
        process: asyncio.subprocess.Process,
        cancel: CancelSignal | None,
        kill: CancelSignal | None,
    ) -> bool:
        """Wait for the child, terminating it if cancel fires first.

        Returns:
            True if the run ended because of cancellation
        """
        if cancel is None:
            await process.wait()
            return False

        wait_task = asyncio.create_task(process.wait())
        cancel_task = asyncio.create_task(cancel.wait())
        try:
            await asyncio.wait(
                {wait_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            await _cancel_task(cancel_task)

        # An exit code already in hand wins over a concurrent cancel
        if process.returncode is not None:
            await wait_task
            return False

        logger.debug(f"Cancellation requested pid={process.pid}")
        await self._terminate_process(process, kill)
        await wait_task
        return True

    async def _await_pipes(
        self,
        process: asyncio.subprocess.Process,
        tasks: Sequence[asyncio.Task[Any]],
        cancel: CancelSignal | None = None,
    ) -> None:
        """Let pipe tasks finish, for at most drain_timeout.

        The child has already exited here. A background process it started
        may still hold the pipes, so reading stops at the timeout, or as soon
        as ``cancel`` fires. Errors raised by a pipe task propagate.
        """
        if not tasks:
            return

        cancel_task: asyncio.Task[Any] | None = None
        if cancel is not None and not cancel.is_set():
            cancel_task = asyncio.create_task(cancel.wait())

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.drain_timeout
        pending = set(tasks)
        try:
            while pending:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                watched = (pending | {cancel_task}) if cancel_task else pending
                done, _ = await asyncio.wait(
                    watched,
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                pending -= done
                if cancel_task is not None and cancel_task in done:
                    logger.debug(f"Cancelled while draining pipes pid={process.pid}")
                    break
        finally:
            if cancel_task is not None:
                await _cancel_task(cancel_task)

        if pending:
            logger.debug(
                f"Pipes still open after exit pid={process.pid}, "
                f"stopped reading {len(pending)} stream(s)"
            )

        for task in tasks:
            if task.done() and not task.cancelled():
                task.result()

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        """Build kwargs for asyncio.create_subprocess_exec.

        Args:
            spec: Process specification

        Returns:
            Dict of kwargs
        """
        kwargs: dict[str, Any] = {}

        if spec.cwd is not None:
            kwargs["cwd"] = spec.cwd

        if spec.env is not None:
            kwargs["env"] = dict(spec.env)

        return kwargs

    async def _drain(
        self,
        stream: asyncio.StreamReader,
        buffer: bytearray,
        callback: Callable[[bytes], None] | None = None,
    ) -> None:
        """Read a pipe to EOF so the child never blocks on a full buffer.

        Chunks are appended to ``buffer`` as they arrive, so output read
        before the task is cancelled is kept.
        """
        while True:
            chunk = await stream.read(_READ_SIZE)
            if not chunk:
                break
            buffer.extend(chunk)
            if callback:
                callback(chunk)

    async def _feed_stdin(
        self,
        process: asyncio.subprocess.Process,
        data: bytes,
    ) -> None:
        assert process.stdin is not None
        try:
            process.stdin.write(data)
            await process.stdin.drain()
            process.stdin.close()
            await process.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            # Child exited without reading all of stdin
            logger.debug(f"stdin closed early by pid={process.pid}")

    async def _safe_cleanup(
        self,
        process: asyncio.subprocess.Process,
        tasks: Sequence[asyncio.Task[Any]],
        kill: CancelSignal | None = None,
    ) -> None:
        """Cleanup shielded from cancellation of the calling task.

        Args:
            process: The subprocess to terminate if still running
            tasks: Pipe tasks to cancel if still pending
            kill: Event that skips the SIGTERM grace period
        """
        try:
            await asyncio.shield(self._do_cleanup(process, tasks, kill))
        except asyncio.CancelledError:
            # If shield itself is cancelled, still try cleanup
            await self._do_cleanup(process, tasks, kill)
            raise

    async def _do_cleanup(
        self,
        process: asyncio.subprocess.Process,
        tasks: Sequence[asyncio.Task[Any]],
        kill: CancelSignal | None = None,
    ) -> None:
        # Terminate subprocess if still running
        if process.returncode is None:
            await self._terminate_process(process, kill)

        for task in tasks:
            if not task.done():
                await _cancel_task(task)
            elif not task.cancelled() and task.exception() is not None:
                logger.debug(f"Pipe task failed pid={process.pid}: {task.exception()}")

    async def _wait_for_exit(
        self,
        process: asyncio.subprocess.Process,
        timeout: float,
        interrupt: CancelSignal | None = None,
    ) -> bool:
        """Wait up to ``timeout`` for the child to exit.

        Returns early when ``interrupt`` fires.

        Returns:
            True if the child has exited
        """
        wait_task = asyncio.create_task(process.wait())
        watched: set[asyncio.Task[Any]] = {wait_task}
        interrupt_task: asyncio.Task[Any] | None = None
        if interrupt is not None:
            interrupt_task = asyncio.create_task(interrupt.wait())
            watched.add(interrupt_task)

        try:
            await asyncio.wait(watched, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in watched:
                await _cancel_task(task)

        return process.returncode is not None

    async def _terminate_process(
        self,
        process: asyncio.subprocess.Process,
        kill: CancelSignal | None = None,
    ) -> None:
        """Terminate the child gracefully, then forcefully if needed.

        Termination strategy:
        1. terminate() (SIGTERM on POSIX, TerminateProcess on Windows)
        2. Wait up to term_timeout for exit, cut short if ``kill`` is set
        3. If still running, kill() (SIGKILL)
        4. Wait up to kill_timeout for forced exit

        Args:
            process: The subprocess to terminate
            kill: Event that skips the SIGTERM grace period
        """
        pid = process.pid

        try:
            if kill is not None and kill.is_set():
                logger.debug(f"Force kill requested, skipping SIGTERM pid={pid}")
            else:
                logger.debug(f"Terminating subprocess pid={pid}")
                process.terminate()

                if await self._wait_for_exit(process, self.term_timeout, kill):
                    logger.debug(
                        f"Subprocess terminated gracefully pid={pid} "
                        f"returncode={process.returncode}"
                    )
                    return

            logger.debug(f"Force killing subprocess pid={pid}")
            process.kill()

            if await self._wait_for_exit(process, self.kill_timeout):
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={process.returncode}"
                )
            else:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            # Process already exited
            logger.debug(f"Subprocess already exited pid={pid}")


async def run_command(
    command: str,
    args: Sequence[str] = (),
    *,
    cancel: CancelSignal | None = None,
    runner: ProcessRunner | None = None,
    **options: Any,
) -> ProcessResult:
    """Run ``command`` with ``args`` and return its outcome.

    Args:
        command: Executable name or path
        args: Arguments
        cancel: Optional cancellation event
        runner: Runner to use (default: ProcessRunner())
        **options: Extra ProcessSpec fields (cwd, env, stdin_bytes, stdio)

    Returns:
        The single outcome of the run
    """
    runner = runner or ProcessRunner()
    spec = ProcessSpec(argv=[command, *args], **options)
    logger.info(f" > {spec.display}")
    return await runner.run(spec, cancel=cancel)
