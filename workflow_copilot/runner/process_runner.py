"""Subprocess runner for the external completion tool.

One call to ProcessRunner.run() spawns exactly one ``<launcher> -p <prompt>``
process with stdin closed, captures stdout/stderr incrementally and resolves
with an ExecutionResult. The runner never retries; retry is a caller decision.

Cancellation:
  A caller that passed a correlation_id to run() may call cancel() with the
  same id at any time. The live process is looked up in the runner's
  ProcessRegistry, sent SIGTERM, and SIGKILLed after a 500 ms grace period if
  it has not exited.

Attempt state machine:
  Each run owns an _Attempt that moves exactly once from PENDING to one of
  TIMED_OUT | EXITED | ERRORED | CANCELLED. Whichever handler settles the
  attempt first (timeout timer, process exit, stream error, cancel) decides
  the outcome; the others become no-ops. Settling also removes the registry
  entry, so the registry only ever holds PENDING attempts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Sequence

from workflow_copilot.errors import ErrorCode, user_message
from workflow_copilot.runner.cli_path import find_cli_launcher

logger = logging.getLogger("workflow_copilot.runner.process_runner")

DEFAULT_TIMEOUT_MS = 60_000
CANCEL_GRACE_PERIOD_S = 0.5
_STDERR_PREFIX_CHARS = 200
_READ_CHUNK_BYTES = 4096


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class ExecutionError:
    """Why a run failed. code is one of COMMAND_NOT_FOUND, TIMEOUT, CANCELLED, UNKNOWN_ERROR."""

    code: ErrorCode
    message: str
    details: str | None = None


@dataclass
class ExecutionResult:
    """Outcome of one subprocess lifecycle.

    success=True  → output holds trimmed stdout
    success=False → error is set
    """

    success: bool
    elapsed_ms: int
    output: str | None = None
    error: ExecutionError | None = None


@dataclass
class CancelResult:
    cancelled: bool
    elapsed_ms: int | None = None


# ---------------------------------------------------------------------------
# Per-attempt state machine
# ---------------------------------------------------------------------------


class AttemptState(str, Enum):
    PENDING = "pending"
    TIMED_OUT = "timed_out"
    EXITED = "exited"
    ERRORED = "errored"
    CANCELLED = "cancelled"


class _Attempt:
    """One in-flight subprocess and the latch deciding how it ended."""

    def __init__(self, correlation_id: str | None, process: asyncio.subprocess.Process, started_at: float) -> None:
        self.correlation_id = correlation_id
        self.process = process
        self.started_at = started_at
        self.state = AttemptState.PENDING

    def settle(self, state: AttemptState) -> bool:
        """Move PENDING → state. Returns False if another transition already won."""
        if self.state is not AttemptState.PENDING:
            return False
        self.state = state
        return True

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


class ProcessRegistry:
    """Live attempts keyed by correlation id.

    The single source of truth for "is this request still running". Owned by
    one ProcessRunner; separate runners (e.g. in tests) get separate registries.
    """

    def __init__(self) -> None:
        self._attempts: dict[str, _Attempt] = {}

    def register(self, correlation_id: str, attempt: _Attempt) -> None:
        if correlation_id in self._attempts:
            logger.warning("Correlation id %s already registered; replacing entry", correlation_id)
        self._attempts[correlation_id] = attempt
        logger.info("Registered process for %s (pid=%s)", correlation_id, attempt.process.pid)

    def unregister(self, correlation_id: str, attempt: _Attempt | None = None) -> _Attempt | None:
        """Remove and return the entry. When attempt is given, only remove if it is that attempt."""
        current = self._attempts.get(correlation_id)
        if current is None or (attempt is not None and current is not attempt):
            return None
        del self._attempts[correlation_id]
        logger.info("Unregistered process for %s", correlation_id)
        return current

    def get(self, correlation_id: str) -> _Attempt | None:
        return self._attempts.get(correlation_id)

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._attempts

    def __len__(self) -> int:
        return len(self._attempts)

    @property
    def correlation_ids(self) -> list[str]:
        return list(self._attempts)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class ProcessRunner:
    """Spawns the completion tool and tracks in-flight attempts for cancellation.

    launcher:  argv prefix for the tool, e.g. ("claude",) or ("npx", "claude").
               None = auto-detect on first run (see cli_path.find_cli_launcher).
    registry:  live-process registry; a fresh one is created when omitted.
    cwd:       working directory for the subprocess (workspace root).
    """

    def __init__(
        self,
        launcher: Sequence[str] | None = None,
        registry: ProcessRegistry | None = None,
        cwd: Path | str | None = None,
        grace_period_s: float = CANCEL_GRACE_PERIOD_S,
    ) -> None:
        self._launcher: tuple[str, ...] | None = tuple(launcher) if launcher else None
        self.registry = registry if registry is not None else ProcessRegistry()
        self._cwd = str(cwd) if cwd is not None else None
        self._grace_period_s = grace_period_s

    async def _resolve_launcher(self) -> tuple[str, ...]:
        if self._launcher is None:
            self._launcher = await find_cli_launcher()
        return self._launcher

    # ------------------------------------------------------------------
    # run
    # ------------------------------------------------------------------

    async def run(
        self,
        prompt: str,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        correlation_id: str | None = None,
    ) -> ExecutionResult:
        """Run the tool once with ``-p <prompt>`` and wait for it to finish."""
        started_at = time.monotonic()
        launcher = await self._resolve_launcher()
        argv = [*launcher, "-p", prompt]

        logger.info(
            "Starting completion tool: prompt %d chars, timeout %d ms, correlation_id=%s",
            len(prompt), timeout_ms, correlation_id,
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
            )
        except FileNotFoundError as e:
            logger.error("Completion tool not found: %s", e)
            return _failure(ErrorCode.COMMAND_NOT_FOUND, str(e), started_at)
        except OSError as e:
            logger.error("Failed to spawn completion tool: %s", e)
            return _failure(ErrorCode.UNKNOWN_ERROR, str(e), started_at)

        # No await between spawn and register: a cancel cannot slip in between.
        attempt = _Attempt(correlation_id, process, started_at)
        if correlation_id:
            self.registry.register(correlation_id, attempt)

        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []

        try:
            try:
                returncode = await asyncio.wait_for(
                    _collect(process, stdout_chunks, stderr_chunks),
                    timeout=timeout_ms / 1000,
                )
            except asyncio.TimeoutError:
                if self._settle(attempt, AttemptState.TIMED_OUT):
                    await _kill(process)
                    logger.warning(
                        "Completion tool timed out after %d ms (correlation_id=%s)",
                        timeout_ms, correlation_id,
                    )
                    return _failure(
                        ErrorCode.TIMEOUT,
                        f"Timeout after {timeout_ms}ms",
                        started_at,
                    )
                return self._already_settled(attempt)
            except (OSError, ValueError) as e:
                if self._settle(attempt, AttemptState.ERRORED):
                    await _kill(process)
                    logger.error("Completion tool stream error: %s", e)
                    return _failure(ErrorCode.UNKNOWN_ERROR, str(e), started_at)
                return self._already_settled(attempt)

            if not self._settle(attempt, AttemptState.EXITED):
                return self._already_settled(attempt)

            stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
            stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
            elapsed_ms = attempt.elapsed_ms()

            if returncode == 0:
                logger.info(
                    "Completion tool succeeded in %d ms (%d chars of output)",
                    elapsed_ms, len(stdout),
                )
                return ExecutionResult(success=True, elapsed_ms=elapsed_ms, output=stdout.strip())

            logger.error(
                "Completion tool exited with code %s after %d ms: %s",
                returncode, elapsed_ms, stderr[:_STDERR_PREFIX_CHARS],
            )
            return ExecutionResult(
                success=False,
                elapsed_ms=elapsed_ms,
                error=ExecutionError(
                    code=ErrorCode.UNKNOWN_ERROR,
                    message="Generation failed - please try again or rephrase your request",
                    details=f"Exit code: {returncode}, stderr: {stderr[:_STDERR_PREFIX_CHARS]}",
                ),
            )
        finally:
            if correlation_id:
                self.registry.unregister(correlation_id, attempt)
            if process.returncode is None:
                # Caller task was cancelled mid-run; do not leave the tool running.
                try:
                    process.kill()
                except ProcessLookupError:
                    logger.debug("Process %s already gone", process.pid)

    def _settle(self, attempt: _Attempt, state: AttemptState) -> bool:
        """First transition wins; the winner also clears the registry entry."""
        if not attempt.settle(state):
            return False
        if attempt.correlation_id:
            self.registry.unregister(attempt.correlation_id, attempt)
        return True

    def _already_settled(self, attempt: _Attempt) -> ExecutionResult:
        """Result for a run whose attempt was settled elsewhere (cancel)."""
        logger.info("Attempt %s ended as %s", attempt.correlation_id, attempt.state.value)
        return ExecutionResult(
            success=False,
            elapsed_ms=attempt.elapsed_ms(),
            error=ExecutionError(
                code=ErrorCode.CANCELLED,
                message=user_message(ErrorCode.CANCELLED),
                details=f"Attempt state: {attempt.state.value}",
            ),
        )

    # ------------------------------------------------------------------
    # cancel
    # ------------------------------------------------------------------

    async def cancel(self, correlation_id: str) -> CancelResult:
        """Terminate the live process for correlation_id.

        Returns cancelled=False when nothing is registered under that id
        (never started, or already finished / timed out / cancelled).
        """
        attempt = self.registry.get(correlation_id)
        if attempt is None or not self._settle(attempt, AttemptState.CANCELLED):
            logger.warning("No active refinement found for correlation_id %s", correlation_id)
            return CancelResult(cancelled=False)

        elapsed_ms = attempt.elapsed_ms()
        process = attempt.process
        logger.info("Cancelling %s (pid=%s, elapsed %d ms)", correlation_id, process.pid, elapsed_ms)

        try:
            process.terminate()
        except ProcessLookupError:
            return CancelResult(cancelled=True, elapsed_ms=elapsed_ms)

        try:
            await asyncio.wait_for(process.wait(), timeout=self._grace_period_s)
        except asyncio.TimeoutError:
            if process.returncode is None:
                process.kill()
                logger.warning("Forcefully killed process for %s", correlation_id)

        return CancelResult(cancelled=True, elapsed_ms=elapsed_ms)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _drain(stream: asyncio.StreamReader | None, sink: list[bytes]) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            return
        sink.append(chunk)


async def _collect(
    process: asyncio.subprocess.Process,
    stdout_chunks: list[bytes],
    stderr_chunks: list[bytes],
) -> int:
    await asyncio.gather(
        _drain(process.stdout, stdout_chunks),
        _drain(process.stderr, stderr_chunks),
    )
    return await process.wait()


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            return
    await process.wait()


def _failure(code: ErrorCode, details: str, started_at: float) -> ExecutionResult:
    return ExecutionResult(
        success=False,
        elapsed_ms=int((time.monotonic() - started_at) * 1000),
        error=ExecutionError(code=code, message=user_message(code), details=details),
    )
