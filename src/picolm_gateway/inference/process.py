"""Drive the PicoLM binary as a child process under a deadline.

One ``RunHandle`` owns one child process for the lifetime of one request.
It is an async context manager: leaving the block (normally, by exception,
or by task cancellation) kills the child if it is still running and reaps
it, and joins the helper tasks.

The run's stop cause is recorded where it is decided (watchdog, mid-stream
check, deliberate early stop) and failures are classified from it, never
from error text.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum

from picolm_gateway.config import PicoLMConfig
from picolm_gateway.inference.engine import InferenceRequest, SamplingParams
from picolm_gateway.inference.errors import (
    EngineError,
    InferenceCancelled,
    InferenceError,
    InferenceTimeout,
)

logger = logging.getLogger(__name__)

# Engines print one increment per line; allow long lines before giving up
_STREAM_LIMIT = 1024 * 1024


class StopCause(Enum):
    NONE = "none"
    DEADLINE = "deadline"
    CANCELLED = "cancelled"
    STOPPED = "stopped"  # we ended the run ourselves after a framing token


@dataclass
class RunOutput:
    """Captured result of a finished one-shot run."""

    stdout: str
    stderr: str
    returncode: int
    elapsed: float


# ── Argument and deadline resolution ────────────────────────────────────────


def resolve_sampling(request: InferenceRequest, config: PicoLMConfig) -> SamplingParams:
    """Request overrides win over configured defaults; zero/None means unset."""
    return SamplingParams(
        max_tokens=request.max_tokens or config.max_tokens,
        threads=config.threads,
        temperature=request.temperature or config.temperature,
        top_p=request.top_p or config.top_p,
        json_mode=bool(request.tools),
    )


def build_args(model_path: str, params: SamplingParams) -> list[str]:
    """Command-line arguments for the engine (binary excluded)."""
    args = [
        model_path,
        "-n", str(params.max_tokens),
        "-j", str(params.threads),
        "-t", f"{params.temperature:.1f}",
        "-k", f"{params.top_p:.1f}",
    ]
    if params.json_mode:
        args.append("--json")
    return args


def resolve_timeout(max_tokens: int, config: PicoLMConfig) -> float:
    """Seconds allowed for a run.

    A fixed ``timeout_seconds`` wins; otherwise the deadline grows linearly
    with the token budget and is capped, approximating generation time
    without knowing the engine's throughput.
    """
    if config.timeout_seconds > 0:
        return float(config.timeout_seconds)
    estimated = config.timeout_base_seconds + max_tokens * config.timeout_per_token_seconds
    return min(estimated, config.timeout_max_seconds)


# ── Run handle ──────────────────────────────────────────────────────────────


class RunHandle:
    """A live engine process plus its pipes, deadline, and cancellation watchdog."""

    def __init__(
        self,
        binary: str,
        args: list[str],
        prompt: str,
        timeout: float,
        max_tokens: int,
        cancel: asyncio.Event | None = None,
    ) -> None:
        self.binary = binary
        self.args = args
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._prompt = prompt.encode("utf-8")
        self._cancel = cancel
        self._cause = StopCause.NONE
        self._deadline = 0.0
        self._started = 0.0
        self._proc: asyncio.subprocess.Process | None = None
        self._watchdog_task: asyncio.Task | None = None
        self._feeder_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._stderr = b""

    async def __aenter__(self) -> RunHandle:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def cause(self) -> StopCause:
        return self._cause

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    @property
    def stderr(self) -> str:
        return self._stderr.decode("utf-8", errors="replace")

    async def start(self) -> None:
        """Launch the engine and arm the watchdog."""
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.binary,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            raise EngineError(f"failed to start picolm: {exc}") from exc

        self._started = time.monotonic()
        self._deadline = asyncio.get_running_loop().time() + self.timeout
        self._watchdog_task = asyncio.create_task(self._watchdog())
        logger.debug(
            "Started picolm pid=%d timeout=%.1fs args=%s", self._proc.pid, self.timeout, self.args
        )

    async def _watchdog(self) -> None:
        """Kill the child when the deadline passes or the caller cancels."""
        try:
            if self._cancel is None:
                await asyncio.sleep(self.timeout)
                cause = StopCause.DEADLINE
            else:
                await asyncio.wait_for(self._cancel.wait(), timeout=self.timeout)
                cause = StopCause.CANCELLED
        except TimeoutError:
            cause = StopCause.DEADLINE

        if self._proc is not None and self._proc.returncode is None:
            self._set_cause(cause)
            logger.info("Stopping picolm pid=%d: %s", self._proc.pid, cause.value)
            self.kill()

    def _set_cause(self, cause: StopCause) -> None:
        # First decision wins
        if self._cause is StopCause.NONE:
            self._cause = cause

    def kill(self) -> None:
        if self._proc is not None and self._proc.returncode is None:
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass  # exited between the check and the signal

    def stop(self) -> None:
        """End the run deliberately; the outcome is not a failure."""
        self._set_cause(StopCause.STOPPED)
        self.kill()

    def check(self) -> None:
        """Raise the classified error if the deadline passed or the caller cancelled.

        Kills the child first, so a failing check never leaves it running.
        """
        if self._cancel is not None and self._cancel.is_set():
            self._set_cause(StopCause.CANCELLED)
        elif asyncio.get_running_loop().time() >= self._deadline:
            self._set_cause(StopCause.DEADLINE)

        error = self._interrupted_error()
        if error is not None:
            self.kill()
            raise error

    def _interrupted_error(self) -> InferenceError | None:
        if self._cause is StopCause.DEADLINE:
            return InferenceTimeout(self.timeout, self.max_tokens)
        if self._cause is StopCause.CANCELLED:
            return InferenceCancelled()
        return None

    def raise_for_status(self, returncode: int) -> None:
        """Classify a finished run: timeout, cancellation, engine failure, or success."""
        error = self._interrupted_error()
        if error is not None:
            raise error
        if self._cause is StopCause.STOPPED or returncode == 0:
            return
        stderr = self.stderr.strip()
        if stderr:
            raise EngineError(f"picolm error: {stderr}", stderr=stderr, exit_code=returncode)
        raise EngineError(f"picolm error: exit status {returncode}", exit_code=returncode)

    # ── one-shot ──

    async def communicate(self) -> RunOutput:
        """Send the prompt, collect all output, and classify the outcome."""
        assert self._proc is not None
        stdout, stderr = await self._proc.communicate(self._prompt)
        self._stderr = stderr
        returncode = self._proc.returncode
        self.raise_for_status(returncode)
        return RunOutput(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=self.stderr,
            returncode=returncode,
            elapsed=self.elapsed,
        )

    # ── streaming ──

    def open_stream(self) -> None:
        """Start feeding stdin and draining stderr in the background."""
        assert self._proc is not None
        self._feeder_task = asyncio.create_task(self._feed_stdin())
        # Drain stderr concurrently so a chatty engine can't stall on a full pipe
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    async def _feed_stdin(self) -> None:
        stdin = self._proc.stdin
        try:
            stdin.write(self._prompt)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # Engine exited without reading all input; its exit status reports why
            logger.debug("picolm closed stdin early (pid=%d)", self._proc.pid)
        finally:
            stdin.close()

    async def _drain_stderr(self) -> None:
        self._stderr = await self._proc.stderr.read()

    async def readline(self) -> str:
        """Next line of engine output, newline included; "" at end of output."""
        assert self._proc is not None
        try:
            line = await self._proc.stdout.readline()
        except ValueError as exc:  # line longer than the stream limit
            self.kill()
            raise EngineError(f"error reading picolm output: {exc}") from exc
        return line.decode("utf-8", errors="replace")

    async def wait(self) -> int:
        """Wait for exit and for the helper tasks; return the exit status."""
        assert self._proc is not None
        returncode = await self._proc.wait()
        helpers = [t for t in (self._feeder_task, self._stderr_task) if t is not None]
        if helpers:
            await asyncio.gather(*helpers)
        return returncode

    # ── teardown ──

    async def close(self) -> None:
        """Kill (if needed), reap, and join everything this handle started."""
        if self._watchdog_task is not None:
            self._watchdog_task.cancel()
            try:
                await self._watchdog_task
            except asyncio.CancelledError:
                pass
        if self._proc is None:
            return

        self.kill()
        await self._proc.wait()
        for task in (self._feeder_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        helpers = [t for t in (self._feeder_task, self._stderr_task) if t is not None]
        if helpers:
            await asyncio.gather(*helpers, return_exceptions=True)
        logger.debug(
            "picolm pid=%d exited with %s after %.2fs",
            self._proc.pid, self._proc.returncode, self.elapsed,
        )


async def run(
    binary: str,
    args: list[str],
    prompt: str,
    timeout: float,
    max_tokens: int,
    cancel: asyncio.Event | None = None,
) -> RunOutput:
    """One-shot run: prompt on stdin, full stdout back. Raises InferenceError."""
    async with RunHandle(binary, args, prompt, timeout, max_tokens, cancel) as handle:
        return await handle.communicate()
