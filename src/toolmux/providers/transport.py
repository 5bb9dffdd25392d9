"""Process transport — one provider subprocess and its stdio channel.

Messages are JSON-RPC objects framed one per line (MCP stdio framing):
stdin carries outbound requests, stdout inbound responses and
notifications. Stderr is drained into a bounded tail buffer and logged;
it is never parsed as protocol data.

The transport exclusively owns its :class:`ProcessHandle`. The handle
moves to :attr:`ProcessState.EXITED` exactly once, whether the child is
terminated or dies on its own.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import os
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mcp.types import JSONRPCMessage
from pydantic import ValidationError

from toolmux.core.errors import (
    LaunchFailedError,
    TransportClosedError,
    TransportProtocolError,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 200
STREAM_LIMIT = 16 * 1024 * 1024  # max bytes per frame
DEFAULT_STARTUP_GRACE = 0.1
DEFAULT_TERMINATE_GRACE = 2.0


class ProcessState(enum.Enum):
    RUNNING = "running"
    EXITED = "exited"


@dataclass(slots=True)
class ProcessHandle:
    """A live (or reaped) provider subprocess."""

    pid: int
    argv: list[str]
    process: asyncio.subprocess.Process = field(repr=False)
    stderr_tail: deque[str] = field(
        default_factory=lambda: deque(maxlen=STDERR_TAIL_LINES), repr=False
    )
    state: ProcessState = ProcessState.RUNNING

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def exited(self) -> bool:
        return self.state is ProcessState.EXITED

    def stderr_text(self) -> str:
        return "\n".join(self.stderr_tail)


def encode_message(message: JSONRPCMessage) -> bytes:
    """Serialize one message as a newline-terminated JSON frame."""
    payload = message.model_dump_json(by_alias=True, exclude_none=True)
    return payload.encode("utf-8") + b"\n"


def decode_message(provider: str, line: bytes) -> JSONRPCMessage:
    """Parse one frame.

    Raises:
        TransportProtocolError: If the line is not a JSON-RPC message.
    """
    try:
        return JSONRPCMessage.model_validate_json(line)
    except ValidationError as exc:
        snippet = line[:120].decode("utf-8", errors="replace").strip()
        msg = f"Malformed frame: {snippet!r}"
        raise TransportProtocolError(provider, msg) from exc


class ProcessTransport:
    """Bidirectional message channel over a subprocess's standard streams.

    Create instances with :meth:`launch`.
    """

    def __init__(self, handle: ProcessHandle, *, name: str) -> None:
        self.name = name
        self._handle = handle
        self._closing = False
        self._lock = asyncio.Lock()
        self._stderr_task: asyncio.Task[None] | None = None
        self._exit_task: asyncio.Task[None] | None = None

    # ── Lifecycle ────────────────────────────────────────────────

    @classmethod
    async def launch(
        cls,
        executable: str | os.PathLike[str],
        args: Sequence[str] = (),
        *,
        name: str | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        startup_grace: float = DEFAULT_STARTUP_GRACE,
    ) -> ProcessTransport:
        """Spawn ``executable`` with ``args`` and wire up its streams.

        The child must survive ``startup_grace`` seconds to count as
        launched.

        Raises:
            LaunchFailedError: Missing binary, permission denied, any
                other spawn error, or the child exited immediately.
        """
        argv = [os.fspath(executable), *args]
        label = name or os.path.basename(argv[0])
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **env} if env else None,
                cwd=cwd,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as exc:
            msg = f"Executable not found: {argv[0]}"
            raise LaunchFailedError(label, msg) from exc
        except PermissionError as exc:
            msg = f"Permission denied: {argv[0]}"
            raise LaunchFailedError(label, msg) from exc
        except OSError as exc:
            raise LaunchFailedError(label, f"Spawn failed: {exc}") from exc

        handle = ProcessHandle(pid=process.pid, argv=argv, process=process)
        transport = cls(handle, name=label)
        transport._start_watchers()
        try:
            await transport._await_startup(startup_grace)
        except BaseException:
            transport._kill()
            raise

        logger.info(
            "Launched %s (pid %d)",
            label,
            process.pid,
            extra={
                "event": "provider_launched",
                "provider": label,
                "pid": process.pid,
            },
        )
        return transport

    def _start_watchers(self) -> None:
        self._stderr_task = asyncio.create_task(
            self._drain_stderr(), name=f"{self.name}:stderr"
        )
        self._exit_task = asyncio.create_task(
            self._watch_exit(), name=f"{self.name}:exit"
        )

    async def _await_startup(self, grace: float) -> None:
        if grace <= 0 or self._exit_task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._exit_task), grace)
        except TimeoutError:
            return
        await self._finish_stderr()
        returncode = self._handle.returncode
        raise LaunchFailedError(
            self.name,
            f"Process exited immediately with code {returncode}",
            returncode=returncode,
            stderr=self._handle.stderr_text(),
        )

    async def _drain_stderr(self) -> None:
        stream = self._handle.process.stderr
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            self._handle.stderr_tail.append(text)
            logger.debug("[%s stderr] %s", self.name, text)

    async def _finish_stderr(self) -> None:
        task = self._stderr_task
        if task is None or task.done():
            return
        await asyncio.wait({task}, timeout=1.0)
        if not task.done():
            task.cancel()

    async def _watch_exit(self) -> None:
        await self._handle.process.wait()
        self._mark_exited()

    def _mark_exited(self) -> None:
        handle = self._handle
        if handle.state is ProcessState.EXITED:
            return
        handle.state = ProcessState.EXITED
        if self._closing:
            logger.debug("%s exited with code %s", self.name, handle.returncode)
            return
        logger.warning(
            "%s exited unexpectedly with code %s",
            self.name,
            handle.returncode,
            extra={
                "event": "provider_exited",
                "provider": self.name,
                "returncode": handle.returncode,
            },
        )

    def _kill(self) -> None:
        process = self._handle.process
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()

    async def terminate(self, grace: float = DEFAULT_TERMINATE_GRACE) -> int | None:
        """Stop the child and reap it. Safe to call more than once.

        Closes stdin first so well-behaved servers exit on their own, then
        escalates to SIGTERM and finally SIGKILL.
        """
        async with self._lock:
            self._closing = True
            process = self._handle.process
            try:
                if process.stdin is not None and not process.stdin.is_closing():
                    process.stdin.close()
                if process.returncode is None:
                    await self._wait_or_escalate(process, grace)
                await process.wait()
                await self._finish_stderr()
            except BaseException:
                self._kill()
                raise
            finally:
                self._mark_exited()
                for task in (self._stderr_task, self._exit_task):
                    if task is not None and not task.done():
                        task.cancel()
            return process.returncode

    async def _wait_or_escalate(
        self,
        process: asyncio.subprocess.Process,
        grace: float,
    ) -> None:
        try:
            await asyncio.wait_for(process.wait(), grace)
            return
        except TimeoutError:
            pass
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), grace)
            return
        except TimeoutError:
            pass
        logger.warning("%s ignored SIGTERM; killing", self.name)
        self._kill()

    def __del__(self) -> None:
        # Reap-on-discard: a dropped transport must not leave its child running.
        handle = getattr(self, "_handle", None)
        if handle is not None and handle.process.returncode is None:
            with contextlib.suppress(ProcessLookupError, RuntimeError):
                handle.process.kill()

    # ── Channel ──────────────────────────────────────────────────

    @property
    def handle(self) -> ProcessHandle:
        return self._handle

    @property
    def closed(self) -> bool:
        return self._closing or self._handle.exited

    async def send(self, message: JSONRPCMessage) -> None:
        """Write one message to the child's stdin.

        Raises:
            TransportClosedError: If the channel is closed or the pipe broke.
        """
        stdin = self._handle.process.stdin
        if self.closed or stdin is None or stdin.is_closing():
            raise TransportClosedError(self.name, "Channel is closed")
        try:
            stdin.write(encode_message(message))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise TransportClosedError(self.name, f"Write failed: {exc}") from exc

    async def receive(self) -> JSONRPCMessage | None:
        """Read the next message; ``None`` once stdout is closed.

        Raises:
            TransportProtocolError: For a malformed or oversized frame. The
                channel stays usable; the next call reads the next frame.
        """
        stdout = self._handle.process.stdout
        if stdout is None:
            return None
        while True:
            try:
                line = await stdout.readline()
            except ValueError as exc:
                msg = f"Frame too large: {exc}"
                raise TransportProtocolError(self.name, msg) from exc
            if not line:
                return None
            if line.strip():
                return decode_message(self.name, line)
