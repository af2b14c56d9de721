from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from shellmux.errors import SessionClosed, StartupIOError
from shellmux.logger import logger
from shellmux.proc.base import EnvPolicy, ProcessBackend, ProcessHandle, SpawnOptions, get_backend
from shellmux.settings import Settings

from .command import Command
from .command_list import CommandList
from .demux import OutputDemultiplexer
from .dispatcher import InputDispatcher
from .probe import StartupProbe


class SessionKind(str, Enum):
    plain = "plain"
    elevated = "elevated"
    custom = "custom"


class SessionState(str, Enum):
    unstarted = "unstarted"
    starting = "starting"
    ready = "ready"
    closing = "closing"
    closed = "closed"


class ShellSession:
    """
    One long-lived shell subprocess driven as a command-execution engine.

    start() spawns the interpreter and probes it; once ready, an
    InputDispatcher task writes submitted batches to stdin and an
    OutputDemultiplexer task routes merged output back to each command.
    """

    def __init__(
        self,
        kind: SessionKind,
        argv: list[str],
        *,
        settings: Optional[Settings] = None,
        backend: Optional[ProcessBackend] = None,
        on_closed: Optional[Callable[["ShellSession"], None]] = None,
    ) -> None:
        self.kind = kind
        self.argv = list(argv)
        self._settings = settings or Settings()
        self._backend = backend
        self._on_closed = on_closed
        self._state = SessionState.unstarted
        self._commands = CommandList()
        self._handle: Optional[ProcessHandle] = None
        self._input_task: Optional[asyncio.Task[None]] = None
        self._output_task: Optional[asyncio.Task[None]] = None
        self._closed = asyncio.Event()

    def __repr__(self) -> str:
        return f"ShellSession(kind={self.kind.value}, pid={self.pid}, state={self._state.value})"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.ready and not self._commands.closing

    @property
    def pid(self) -> Optional[int]:
        return self._handle.pid if self._handle is not None else None

    @property
    def commands(self) -> list[Command]:
        return list(self._commands)

    async def start(self, timeout_s: Optional[float] = None) -> None:
        if self._state is not SessionState.unstarted:
            raise RuntimeError(f"Session already {self._state.value}")
        self._state = SessionState.starting
        logger.info("Starting shell", kind=self.kind.value, argv=self.argv)

        try:
            self._handle = await self._spawn()
            probe = StartupProbe(
                self._handle,
                canary=self._settings.canary,
                timeout_s=(
                    timeout_s if timeout_s is not None else self._settings.startup_timeout_s
                ),
                denial_patterns=self._settings.denial_patterns,
            )
            await probe.run()
        except BaseException:
            if self._handle is not None and self._handle.alive():
                with contextlib.suppress(ProcessLookupError, OSError):
                    await self._handle.kill()
            self._mark_closed()
            raise

        # close() during startup only flagged the command list.
        self._state = (
            SessionState.closing if self._commands.closing else SessionState.ready
        )
        token = self._settings.sentinel_token
        dispatcher = InputDispatcher(self._handle, self._commands, token=token)
        demux = OutputDemultiplexer(
            self._handle,
            self._commands,
            token=token,
            exit_grace_s=self._settings.close_timeout_s,
        )
        self._input_task = asyncio.create_task(dispatcher.run())
        self._output_task = asyncio.create_task(self._run_output(demux))
        logger.info("Shell ready", kind=self.kind.value, pid=self.pid)

    async def _spawn(self) -> ProcessHandle:
        backend = self._backend
        if backend is None:
            backend = get_backend(self._settings.backend)
            env = self._settings.env
            backend.env_policy = EnvPolicy(
                inherit_parent=env.inherit_parent,
                allowlist=env.allowlist,
                denylist=env.denylist,
                defaults=dict(env.defaults),
            )
        opts = SpawnOptions(
            argv=self.argv,
            name=f"shell-{self.kind.value}",
            cwd=Path(self._settings.cwd) if self._settings.cwd else None,
            merge_stderr=True,
            read_limit=self._settings.read_limit,
        )
        try:
            return await backend.spawn(opts)
        except OSError as exc:
            raise StartupIOError(f"Could not start {self.argv[0]}: {exc}", exc) from exc

    async def _run_output(self, demux: OutputDemultiplexer) -> None:
        try:
            await demux.run()
        finally:
            if self._input_task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await self._input_task
            self._mark_closed()

    def _mark_closed(self) -> None:
        if self._state is SessionState.closed:
            return
        self._state = SessionState.closed
        self._closed.set()
        logger.info("Shell closed", kind=self.kind.value, pid=self.pid)
        if self._on_closed is not None:
            self._on_closed(self)

    async def submit(self, command: Command) -> Command:
        """
        Queue a command for execution and return it.

        Raises SessionClosed once close() was called or the shell died.
        Completion, including unexpected termination, is reported only
        through the command itself.
        """
        if self._state is not SessionState.ready:
            raise SessionClosed(f"Shell session is {self._state.value}")
        return await self._commands.append(command)

    async def close(self) -> None:
        if self._state in (SessionState.unstarted, SessionState.closed):
            return
        if await self._commands.close():
            logger.info("Close requested", kind=self.kind.value, pid=self.pid)
        if self._state is SessionState.ready:
            self._state = SessionState.closing

    async def wait_closed(self, timeout: Optional[float] = None) -> None:
        if self._state is SessionState.unstarted:
            return
        await asyncio.wait_for(self._closed.wait(), timeout=timeout)

    async def kill(self) -> None:
        """
        Force the shell down: SIGTERM to its process group, SIGKILL after
        close_timeout_s. Outstanding commands end up terminated.
        """
        await self.close()
        if self._handle is not None:
            with contextlib.suppress(ProcessLookupError, OSError):
                await self._handle.terminate(grace_s=self._settings.close_timeout_s)
        if self._output_task is not None:
            await self._output_task
