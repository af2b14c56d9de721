from __future__ import annotations

import asyncio
import re
from typing import Optional

from shellmux.errors import (
    AccessDenied,
    SessionClosed,
    StartupError,
    StartupIOError,
    StartupTimeout,
    UnexpectedTermination,
)
from shellmux.logger import logger
from shellmux.proc.base import ProcessBackend
from shellmux.settings import Settings

from .command import CollectingCommand, Command
from .session import SessionKind, ShellSession

# get_open_session() preference order.
_OPEN_PRIORITY = (SessionKind.custom, SessionKind.elevated, SessionKind.plain)

_ROOT_UID = re.compile(r"\buid=0\b")


class SessionRegistry:
    """
    Owns at most one live ShellSession per kind.

    start() returns the ready session for a kind or builds a new one;
    sessions that close or die drop out so the next start() spawns afresh.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        backend: Optional[ProcessBackend] = None,
    ) -> None:
        self._settings = settings or Settings()
        self._backend = backend
        self._sessions: dict[SessionKind, ShellSession] = {}
        self._lock = asyncio.Lock()

    @property
    def settings(self) -> Settings:
        return self._settings

    def get(self, kind: SessionKind) -> Optional[ShellSession]:
        session = self._sessions.get(kind)
        if session is not None and session.is_open:
            return session
        return None

    def is_open(self, kind: SessionKind) -> bool:
        return self.get(kind) is not None

    def is_any_open(self) -> bool:
        return any(self.get(kind) is not None for kind in SessionKind)

    def get_open_session(self) -> Optional[ShellSession]:
        for kind in _OPEN_PRIORITY:
            session = self.get(kind)
            if session is not None:
                return session
        return None

    async def start(
        self,
        kind: SessionKind,
        *,
        interpreter: Optional[str] = None,
        timeout_s: Optional[float] = None,
        retries: Optional[int] = None,
    ) -> ShellSession:
        async with self._lock:
            existing = self.get(kind)
            if existing is not None:
                if interpreter is not None and existing.argv[0] != interpreter:
                    logger.warning(
                        "Custom shell already open with another interpreter",
                        open=existing.argv[0],
                        requested=interpreter,
                    )
                logger.debug("Using existing shell", kind=kind.value, pid=existing.pid)
                return existing

            argv = self._argv_for(kind, interpreter)
            if kind is SessionKind.elevated:
                attempts = 1 + (
                    retries if retries is not None else self._settings.elevated_retries
                )
            else:
                attempts = 1

            session = await self._start_with_retries(kind, argv, timeout_s, attempts)
            self._sessions[kind] = session
            return session

    async def start_shell(self, *, timeout_s: Optional[float] = None) -> ShellSession:
        return await self.start(SessionKind.plain, timeout_s=timeout_s)

    async def start_elevated_shell(
        self, *, timeout_s: Optional[float] = None, retries: Optional[int] = None
    ) -> ShellSession:
        return await self.start(SessionKind.elevated, timeout_s=timeout_s, retries=retries)

    async def start_custom_shell(
        self, interpreter: str, *, timeout_s: Optional[float] = None
    ) -> ShellSession:
        return await self.start(
            SessionKind.custom, interpreter=interpreter, timeout_s=timeout_s
        )

    def _argv_for(self, kind: SessionKind, interpreter: Optional[str]) -> list[str]:
        if kind is SessionKind.plain:
            return self._settings.plain.argv()
        if kind is SessionKind.elevated:
            return self._settings.elevated.argv()
        if not interpreter:
            raise ValueError("A custom session needs an interpreter path")
        return [interpreter]

    async def _start_with_retries(
        self,
        kind: SessionKind,
        argv: list[str],
        timeout_s: Optional[float],
        attempts: int,
    ) -> ShellSession:
        attempt = 0
        while True:
            attempt += 1
            session = ShellSession(
                kind,
                argv,
                settings=self._settings,
                backend=self._backend,
                on_closed=self._forget,
            )
            try:
                await session.start(timeout_s=timeout_s)
                return session
            except AccessDenied:
                logger.warning("Shell access denied", kind=kind.value, attempt=attempt)
                raise
            except (StartupIOError, StartupTimeout) as exc:
                if attempt >= attempts:
                    logger.error(
                        "Could not start shell", kind=kind.value, attempt=attempt, err=str(exc)
                    )
                    raise
                logger.warning(
                    "Retrying shell start", kind=kind.value, attempt=attempt, err=str(exc)
                )

    def _forget(self, session: ShellSession) -> None:
        if self._sessions.get(session.kind) is session:
            del self._sessions[session.kind]

    async def run(
        self, command: Command, kind: SessionKind = SessionKind.plain
    ) -> Command:
        session = await self.start(kind)
        return await session.submit(command)

    async def close(self, kind: SessionKind) -> None:
        # Held until the shell exits so a replacement cannot overlap it.
        async with self._lock:
            session = self._sessions.pop(kind, None)
            if session is None:
                return
            await session.close()
            try:
                await session.wait_closed(timeout=self._settings.close_timeout_s)
            except asyncio.TimeoutError:
                logger.warning(
                    "Shell did not exit after close, killing",
                    kind=kind.value,
                    pid=session.pid,
                )
                await session.kill()

    async def close_all(self) -> None:
        await asyncio.gather(*(self.close(kind) for kind in SessionKind))

    async def is_access_given(self, *, timeout_s: Optional[float] = None) -> bool:
        """Return True if an elevated shell runs commands as uid 0."""
        logger.info("Checking for root access")
        command = CollectingCommand("id")
        try:
            await self.run(command, SessionKind.elevated)
            await command.result(timeout=timeout_s)
        except (
            StartupError,
            SessionClosed,
            UnexpectedTermination,
            asyncio.TimeoutError,
        ) as exc:
            logger.warning("Root access check failed", err=str(exc) or type(exc).__name__)
            return False
        return any(_ROOT_UID.search(line) for line in command.output_lines)
