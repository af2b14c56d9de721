from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

from shellmux.logger import logger
from shellmux.proc.base import ProcessHandle

from . import sentinel
from .command import EXIT_UNPARSABLE, Command
from .command_list import CommandList


class OutputDemultiplexer:
    """
    Sole reader of the shell's merged stdout/stderr.

    Lines are attributed to commands[read] until that command's sentinel
    arrives; then the command is finished and the cursor advances, so the
    output of batch k is complete before any line of batch k+1 is delivered.
    At end of stream every command still outstanding is terminated.
    """

    def __init__(
        self,
        handle: ProcessHandle,
        commands: CommandList,
        *,
        token: str,
        exit_grace_s: float = 5.0,
    ) -> None:
        self._handle = handle
        self._commands = commands
        self._token = token
        self._exit_grace_s = exit_grace_s
        self.read = 0
        self._current: Optional[Command] = None

    async def run(self) -> None:
        try:
            while True:
                raw = await self._handle.readline()
                if raw is None:
                    break
                self.feed(raw.rstrip("\r\n"))
        except (OSError, ValueError, RuntimeError) as exc:
            logger.exception("Shell output failed", pid=self._handle.pid, exc=exc)
        finally:
            await self._shutdown()

    def feed(self, line: str) -> None:
        match = sentinel.decode(self._token, line)
        if match is None:
            self._forward(line)
            return

        if not match.is_terminal_for(self.read):
            logger.warning(
                "Ignoring malformed sentinel",
                line=line,
                expected=self.read,
                index=match.index,
            )
            self._forward(line)
            return

        if match.prefix:
            self._forward(match.prefix)

        command = self._resolve()
        if command is None:
            # Sentinel for a batch that was never submitted here.
            logger.warning("Sentinel without command", line=line, index=self.read)
            return

        exit_code = match.exit_code
        if exit_code is None:
            logger.warning(
                "Unparsable exit code in sentinel", line=line, index=self.read
            )
            exit_code = EXIT_UNPARSABLE
        logger.debug("Command finished", index=self.read, exit_code=exit_code)
        command._finish(exit_code)
        self.read += 1
        self._current = None

    def _resolve(self) -> Optional[Command]:
        if self._current is None:
            self._current = self._commands.get(self.read)
        return self._current

    def _forward(self, line: str) -> None:
        command = self._resolve()
        if command is None:
            logger.debug("Discarding unattributed output", line=line)
            return
        command._deliver(line)

    async def _shutdown(self) -> None:
        logger.info("Read all output", pid=self._handle.pid)
        await self._commands.close()

        try:
            await asyncio.wait_for(self._handle.wait(), timeout=self._exit_grace_s)
        except asyncio.TimeoutError:
            logger.warning("Shell closed its output but did not exit", pid=self._handle.pid)
            with contextlib.suppress(ProcessLookupError, OSError):
                await self._handle.kill()

        async with self._commands.condition:
            leftover = 0
            index = self.read
            while True:
                command = self._commands.get(index)
                if command is None:
                    break
                if command._terminate():
                    leftover += 1
                index += 1
        self._current = None
        if leftover:
            logger.warning(
                "Shell terminated with commands outstanding",
                pid=self._handle.pid,
                count=leftover,
                returncode=self._handle.returncode,
            )
        logger.info("Shell destroyed", pid=self._handle.pid)
