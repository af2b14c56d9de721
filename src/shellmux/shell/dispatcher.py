from __future__ import annotations

import contextlib
from typing import Optional

from shellmux.logger import logger
from shellmux.proc.base import ProcessHandle

from . import sentinel
from .command import Command
from .command_list import CommandList


class InputDispatcher:
    """
    Sole writer of the shell's stdin.

    Sends batches strictly in submission order: every line of a command,
    then the sentinel echo carrying its index, then a drain. Once the list
    is closing and fully sent, asks the shell to exit and closes stdin.
    """

    def __init__(
        self,
        handle: ProcessHandle,
        commands: CommandList,
        *,
        token: str,
    ) -> None:
        self._handle = handle
        self._commands = commands
        self._token = token
        self.next = 0

    async def run(self) -> None:
        try:
            while True:
                command = await self._next_command()
                if command is None:
                    if self._handle.alive():
                        await self._handle.write("\nexit 0\n")
                        logger.info("Closing shell", pid=self._handle.pid)
                    return
                if command.done:
                    # Force-completed after the shell died; nothing to send.
                    self.next += 1
                    continue
                await self._send(command)
        except (OSError, RuntimeError) as exc:
            # Shell went away; the demultiplexer terminates what is left.
            logger.exception(
                "Shell input failed", pid=self._handle.pid, index=self.next, exc=exc
            )
        finally:
            with contextlib.suppress(OSError, RuntimeError):
                await self._handle.close_stdin()

    async def _next_command(self) -> Optional[Command]:
        cond = self._commands.condition
        async with cond:
            await cond.wait_for(
                lambda: self._commands.closing or self.next < len(self._commands)
            )
            # Drain everything submitted before the close.
            return self._commands.get(self.next)

    async def _send(self, command: Command) -> None:
        command._mark_dispatched()
        logger.debug("Sending command", index=self.next, lines=list(command.lines))
        await self._handle.write(command.render() + sentinel.encode(self._token, self.next))
        self.next += 1
