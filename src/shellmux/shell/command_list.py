from __future__ import annotations

import asyncio
from typing import Iterator, Optional

from shellmux.errors import SessionClosed

from .command import Command


class CommandList:
    """
    Append-only list of submitted commands shared by a session's tasks.

    Appends and the closing flag are guarded by `condition`; the dispatcher
    waits on it for new work. A command's id is its index in this list.
    """

    def __init__(self) -> None:
        self.condition = asyncio.Condition()
        self._commands: list[Command] = []
        self._closing = False

    def __len__(self) -> int:
        return len(self._commands)

    def __iter__(self) -> Iterator[Command]:
        return iter(list(self._commands))

    def get(self, index: int) -> Optional[Command]:
        if 0 <= index < len(self._commands):
            return self._commands[index]
        return None

    @property
    def closing(self) -> bool:
        return self._closing

    async def append(self, command: Command) -> Command:
        async with self.condition:
            if self._closing:
                raise SessionClosed("Unable to add commands to a closed shell")
            command._assign(len(self._commands))
            self._commands.append(command)
            self.condition.notify_all()
        return command

    async def close(self) -> bool:
        """Set the closing flag and wake waiters. Returns False if already set."""
        async with self.condition:
            if self._closing:
                return False
            self._closing = True
            self.condition.notify_all()
        return True
