from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Optional

from shellmux.errors import CommandStateError, UnexpectedTermination
from shellmux.logger import logger

# Exit code reported when the shell died before the command finished.
EXIT_TERMINATED = -1
# Exit code reported when the sentinel arrived but its exit field was garbage.
EXIT_UNPARSABLE = -2


class CommandState(str, Enum):
    pending = "pending"
    dispatched = "dispatched"
    finished = "finished"
    terminated = "terminated"


_TERMINAL = (CommandState.finished, CommandState.terminated)


OutputCallback = Callable[[int, str], None]
FinishedCallback = Callable[[int, int], None]


class Command:
    """
    One batch of shell lines submitted to a ShellSession.

    Output is delivered line by line through output(); completion is
    delivered exactly once through command_finished(). Subclasses may
    override either hook instead of passing callbacks.

    Callers must inspect the terminal state (wait_for_finish()/result());
    a shell that dies mid-session is reported only through it.
    """

    def __init__(
        self,
        *lines: str,
        on_output: Optional[OutputCallback] = None,
        on_finished: Optional[FinishedCallback] = None,
    ) -> None:
        if not lines:
            raise ValueError("Command needs at least one line")
        self.lines: tuple[str, ...] = tuple(lines)
        self.id: Optional[int] = None
        self._on_output = on_output
        self._on_finished = on_finished
        self._state = CommandState.pending
        self._exit_code: Optional[int] = None
        self._done = asyncio.Event()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.id}, state={self._state.value}, "
            f"exit_code={self._exit_code}, lines={self.lines!r})"
        )

    @property
    def state(self) -> CommandState:
        return self._state

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    @property
    def done(self) -> bool:
        return self._state in _TERMINAL

    @property
    def terminated(self) -> bool:
        return self._state is CommandState.terminated

    def render(self) -> str:
        return "".join(f"{line}\n" for line in self.lines)

    # Hooks

    def output(self, command_id: int, line: str) -> None:
        if self._on_output is not None:
            self._on_output(command_id, line)

    def command_finished(self, command_id: int, exit_code: int) -> None:
        if self._on_finished is not None:
            self._on_finished(command_id, exit_code)

    # Lifecycle, driven by the session

    def _assign(self, command_id: int) -> None:
        if self.id is not None:
            raise CommandStateError(f"Command already submitted with id {self.id}")
        self.id = command_id

    def _mark_dispatched(self) -> None:
        if self._state is not CommandState.pending:
            raise CommandStateError(
                f"Command {self.id} cannot be dispatched from {self._state.value}"
            )
        self._state = CommandState.dispatched

    def _deliver(self, line: str) -> None:
        assert self.id is not None
        try:
            self.output(self.id, line)
        except Exception as exc:
            logger.exception("Command output sink failed", command_id=self.id, exc=exc)

    def _complete(self, state: CommandState, exit_code: int) -> bool:
        """Move to a terminal state. Returns False when already terminal."""
        if self._state in _TERMINAL:
            return False
        self._state = state
        self._exit_code = exit_code
        self._done.set()
        assert self.id is not None
        try:
            self.command_finished(self.id, exit_code)
        except Exception as exc:
            logger.exception(
                "Command completion hook failed", command_id=self.id, exc=exc
            )
        return True

    def _finish(self, exit_code: int) -> bool:
        return self._complete(CommandState.finished, exit_code)

    def _terminate(self) -> bool:
        return self._complete(CommandState.terminated, EXIT_TERMINATED)

    # Waiting

    async def wait_for_finish(self, timeout: Optional[float] = None) -> int:
        """
        Wait until the command is finished or terminated and return its exit code.

        Raises asyncio.TimeoutError if `timeout` elapses first. The command
        keeps running in the shell; close the session to stop it.
        """
        if not self._done.is_set():
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
        assert self._exit_code is not None
        return self._exit_code

    async def result(self, timeout: Optional[float] = None) -> int:
        exit_code = await self.wait_for_finish(timeout=timeout)
        if self._state is CommandState.terminated:
            raise UnexpectedTermination(self)
        return exit_code


class CollectingCommand(Command):
    """Command that keeps every output line in memory."""

    def __init__(
        self,
        *lines: str,
        on_output: Optional[OutputCallback] = None,
        on_finished: Optional[FinishedCallback] = None,
    ) -> None:
        super().__init__(*lines, on_output=on_output, on_finished=on_finished)
        self.output_lines: list[str] = []

    def output(self, command_id: int, line: str) -> None:
        self.output_lines.append(line)
        super().output(command_id, line)

    @property
    def text(self) -> str:
        return "\n".join(self.output_lines)
