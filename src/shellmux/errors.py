from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from shellmux.shell.command import Command


class ShellError(Exception):
    """Base class for all shellmux errors."""


class StartupError(ShellError):
    """The shell subprocess could not be brought to a usable state."""


class StartupTimeout(StartupError):
    pass


class AccessDenied(StartupError):
    """The privilege-escalation request was explicitly refused."""


class StartupIOError(StartupError):
    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class SessionClosed(ShellError):
    """A command was submitted to a session that is closing or closed."""


class CommandStateError(ShellError):
    pass


class UnexpectedTermination(ShellError):
    def __init__(self, command: "Command") -> None:
        super().__init__(
            f"Shell terminated before command {command.id} finished"
        )
        self.command = command


__all__ = [
    "ShellError",
    "StartupError",
    "StartupTimeout",
    "AccessDenied",
    "StartupIOError",
    "SessionClosed",
    "CommandStateError",
    "UnexpectedTermination",
]
