from .command import (
    EXIT_TERMINATED,
    EXIT_UNPARSABLE,
    CollectingCommand,
    Command,
    CommandState,
)
from .registry import SessionRegistry
from .session import SessionKind, SessionState, ShellSession

__all__ = [
    "EXIT_TERMINATED",
    "EXIT_UNPARSABLE",
    "CollectingCommand",
    "Command",
    "CommandState",
    "SessionKind",
    "SessionRegistry",
    "SessionState",
    "ShellSession",
]
