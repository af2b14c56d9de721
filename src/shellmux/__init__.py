from .errors import (
    AccessDenied,
    CommandStateError,
    SessionClosed,
    ShellError,
    StartupError,
    StartupIOError,
    StartupTimeout,
    UnexpectedTermination,
)
from .settings import Settings, load_settings
from .shell import (
    EXIT_TERMINATED,
    EXIT_UNPARSABLE,
    CollectingCommand,
    Command,
    CommandState,
    SessionKind,
    SessionRegistry,
    SessionState,
    ShellSession,
)

__version__ = "0.1.0"
