from .base import (
    EnvPolicy,
    ProcessBackend,
    ProcessHandle,
    SpawnOptions,
    get_backend,
    register_backend,
)
from .local import LocalSubprocessBackend

register_backend("local", lambda: LocalSubprocessBackend())

__all__ = [
    "EnvPolicy",
    "ProcessBackend",
    "ProcessHandle",
    "SpawnOptions",
    "LocalSubprocessBackend",
    "get_backend",
    "register_backend",
]
