from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Protocol, runtime_checkable, Callable

from shellmux.settings.models import DEFAULT_READ_LIMIT


@dataclass
class EnvPolicy:
    inherit_parent: bool = True
    allowlist: Optional[list[str]] = None
    denylist: Optional[list[str]] = None
    defaults: Dict[str, str] = field(default_factory=dict)


@dataclass
class SpawnOptions:
    argv: list[str]
    name: Optional[str] = None
    cwd: Optional[Path] = None
    env_overlay: Optional[Dict[str, str]] = None
    # Redirect stderr into stdout so callers read a single ordered stream.
    merge_stderr: bool = True
    # When True, the subprocess is placed into its own process group so that
    # terminate()/kill() reach every child the shell started.
    use_process_group: bool = True
    # Maximum length of a single output line in bytes.
    read_limit: int = DEFAULT_READ_LIMIT


@runtime_checkable
class ProcessHandle(Protocol):
    id: str
    name: Optional[str]

    @property
    def pid(self) -> Optional[int]: ...
    @property
    def returncode(self) -> Optional[int]: ...
    def alive(self) -> bool: ...

    async def write(self, data: str | bytes) -> None: ...
    async def close_stdin(self) -> None: ...
    async def readline(self) -> Optional[str]: ...
    async def terminate(self, grace_s: float = 5.0) -> None: ...
    async def kill(self) -> None: ...
    async def wait(self) -> int: ...


class ProcessBackend(Protocol):
    env_policy: EnvPolicy

    async def spawn(self, opts: SpawnOptions) -> ProcessHandle: ...


# Backend registry
_BACKENDS: dict[str, Callable[[], ProcessBackend]] = {}


def register_backend(name: str, factory: Callable[[], ProcessBackend]) -> None:
    _BACKENDS[name] = factory


def get_backend(name: str) -> ProcessBackend:
    if name not in _BACKENDS:
        raise ValueError(f"Unknown process backend: {name!r}")
    return _BACKENDS[name]()
