from typing import List, Dict, Optional, Final, Literal
from enum import Enum
import re
from pydantic import BaseModel, Field
from pydantic import field_validator


# Sentinel marker echoed after every batch. Not secret; only needs to be
# unlikely to show up in ordinary command output.
DEFAULT_SENTINEL_TOKEN: Final[str] = "F*D^W@#FGF"

# Line written during startup; the shell is ready once it is echoed back.
DEFAULT_CANARY: Final[str] = "Started"

# Output lines that mean the privilege-escalation program refused access.
DEFAULT_DENIAL_PATTERNS: Final[List[str]] = [
    r"permission denied",
    r"access denied",
    r"not allowed",
    r"not in the sudoers",
    r"authentication failure",
]

# asyncio StreamReader limit for a single output line (bytes).
DEFAULT_READ_LIMIT: Final[int] = 1024 * 1024


class LogLevel(str, Enum):
    debug = "debug"
    info = "info"
    warning = "warning"
    error = "error"
    critical = "critical"


class LoggingSettings(BaseModel):
    # Level for the "shellmux" logger if not overridden.
    default_level: LogLevel = LogLevel.info
    # Mapping of logger name -> level override (e.g., {"asyncio": "debug"})
    enabled_loggers: Dict[str, LogLevel] = Field(default_factory=dict)
    # Optional file to write logs to; None keeps the current handlers.
    file: Optional[str] = None


class ShellProgram(BaseModel):
    # Program and args used to start a long-lived shell process
    program: str
    args: List[str] = Field(default_factory=list)

    def argv(self) -> List[str]:
        return [self.program, *self.args]


class ProcessEnvSettings(BaseModel):
    inherit_parent: bool = True
    allowlist: Optional[List[str]] = None
    denylist: Optional[List[str]] = None
    defaults: Dict[str, str] = Field(default_factory=dict)


class Settings(BaseModel):
    # Backend key in the process backend registry.
    backend: Literal["local"] = "local"
    # Interpreter for "plain" sessions
    plain: ShellProgram = Field(
        default_factory=lambda: ShellProgram(program="/bin/sh")
    )
    # Privilege-escalation interpreter for "elevated" sessions
    elevated: ShellProgram = Field(default_factory=lambda: ShellProgram(program="su"))
    sentinel_token: str = DEFAULT_SENTINEL_TOKEN
    canary: str = DEFAULT_CANARY
    # Seconds the startup probe waits for the canary
    startup_timeout_s: float = 20.0
    # Extra construction attempts for elevated sessions
    elevated_retries: int = 3
    # Seconds close_all() waits for a shell to exit before killing it
    close_timeout_s: float = 5.0
    denial_patterns: List[str] = Field(
        default_factory=lambda: list(DEFAULT_DENIAL_PATTERNS)
    )
    read_limit: int = DEFAULT_READ_LIMIT
    cwd: Optional[str] = None
    env: ProcessEnvSettings = Field(default_factory=ProcessEnvSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("sentinel_token", "canary")
    @classmethod
    def _validate_marker(cls, v: str) -> str:
        if not v:
            raise ValueError("marker must be non-empty")
        if any(ch.isspace() for ch in v):
            raise ValueError(f"marker {v!r} must not contain whitespace")
        return v

    @field_validator("denial_patterns")
    @classmethod
    def _validate_patterns(cls, v: List[str]) -> List[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid regex pattern {pattern!r}: {exc}") from exc
        return v

    @field_validator("startup_timeout_s", "close_timeout_s")
    @classmethod
    def _validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("elevated_retries")
    @classmethod
    def _validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("elevated_retries must be >= 0")
        return v
