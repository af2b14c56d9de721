from __future__ import annotations

import asyncio
import contextlib
import re
from typing import Iterable, Optional

from shellmux.errors import AccessDenied, StartupIOError, StartupTimeout
from shellmux.logger import logger
from shellmux.proc.base import ProcessHandle


class StartupProbe:
    """
    Verify that a freshly spawned shell is alive and reading its input.

    Writes `echo <canary>` and waits for the canary to come back on the
    merged output. A privilege-escalation program that refuses access
    usually prints a single complaint and exits, so the first lines are
    checked against the denial patterns.
    """

    def __init__(
        self,
        handle: ProcessHandle,
        *,
        canary: str,
        timeout_s: float,
        denial_patterns: Iterable[str] = (),
    ) -> None:
        self._handle = handle
        self._canary = canary
        self._timeout_s = timeout_s
        self._denial = [re.compile(p, re.IGNORECASE) for p in denial_patterns]
        self.banner: list[str] = []

    async def run(self) -> None:
        try:
            await asyncio.wait_for(self._probe(), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            await self._kill()
            raise StartupTimeout(
                f"Shell did not answer within {self._timeout_s:g}s"
                + (f": {self.banner[-1]}" if self.banner else "")
            ) from None
        except (AccessDenied, StartupIOError):
            await self._kill()
            raise

    async def _probe(self) -> None:
        write_error: Optional[BaseException] = None
        try:
            await self._handle.write(f"echo {self._canary}\n")
        except (OSError, RuntimeError) as exc:
            # Keep reading: a refusing program may have printed why it quit.
            write_error = exc

        while True:
            try:
                raw = await self._handle.readline()
            except (OSError, ValueError) as exc:
                raise StartupIOError(f"Could not read from shell: {exc}", exc) from exc
            if raw is None:
                if write_error is not None:
                    raise StartupIOError(
                        f"Could not write to shell: {write_error}", write_error
                    )
                raise StartupIOError(self._eof_message())

            line = raw.rstrip("\r\n")
            if line == self._canary:
                return
            if not line.strip():
                continue

            self.banner.append(line)
            if self._is_denial(line):
                raise AccessDenied(line)
            logger.debug("Shell startup output", line=line)

    def _is_denial(self, line: str) -> bool:
        return any(p.search(line) for p in self._denial)

    def _eof_message(self) -> str:
        rc: Optional[int] = self._handle.returncode
        detail = self.banner[-1] if self.banner else "no output"
        if rc is not None:
            return f"Shell exited with code {rc} before it was ready ({detail})"
        return f"Shell closed its output before it was ready ({detail})"

    async def _kill(self) -> None:
        with contextlib.suppress(ProcessLookupError, OSError):
            await self._handle.close_stdin()
        with contextlib.suppress(ProcessLookupError, OSError):
            await self._handle.kill()
