from __future__ import annotations
import asyncio
import contextlib
import os
import signal
import uuid
from pathlib import Path
from typing import Optional, Dict
from .base import (
    ProcessBackend,
    ProcessHandle,
    SpawnOptions,
    EnvPolicy,
)


def _build_env(policy: EnvPolicy, overlay: Optional[Dict[str, str]]) -> Dict[str, str]:
    base: Dict[str, str] = {}
    if policy.inherit_parent:
        base = dict(os.environ)
        if policy.allowlist is not None:
            allow = set(policy.allowlist)
            base = {k: v for k, v in base.items() if k in allow}
        if policy.denylist is not None:
            for k in policy.denylist:
                base.pop(k, None)
    base.update(policy.defaults or {})
    if overlay:
        base.update(overlay)
    return base


class LocalProcessHandle(ProcessHandle):
    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        name: Optional[str],
        *,
        use_process_group: bool = True,
    ) -> None:
        self._proc = proc
        self.id = str(uuid.uuid4())
        self.name = name
        self._use_pg = bool(use_process_group and os.name == "posix")
        self._in_long_line = False

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    def alive(self) -> bool:
        return self._proc.returncode is None

    async def write(self, data: str | bytes) -> None:
        if self._proc.stdin is None:
            raise BrokenPipeError("stdin is not available")
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._proc.stdin.write(data)
        await self._proc.stdin.drain()

    async def close_stdin(self) -> None:
        stdin = self._proc.stdin
        if stdin is None or stdin.is_closing():
            return
        stdin.close()
        # The peer may already be gone; a broken pipe here means "closed".
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await stdin.wait_closed()

    async def readline(self) -> Optional[str]:
        """
        Return the next output line (with its newline) or None at EOF.

        A line longer than the stream limit is returned in several pieces,
        each at most one buffer long.
        """
        stdout = self._proc.stdout
        if stdout is None:
            return None
        while True:
            try:
                line = await stdout.readuntil(b"\n")
            except asyncio.IncompleteReadError as exc:
                line = exc.partial
            except asyncio.LimitOverrunError as exc:
                self._in_long_line = True
                chunk = await stdout.readexactly(exc.consumed)
                return chunk.decode("utf-8", errors="replace")
            if not line:
                return None
            if self._in_long_line:
                self._in_long_line = False
                if line == b"\n":
                    # Terminator of an oversized line already handed out.
                    continue
            return line.decode("utf-8", errors="replace")

    async def terminate(self, grace_s: float = 5.0) -> None:
        if self._proc.returncode is not None:
            return

        try:
            if self._use_pg and self._proc.pid is not None:
                os.killpg(self._proc.pid, signal.SIGTERM)
            else:
                self._proc.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(self._proc.wait(), timeout=grace_s)
        except asyncio.TimeoutError:
            # The process did not terminate gracefully, so escalate to kill().
            await self.kill()

    async def kill(self) -> None:
        if self._proc.returncode is not None:
            # Already exited; still reap it so transports are released.
            await self._proc.wait()
            return

        try:
            if self._use_pg and self._proc.pid is not None:
                os.killpg(self._proc.pid, signal.SIGKILL)
            else:
                self._proc.kill()
        except ProcessLookupError:
            # Process was already gone before we could kill it.
            pass

        await self._proc.wait()

    async def wait(self) -> int:
        return await self._proc.wait()


class LocalSubprocessBackend(ProcessBackend):
    def __init__(self, env_policy: Optional[EnvPolicy] = None) -> None:
        self.env_policy: EnvPolicy = env_policy or EnvPolicy()

    async def spawn(self, opts: SpawnOptions) -> ProcessHandle:
        if not opts.argv:
            raise ValueError("argv must not be empty")
        cwd: Optional[str | Path] = opts.cwd
        env = _build_env(self.env_policy, opts.env_overlay)
        proc = await asyncio.create_subprocess_exec(
            *opts.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=(
                asyncio.subprocess.STDOUT
                if opts.merge_stderr
                else asyncio.subprocess.DEVNULL
            ),
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            # Own session/process group so killpg() reaches the whole tree.
            start_new_session=bool(opts.use_process_group and os.name == "posix"),
            limit=opts.read_limit,
        )
        return LocalProcessHandle(
            proc, opts.name, use_process_group=opts.use_process_group
        )
