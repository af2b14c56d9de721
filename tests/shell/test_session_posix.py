import os
import shutil
from pathlib import Path

import pytest

from shellmux.errors import AccessDenied, StartupTimeout
from shellmux.proc.base import SpawnOptions
from shellmux.proc.local import LocalSubprocessBackend
from shellmux.settings import Settings, ShellProgram
from shellmux.shell import (
    EXIT_TERMINATED,
    CollectingCommand,
    SessionKind,
    SessionRegistry,
    SessionState,
)

pytestmark = pytest.mark.skipif(
    os.name != "posix" or not Path("/bin/sh").exists(),
    reason="POSIX-only tests",
)


class _CountingBackend(LocalSubprocessBackend):
    def __init__(self) -> None:
        super().__init__()
        self.spawns = 0

    async def spawn(self, opts: SpawnOptions):
        self.spawns += 1
        return await super().spawn(opts)


def _settings(**kwargs) -> Settings:
    base = dict(sentinel_token="T0K", startup_timeout_s=10.0, close_timeout_s=5.0)
    base.update(kwargs)
    return Settings(**base)


@pytest.mark.asyncio
async def test_plain_shell_runs_batches_in_one_process(tmp_path: Path) -> None:
    registry = SessionRegistry(_settings(cwd=str(tmp_path)))
    session = await registry.start_shell()
    try:
        hello = await session.submit(CollectingCommand("echo hello"))
        failing = await session.submit(CollectingCommand("false"))
        multi = await session.submit(
            CollectingCommand("X=42", "echo value=$X", "echo err 1>&2")
        )
        pwd = await session.submit(CollectingCommand("pwd"))

        assert await hello.result(timeout=10) == 0
        assert hello.output_lines == ["hello"]
        assert await failing.result(timeout=10) == 1
        assert failing.output_lines == []
        assert await multi.result(timeout=10) == 0
        assert multi.output_lines == ["value=42", "err"]
        assert await pwd.result(timeout=10) == 0
        assert pwd.output_lines == [str(tmp_path.resolve())]
        assert "T0K" not in "".join(hello.output_lines + multi.output_lines)

        again = await registry.start_shell()
        assert again is session
    finally:
        await registry.close_all()
    assert session.state is SessionState.closed
    assert not registry.is_open(SessionKind.plain)


@pytest.mark.asyncio
async def test_output_without_trailing_newline_is_kept() -> None:
    registry = SessionRegistry(_settings())
    try:
        cmd = await registry.run(CollectingCommand("printf 'no newline'"))
        assert await cmd.result(timeout=10) == 0
        assert cmd.output_lines == ["no newline"]
    finally:
        await registry.close_all()


@pytest.mark.asyncio
async def test_exit_inside_batch_terminates_outstanding_commands() -> None:
    registry = SessionRegistry(_settings())
    session = await registry.start_shell()
    dying = await session.submit(CollectingCommand("echo bye", "exit 3"))
    after = await session.submit(CollectingCommand("echo never"))

    assert await dying.wait_for_finish(timeout=10) == EXIT_TERMINATED
    assert await after.wait_for_finish(timeout=10) == EXIT_TERMINATED
    assert dying.output_lines == ["bye"]
    await session.wait_closed(timeout=10)
    assert not registry.is_open(SessionKind.plain)


@pytest.mark.asyncio
async def test_elevated_denial_is_not_retried() -> None:
    backend = _CountingBackend()
    settings = _settings(
        elevated=ShellProgram(
            program="/bin/sh", args=["-c", "echo 'su: permission denied'; exit 1"]
        ),
        elevated_retries=3,
    )
    registry = SessionRegistry(settings, backend=backend)

    with pytest.raises(AccessDenied):
        await registry.start_elevated_shell()

    assert backend.spawns == 1
    assert not registry.is_open(SessionKind.elevated)


@pytest.mark.asyncio
async def test_silent_interpreter_times_out_and_is_killed() -> None:
    settings = _settings(
        plain=ShellProgram(program="/bin/sh", args=["-c", "sleep 30"]),
        startup_timeout_s=0.5,
    )
    backend = _CountingBackend()
    registry = SessionRegistry(settings, backend=backend)

    with pytest.raises(StartupTimeout):
        await registry.start_shell()

    assert backend.spawns == 1
    assert not registry.is_any_open()


@pytest.mark.asyncio
async def test_custom_interpreter() -> None:
    bash = shutil.which("bash")
    if bash is None:
        pytest.skip("bash not installed")
    registry = SessionRegistry(_settings())
    try:
        session = await registry.start_custom_shell(bash)
        cmd = await session.submit(CollectingCommand("echo ${BASH_VERSION:+bash}"))
        assert await cmd.result(timeout=10) == 0
        assert cmd.output_lines == ["bash"]
        assert registry.get_open_session() is session
    finally:
        await registry.close_all()


@pytest.mark.asyncio
async def test_line_longer_than_read_limit_keeps_session_alive() -> None:
    registry = SessionRegistry(_settings(read_limit=1024))
    try:
        session = await registry.start_shell()
        long = await session.submit(
            CollectingCommand("head -c 5000 /dev/zero | tr '\\0' a; echo")
        )
        after = await session.submit(CollectingCommand("echo after"))

        assert await long.result(timeout=10) == 0
        assert "".join(long.output_lines) == "a" * 5000
        assert await after.result(timeout=10) == 0
        assert after.output_lines == ["after"]
        assert session.is_open
    finally:
        await registry.close_all()
