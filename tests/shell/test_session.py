import asyncio

import pytest

from shellmux.errors import (
    AccessDenied,
    SessionClosed,
    StartupIOError,
    StartupTimeout,
    UnexpectedTermination,
)
from shellmux.settings import Settings
from shellmux.shell import (
    EXIT_TERMINATED,
    CollectingCommand,
    Command,
    CommandState,
    SessionKind,
    SessionState,
    ShellSession,
)
from tests.fakes import DenyingShell, FakeBackend, FakeShell, SilentShell, settle


def _session(backend: FakeBackend, **kwargs) -> ShellSession:
    settings = Settings(sentinel_token="T0K", startup_timeout_s=1.0, close_timeout_s=1.0)
    return ShellSession(
        SessionKind.plain, ["/bin/sh"], settings=settings, backend=backend, **kwargs
    )


@pytest.mark.asyncio
async def test_echo_hello_scenario() -> None:
    backend = FakeBackend()
    session = _session(backend)
    await session.start()
    assert session.state is SessionState.ready

    cmd = await session.submit(CollectingCommand("echo hello"))
    assert await cmd.wait_for_finish(timeout=1.0) == 0
    assert cmd.output_lines == ["hello"]

    handle = backend.handles[0]
    assert handle.writes[0] == "echo Started\n"
    assert handle.writes[1] == "echo hello\necho T0K 0 $?\n"
    await session.close()
    await session.wait_closed(timeout=1.0)


@pytest.mark.asyncio
async def test_false_scenario_has_no_output_and_exit_code_one() -> None:
    session = _session(FakeBackend())
    await session.start()

    cmd = await session.submit(CollectingCommand("false"))
    assert await cmd.result(timeout=1.0) == 1
    assert cmd.output_lines == []

    await session.close()
    await session.wait_closed(timeout=1.0)


@pytest.mark.asyncio
async def test_ids_follow_submission_order() -> None:
    session = _session(FakeBackend())
    await session.start()

    cmds = [await session.submit(CollectingCommand(f"echo {i}")) for i in range(5)]
    for cmd in cmds:
        await cmd.wait_for_finish(timeout=1.0)

    assert [c.id for c in cmds] == [0, 1, 2, 3, 4]
    assert [c.output_lines for c in cmds] == [[str(i)] for i in range(5)]
    assert session.commands == cmds
    await session.close()
    await session.wait_closed(timeout=1.0)


@pytest.mark.asyncio
async def test_submit_after_close_fails() -> None:
    session = _session(FakeBackend())
    await session.start()

    await session.close()
    assert session.state in (SessionState.closing, SessionState.closed)
    with pytest.raises(SessionClosed):
        await session.submit(Command("true"))

    await session.wait_closed(timeout=1.0)
    assert session.state is SessionState.closed
    with pytest.raises(SessionClosed):
        await session.submit(Command("true"))


@pytest.mark.asyncio
async def test_close_is_idempotent_and_drains_pending_commands() -> None:
    backend = FakeBackend()
    session = _session(backend)
    await session.start()

    cmd = await session.submit(Command("true"))
    await session.close()
    await session.close()
    await session.wait_closed(timeout=1.0)
    await session.close()

    assert cmd.state is CommandState.finished
    assert backend.handles[0].writes[-1] == "\nexit 0\n"
    assert not session.is_open


@pytest.mark.asyncio
async def test_shell_death_terminates_outstanding_commands() -> None:
    closed: list[ShellSession] = []
    session = _session(FakeBackend(), on_closed=closed.append)
    await session.start()

    before = await session.submit(Command("true"))
    killer = await session.submit(Command("exit 3"))
    after = await session.submit(Command("echo never"))

    assert await before.wait_for_finish(timeout=1.0) == 0
    for cmd in (killer, after):
        assert await cmd.wait_for_finish(timeout=1.0) == EXIT_TERMINATED
        with pytest.raises(UnexpectedTermination):
            await cmd.result()

    await session.wait_closed(timeout=1.0)
    assert closed == [session]
    with pytest.raises(SessionClosed):
        await session.submit(Command("true"))


@pytest.mark.asyncio
async def test_failed_start_closes_session() -> None:
    closed: list[ShellSession] = []
    session = _session(FakeBackend(DenyingShell), on_closed=closed.append)

    with pytest.raises(AccessDenied):
        await session.start()

    assert session.state is SessionState.closed
    assert closed == [session]
    with pytest.raises(SessionClosed):
        await session.submit(Command("true"))


@pytest.mark.asyncio
async def test_spawn_error_becomes_startup_io_error() -> None:
    class _Broken(FakeBackend):
        async def spawn(self, opts):
            raise FileNotFoundError(2, "No such file", opts.argv[0])

    session = _session(_Broken())
    with pytest.raises(StartupIOError, match="Could not start /bin/sh"):
        await session.start()
    assert session.state is SessionState.closed


@pytest.mark.asyncio
async def test_kill_forces_shutdown() -> None:
    class _Stuck(FakeShell):
        def run_line(self, line: str) -> None:
            # Ignores exit so close() alone never ends the shell.
            if not line.startswith("exit"):
                super().run_line(line)

    backend = FakeBackend(_Stuck)
    session = _session(backend)
    await session.start()
    await session.close()
    with pytest.raises(asyncio.TimeoutError):
        await session.wait_closed(timeout=0.05)

    await session.kill()

    assert backend.handles[0].terminated
    assert session.state is SessionState.closed


@pytest.mark.asyncio
async def test_close_during_startup_is_kept() -> None:
    backend = FakeBackend(SilentShell)
    session = _session(backend)
    starting = asyncio.create_task(session.start())
    await settle()
    assert session.state is SessionState.starting

    await session.close()
    handle = backend.handles[0]
    handle.emit("Started")
    await asyncio.wait_for(starting, timeout=1.0)

    assert session.state is SessionState.closing
    assert not session.is_open
    with pytest.raises(SessionClosed):
        await session.submit(Command("true"))

    await settle()
    assert handle.writes[-1] == "\nexit 0\n"
    handle.finish(0)
    await session.wait_closed(timeout=1.0)
    assert session.state is SessionState.closed


@pytest.mark.asyncio
async def test_explicit_zero_startup_timeout_is_used() -> None:
    settings = Settings(sentinel_token="T0K", startup_timeout_s=30.0)
    backend = FakeBackend(SilentShell)
    session = ShellSession(
        SessionKind.plain, ["/bin/sh"], settings=settings, backend=backend
    )

    with pytest.raises(StartupTimeout):
        await asyncio.wait_for(session.start(timeout_s=0), timeout=1.0)

    assert backend.handles[0].killed
    assert session.state is SessionState.closed
