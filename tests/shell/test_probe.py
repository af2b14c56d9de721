import pytest

from shellmux.errors import AccessDenied, StartupIOError, StartupTimeout
from shellmux.settings import DEFAULT_DENIAL_PATTERNS
from shellmux.shell.probe import StartupProbe
from tests.fakes import DeadShell, DenyingShell, FakeHandle, FakeShell, SilentShell


def _probe(handle: FakeHandle, timeout_s: float = 1.0) -> StartupProbe:
    return StartupProbe(
        handle,
        canary="Started",
        timeout_s=timeout_s,
        denial_patterns=DEFAULT_DENIAL_PATTERNS,
    )


@pytest.mark.asyncio
async def test_probe_succeeds_when_canary_echoes() -> None:
    handle = FakeShell()
    handle.emit("", "Welcome to the shell")
    probe = _probe(handle)

    await probe.run()

    assert handle.writes == ["echo Started\n"]
    assert probe.banner == ["Welcome to the shell"]
    assert handle.alive()


@pytest.mark.asyncio
async def test_probe_reports_access_denied() -> None:
    handle = DenyingShell()

    with pytest.raises(AccessDenied, match="permission denied"):
        await _probe(handle).run()

    assert handle.killed
    assert handle.stdin_closed


@pytest.mark.asyncio
async def test_denial_match_is_case_insensitive() -> None:
    handle = FakeHandle()
    handle.emit("Permission Denied")

    with pytest.raises(AccessDenied):
        await _probe(handle).run()


@pytest.mark.asyncio
async def test_probe_reports_early_exit_as_io_error() -> None:
    handle = DeadShell()

    with pytest.raises(StartupIOError, match="exited with code 1"):
        await _probe(handle).run()


@pytest.mark.asyncio
async def test_probe_reports_write_failure_as_io_error() -> None:
    handle = FakeHandle()
    handle.fail_writes = True
    handle.finish(1)

    with pytest.raises(StartupIOError) as info:
        await _probe(handle).run()
    assert isinstance(info.value.cause, BrokenPipeError)


@pytest.mark.asyncio
async def test_probe_times_out_and_kills_process() -> None:
    handle = SilentShell()

    with pytest.raises(StartupTimeout):
        await _probe(handle, timeout_s=0.05).run()

    assert handle.killed
    assert not handle.alive()


@pytest.mark.asyncio
async def test_denial_wins_over_write_failure() -> None:
    handle = FakeHandle()
    handle.fail_writes = True
    handle.emit("sudo: user is not in the sudoers file")
    handle.finish(1)

    with pytest.raises(AccessDenied, match="sudoers"):
        await _probe(handle).run()
