from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click

from shellmux.errors import ShellError
from shellmux.logger import configure_logging
from shellmux.settings import Settings, load_settings_or_default
from shellmux.shell import CollectingCommand, Command, SessionKind, SessionRegistry


def _load(config: Optional[Path]) -> Settings:
    settings = load_settings_or_default(config)
    configure_logging(settings.logging)
    return settings


@click.group()
def main() -> None:
    """Drive long-lived shells as command engines."""


@main.command()
@click.option("--elevated", is_flag=True, help="Run in the privilege-escalated shell.")
@click.option(
    "--interpreter",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Run in a custom interpreter instead of the plain shell.",
)
@click.option(
    "--config", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None
)
@click.option("--timeout", type=float, default=None, help="Per-command timeout in seconds.")
@click.argument("commands", nargs=-1, required=True)
def run(
    elevated: bool,
    interpreter: Optional[Path],
    config: Optional[Path],
    timeout: Optional[float],
    commands: tuple[str, ...],
) -> None:
    """Run each COMMAND as one batch and exit with the last exit code."""
    if elevated and interpreter is not None:
        raise click.UsageError("--elevated and --interpreter are mutually exclusive")
    settings = _load(config)

    if interpreter is not None:
        kind = SessionKind.custom
    elif elevated:
        kind = SessionKind.elevated
    else:
        kind = SessionKind.plain

    def _echo(command_id: int, line: str) -> None:
        click.echo(line)

    async def _run() -> int:
        registry = SessionRegistry(settings)
        exit_code = 0
        try:
            await registry.start(
                kind, interpreter=str(interpreter) if interpreter else None
            )
            for text in commands:
                command = await registry.run(Command(text, on_output=_echo), kind)
                exit_code = await command.result(timeout=timeout)
        finally:
            await registry.close_all()
        return exit_code

    try:
        rc = asyncio.run(_run())
    except ShellError as exc:
        raise click.ClickException(f"{type(exc).__name__}: {exc}") from exc
    except asyncio.TimeoutError as exc:
        raise click.ClickException("Command timed out") from exc
    sys.exit(rc)


@main.command()
@click.option(
    "--config", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None
)
@click.option("--skip-elevated", is_flag=True, help="Do not probe the elevated shell.")
def check(config: Optional[Path], skip_elevated: bool) -> None:
    """Sanity check: run a few commands through each shell kind."""
    settings = _load(config)

    async def _check() -> bool:
        registry = SessionRegistry(settings)
        ok = True
        try:
            session = await registry.start_shell()
            click.echo(f"plain shell ready (pid {session.pid})")

            probes = [
                CollectingCommand("echo hello"),
                CollectingCommand("false"),
                CollectingCommand("echo one", "echo two 1>&2"),
            ]
            for command in probes:
                await session.submit(command)
            for command in probes:
                rc = await command.result(timeout=settings.startup_timeout_s)
                click.echo(f"  [{command.id}] rc={rc} output={command.output_lines!r}")
            ok = probes[0].output_lines == ["hello"] and probes[1].exit_code == 1

            if not skip_elevated:
                given = await registry.is_access_given()
                click.echo(f"root access: {'yes' if given else 'no'}")
        finally:
            await registry.close_all()
        return ok

    try:
        passed = asyncio.run(_check())
    except ShellError as exc:
        raise click.ClickException(f"{type(exc).__name__}: {exc}") from exc
    click.echo("OK" if passed else "FAILED")
    sys.exit(0 if passed else 1)


if __name__ == "__main__":
    main()
