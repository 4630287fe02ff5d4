"""
Command-line interface for trmove.

Exit codes: 0 moved, 1 fatal, 2 already moved, 3 not enough space,
4 remote sync timeout (data relocated, daemon record stale).
"""

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from trmove import __version__
from trmove.config import load_settings, parse_size
from trmove.console import setup_logging
from trmove.errors import (
    EXIT_FATAL,
    EXIT_NOT_ENOUGH_SPACE,
    EXIT_OK,
    MultipleErrors,
    NotEnoughSpace,
    RemoteError,
    TrmoveError,
)
from trmove.job import (
    ENV_DESTINATION,
    ENV_DIR,
    ENV_FORCE,
    ENV_FREE_SPACE,
    ENV_HASH,
    ENV_NAME,
    ENV_ROOT,
    ENV_TORRENT_FILE,
    ENV_VERIFY,
    RelocationJob,
)
from trmove.marker import find_incomplete
from trmove.mover import Mover
from trmove.transmission import get_remote_agent


class ByteSize(click.ParamType):
    name = "size"

    def convert(self, value, param, ctx):
        try:
            return parse_size(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


BYTE_SIZE = ByteSize()


def _make_mover(settings, agent=None) -> Mover:
    return Mover(agent if agent is not None else get_remote_agent(settings))


def _format_age(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 120:
        return f"{seconds}s"
    if seconds < 7200:
        return f"{seconds // 60}m"
    if seconds < 172800:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


@click.group()
@click.version_option(__version__)
@click.option("--debug", "-d", is_flag=True, help="Log debug messages.")
@click.option("--systemd", is_flag=True, envvar="TRMOVE_SYSTEMD",
              help="Prefix log lines with journald priorities.")
@click.option("--config", "config_file", type=click.Path(dir_okay=False), envvar="TRMOVE_CONFIG",
              help="Env-style settings file (default: /etc/trmove/trmove.env).")
@click.pass_context
def cli(ctx, debug, systemd, config_file):
    """trmove - move completed torrent payloads to their final destination."""
    setup_logging(debug=debug, systemd=systemd)
    try:
        ctx.obj = load_settings(Path(config_file) if config_file else None)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"invalid configuration: {e}")


@cli.command("move")
@click.option("--hash", "torrent_hash", envvar=ENV_HASH, required=True,
              help="Torrent hash [TR_TORRENT_HASH].")
@click.option("--name", envvar=ENV_NAME, required=True,
              help="Payload name inside the source dir [TR_TORRENT_NAME].")
@click.option("--source-dir", envvar=ENV_DIR, required=True,
              type=click.Path(file_okay=False), help="Download directory [TR_TORRENT_DIR].")
@click.option("--destination", envvar=ENV_DESTINATION, required=True,
              type=click.Path(file_okay=False), help="Destination root [TR_TORRENT_DESTINATION].")
@click.option("--torrent-root", envvar=ENV_ROOT, type=click.Path(file_okay=False),
              default=None, help="Root holding locks/ and torrents/ [TR_TORRENT_ROOT].")
@click.option("--free-space-to-leave", envvar=ENV_FREE_SPACE, type=BYTE_SIZE,
              default=None, help="Free space to keep on the destination [TR_FREE_SPACE_TO_LEAVE].")
@click.option("--torrent-file", envvar=ENV_TORRENT_FILE, type=click.Path(dir_okay=False),
              default=None, help=".torrent file to replicate [TR_TORRENT_FILE].")
@click.option("--force/--no-force", envvar=ENV_FORCE, default=False,
              help="Move even when the destination is short of space [TR_FORCE].")
@click.option("--verify/--no-verify", envvar=ENV_VERIFY, default=None,
              help="Start a verification afterwards [TR_VERIFY].")
@click.pass_obj
def move_cmd(settings, torrent_hash, name, source_dir, destination, torrent_root,
             free_space_to_leave, torrent_file, force, verify):
    """
    Move one payload. All inputs can be supplied through TR_* variables, so
    the command can be run directly as a daemon hook.
    """
    try:
        job = RelocationJob(
            torrent_hash=torrent_hash,
            name=name,
            source_dir=Path(source_dir),
            torrent_root=Path(torrent_root) if torrent_root else settings.torrent_root,
            destination_root=Path(destination),
            force=force,
            verify=settings.verify if verify is None else verify,
            free_space_margin=(settings.free_space_to_leave
                               if free_space_to_leave is None else free_space_to_leave),
            metadata_file=Path(torrent_file) if torrent_file else None,
        )
    except ValueError as e:
        raise click.BadParameter(str(e))

    ctx = click.get_current_context()
    try:
        _make_mover(settings).run(job)
    except TrmoveError as e:
        ctx.exit(e.exit_code)


@cli.command("completed")
@click.option("--hash", "torrent_hash", envvar=ENV_HASH, required=True)
@click.option("--name", envvar=ENV_NAME, required=True)
@click.option("--source-dir", envvar=ENV_DIR, required=True, type=click.Path(file_okay=False))
@click.option("--torrent-file", envvar=ENV_TORRENT_FILE, type=click.Path(dir_okay=False), default=None)
@click.pass_obj
def completed_cmd(settings, torrent_hash, name, source_dir, torrent_file):
    """
    Daemon completion hook: move the payload to the first configured
    destination with enough free space.
    """
    ctx = click.get_current_context()
    if not settings.destinations:
        raise click.ClickException("no destinations configured (TRMOVE_DESTINATIONS)")

    mover = _make_mover(settings)
    for destination in settings.destinations:
        try:
            job = RelocationJob(
                torrent_hash=torrent_hash,
                name=name,
                source_dir=Path(source_dir),
                torrent_root=settings.torrent_root,
                destination_root=destination,
                verify=settings.verify,
                free_space_margin=settings.free_space_to_leave,
                metadata_file=Path(torrent_file) if torrent_file else None,
            )
        except ValueError as e:
            raise click.BadParameter(str(e))
        try:
            mover.run(job)
        except NotEnoughSpace:
            continue
        except TrmoveError as e:
            ctx.exit(e.exit_code)
        ctx.exit(EXIT_OK)
    ctx.exit(EXIT_NOT_ENOUGH_SPACE)


@cli.command("mv")
@click.option("--hash", "hashes", multiple=True, required=True, help="Torrent hash (repeatable).")
@click.option("--destination", type=click.Path(file_okay=False), default=None,
              help="Destination root (default: first configured destination).")
@click.option("--force", is_flag=True, help="Skip the free-space check.")
@click.option("--verify/--no-verify", default=None, help="Start a verification afterwards.")
@click.option("--force-local", is_flag=True,
              help="Move even though the daemon URL does not look local.")
@click.pass_obj
def mv_cmd(settings, hashes, destination, force, verify, force_local):
    """Move payloads of torrents known to the daemon."""
    ctx = click.get_current_context()
    agent = get_remote_agent(settings)
    if not agent.is_local and not force_local:
        raise click.ClickException("Cannot mv files in a remote host")

    if destination:
        destination_root = Path(destination)
    elif settings.destinations:
        destination_root = settings.destinations[0]
    else:
        raise click.ClickException("no destination given or configured")

    mover = _make_mover(settings, agent)
    errors = 0
    last_code = EXIT_OK
    for torrent_hash in hashes:
        try:
            torrent = agent.get_torrent(torrent_hash)
        except RemoteError as e:
            click.echo(f"❌ {torrent_hash}: {e}", err=True)
            errors += 1
            last_code = EXIT_FATAL
            continue
        if torrent is None:
            click.echo(f"❌ {torrent_hash}: not found", err=True)
            errors += 1
            last_code = EXIT_FATAL
            continue

        try:
            job = RelocationJob.from_torrent(torrent, settings, destination_root,
                                             force=force, verify=verify)
        except ValueError as e:
            click.echo(f"❌ {torrent_hash}: {e}", err=True)
            errors += 1
            last_code = EXIT_FATAL
            continue

        click.echo(f"📦 mv {torrent.name}")
        try:
            mover.run(job)
        except TrmoveError as e:
            errors += 1
            last_code = e.exit_code

    if errors > 1:
        click.echo(f"⚠️  {MultipleErrors(errors)}", err=True)
        ctx.exit(MultipleErrors.exit_code)
    ctx.exit(last_code)


@cli.command("incomplete")
@click.argument("destinations", nargs=-1, type=click.Path(file_okay=False))
@click.pass_obj
def incomplete_cmd(settings, destinations):
    """List moves that started but never committed."""
    roots = [Path(d) for d in destinations] or settings.destinations
    moves = find_incomplete(roots)

    console = Console()
    if not moves:
        console.print("✅ No incomplete moves.")
        return

    table = Table(title="Incomplete moves")
    table.add_column("Hash")
    table.add_column("Destination")
    table.add_column("Age", justify="right")
    table.add_column("Staging dir")
    table.add_column("State")
    table.add_column("Container")
    for m in moves:
        table.add_row(m.torrent_hash, str(m.destination_root),
                      _format_age(m.age_seconds), "yes" if m.staging_exists else "no",
                      m.state or "staging", str(m.container) if m.container else "-")
    console.print(table)


def main():
    cli()


if __name__ == "__main__":
    main()
