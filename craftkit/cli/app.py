"""
Defines the command-line interface for the application using Typer.
The commands are thin wrappers over `craftkit.core.launcher.Launcher`.
"""

import asyncio
import logging
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from craftkit import __version__
from craftkit.api.auth import DeviceCodeChallenge
from craftkit.core.launcher import Launcher
from craftkit.exceptions import CraftkitError
from craftkit.models.config import LauncherConfig
from craftkit.models.events import ProgressEvent
from craftkit.storage.cache import CacheManager
from craftkit.storage.config_manager import ConfigManager
from craftkit.utils.structured_logger import create_structured_logger

from .formatters import (
    print_config,
    print_launch_command,
    print_mod_report,
    print_summary_panel,
    print_validation_table,
    print_versions_table,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("craftkit")

app = typer.Typer(
    name="craftkit",
    help=(
        "Install, sign in to and prepare launches of the game client. Use"
        " 'craftkit <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "craftkit"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def load_config(cli_options: dict | None = None) -> LauncherConfig:
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v for debug, -vv to include HTTP).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
    clear_cache: bool = typer.Option(
        False, "--clear-cache", help="Clear the metadata cache and exit."
    ),
):
    """craftkit game launcher"""
    if version:
        console.print(f"[bold]craftkit[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    if verbose >= 1:
        logging.getLogger("craftkit").setLevel("DEBUG")
    if verbose >= 2:
        logging.getLogger().setLevel("DEBUG")

    if clear_cache:
        cache = CacheManager(load_config().root_path / ".cache")
        console.print("[cyan]Clearing metadata cache...[/cyan]")
        removed = cache.clear()
        console.print(
            f"[green]✓ Cache cleared successfully ({removed} entries removed)."
            "[/green]"
        )
        raise typer.Exit()

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]craftkit validate[/cyan]"
                " to create one."
            )
            raise typer.Exit(code=1)
        config_manager = ConfigManager(CONFIG_FILE)
        config = config_manager.load_config()
        print_config(CONFIG_FILE, config.model_dump(exclude={"config_path"}))
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def versions(
    snapshots: bool = typer.Option(
        False, "--snapshots", help="Include snapshots and other pre-releases."
    ),
    limit: int = typer.Option(20, "-n", "--limit", help="How many versions to show."),
):
    """List published game versions."""

    async def _versions_async():
        config = load_config()
        async with Launcher(config) as launcher:
            version_list = await launcher.version_list()
            installed = set(launcher.layout.installed_versions())
        entries = [
            v for v in version_list.versions if snapshots or v.type == "release"
        ]
        print_versions_table(entries[:limit], installed, version_list.latest)

    asyncio.run(_versions_async())


@app.command(name="loaders")
def loaders_command(
    variant: str = typer.Argument(..., help="fabric, quilt, forge or neoforge."),
    game_version: str = typer.Argument(..., help="Game version, e.g. 1.20.1."),
    limit: int = typer.Option(15, "-n", "--limit", help="How many versions to show."),
):
    """List loader versions available for a game version."""

    async def _loaders_async():
        config = load_config()
        async with Launcher(config) as launcher:
            found = await launcher.loader_versions(variant, game_version)
        if not found:
            console.print(
                f"[yellow]⚠️  No {variant} versions for {game_version}.[/yellow]"
            )
            raise typer.Exit(code=1)
        table = Table(title=f"{variant} for {game_version}")
        table.add_column("Version", style="cyan")
        table.add_column("Channel")
        for entry in found[:limit]:
            table.add_row(
                entry.version,
                "[green]stable[/green]" if entry.stable else "[yellow]beta[/yellow]",
            )
        console.print(table)

    asyncio.run(_loaders_async())


@app.command(name="install")
def install_command(
    version: str = typer.Argument(
        "release", help="Version id, or 'release' / 'snapshot' for the latest."
    ),
    loader: str | None = typer.Option(
        None, "-l", "--loader", help="Layer a loader: fabric, quilt, forge, neoforge."
    ),
    loader_version: str = typer.Option(
        "recommended",
        "--loader-version",
        help="Exact loader version, 'latest' or 'recommended'.",
    ),
    workers: int | None = typer.Option(
        None,
        "-w",
        "--workers",
        help="Number of simultaneous downloads (overrides the config).",
    ),
    log_json: Path | None = typer.Option(
        None, "--log-json", help="Write JSON-lines event logs into this directory."
    ),
):
    """Download a version and everything it needs."""
    cli_options = {"max_workers": workers}

    async def _install_async():
        config = load_config(cli_options)
        base_logger, event_logger, session_logger = create_structured_logger(
            log_json, enable_json=log_json is not None
        )
        try:
            session_logger.install_started(version, loader, config.max_workers)
            async with ProgressManager(console=console) as progress:

                def on_event(event: ProgressEvent) -> None:
                    progress(event)
                    event_logger(event)

                console.print("[bold cyan]Starting installation...[/bold cyan]")
                async with Launcher(config, on_event=on_event) as launcher:
                    descriptor, stats = await launcher.install_all(
                        version, loader, loader_version
                    )
                progress_stats = progress.get_statistics()
            session_logger.install_completed(
                descriptor.id,
                stats.elapsed,
                stats.downloaded,
                stats.satisfied,
                stats.failed,
                stats.bytes_downloaded,
            )
        finally:
            base_logger.close()

        print_summary_panel(stats, descriptor.id, progress_stats)

    asyncio.run(_install_async())


def _show_challenge(challenge: DeviceCodeChallenge) -> None:
    console.print(
        Panel(
            f"Open [link={challenge.verification_uri}][cyan]"
            f"{challenge.verification_uri}[/cyan][/link] and enter the code\n\n"
            f"    [bold yellow]{challenge.user_code}[/bold yellow]\n\n"
            f"[dim]The code expires in {challenge.expires_in // 60} minutes.[/dim]",
            title="[bold]Microsoft Sign-in[/bold]",
            border_style="cyan",
            expand=False,
        )
    )


@app.command()
def login(
    yggdrasil: str | None = typer.Option(
        None,
        "--yggdrasil",
        help="Sign in to this Yggdrasil (authlib-injector) server instead.",
    ),
    username: str | None = typer.Option(
        None, "-u", "--username", help="Account name on the Yggdrasil server."
    ),
    profile: str | None = typer.Option(
        None, "--profile", help="Game profile to use when the account has several."
    ),
):
    """Sign in with a Microsoft account (device code) or a Yggdrasil server."""

    async def _login_async():
        config = load_config()
        async with Launcher(config) as launcher:
            if yggdrasil is None:
                session = await launcher.authenticate(_show_challenge)
            else:
                name = username or typer.prompt("Username")
                password = typer.prompt("Password", hide_input=True)
                session = await launcher.sign_in_yggdrasil(
                    yggdrasil, name, password, profile
                )
        where = f" on {session.server_name}" if session.is_yggdrasil else ""
        console.print(
            f"[bold green]✓ Signed in as {session.profile.name}{where}[/bold green]"
        )

    asyncio.run(_login_async())


@app.command()
def logout():
    """Forget the stored account session."""
    config = load_config()
    Launcher(config).auth.logout()
    console.print("[green]✓ Signed out.[/green]")


@app.command()
def launch(
    version: str = typer.Argument(..., help="Version id to prepare."),
    loader: str | None = typer.Option(
        None, "-l", "--loader", help="Layer a loader: fabric, quilt, forge, neoforge."
    ),
    loader_version: str = typer.Option(
        "recommended", "--loader-version", help="Exact loader version or marker."
    ),
    offline: str | None = typer.Option(
        None, "--offline", help="Play offline under this player name."
    ),
    game_dir: Path | None = typer.Option(
        None, "--game-dir", help="Directory the game runs in (saves, mods)."
    ),
    width: int | None = typer.Option(None, "--width", help="Window width."),
    height: int | None = typer.Option(None, "--height", help="Window height."),
    java_major: int | None = typer.Option(
        None, "--java-major", help="Major version of the configured Java runtime."
    ),
):
    """Install what is missing, sign in and print the launch command."""

    async def _launch_async():
        config = load_config()
        async with Launcher(config) as launcher:
            options = launcher.runtime_options()
            options.java_major = java_major
            if width and height:
                options.resolution = (width, height)
            prepared = await launcher.prepare(
                version,
                loader=loader,
                loader_version=loader_version,
                on_challenge=_show_challenge,
                offline_name=offline,
                options=options,
                game_dir=game_dir,
            )
        print_launch_command(prepared.command)

    asyncio.run(_launch_async())


@app.command(name="mods")
def mods_command(
    version: str = typer.Argument(..., help="Installed version the mods run on."),
    game_dir: Path | None = typer.Option(
        None, "--game-dir", help="Directory holding the mods folder."
    ),
    java_major: int | None = typer.Option(
        None, "--java-major", help="Major version of the configured Java runtime."
    ),
):
    """List installed mods and check their dependencies."""

    async def _mods_async():
        config = load_config()
        async with Launcher(config) as launcher:
            report = await launcher.check_mods(version, game_dir, java_major)
        print_mod_report(report)
        if not report.ok:
            raise typer.Exit(code=1)

    asyncio.run(_mods_async())


@app.command()
def validate():
    """Validate the current configuration."""
    try:
        config = load_config()
        print_validation_table(config)
    except CraftkitError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e
