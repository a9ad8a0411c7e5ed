"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from craftkit.core.launch import LaunchSpec
from craftkit.models.config import LauncherConfig
from craftkit.models.mods import IssueLevel
from craftkit.models.stats import InstallStats
from craftkit.models.version import VersionListEntry
from craftkit.mods import ModReport
from craftkit.utils.formatting import format_duration, format_size, mask_secret


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "NetworkError": [
            "• A network connection issue occurred.",
            "• The download servers might be temporarily unavailable.",
            "• Please try again in a few minutes.",
        ],
        "CircuitOpenError": [
            "• Too many metadata requests failed and calls are paused.",
            "• Check your internet connection, then retry in a minute.",
        ],
        "IntegrityError": [
            "• A downloaded file did not match its published digest.",
            "• A proxy or mirror may be serving stale files.",
            "• Run the install again; verified files are not re-downloaded.",
        ],
        "VersionNotFound": [
            "• Check the id with `craftkit versions`.",
            "• Use `release` or `snapshot` for the latest version.",
        ],
        "CycleDetected": [
            "• A descriptor under `versions/` inherits from itself.",
            "• Delete the offending version folder and install it again.",
        ],
        "MissingField": [
            "• The version descriptor is incomplete.",
            "• Reinstall the version.",
            "• Custom descriptors need mainClass and arguments.",
        ],
        "ManifestError": [
            "• A version descriptor could not be read or validated.",
            "• Delete the version folder and install it again.",
        ],
        "InvalidGrant": ["• Your sign-in was revoked. Run `craftkit login` again."],
        "RefreshFailed": ["• Your sign-in expired. Run `craftkit login` again."],
        "NotAuthenticated": [
            "• Sign in with `craftkit login`.",
            "• Or play offline with `--offline <name>`.",
        ],
        "ExpiredDeviceCode": [
            "• The code was not entered in time. Run `craftkit login` again.",
        ],
        "UserDeclined": ["• The sign-in request was declined in the browser."],
        "AuthError": [
            "• Check that your Microsoft account owns the game.",
            "• For Yggdrasil servers, check the address and your password.",
            "• Make sure `client_id` is set in the configuration file.",
        ],
        "UnsupportedVersionCombination": [
            "• This loader has no build for the requested game version.",
            "• Omit `--loader-version` to pick the recommended build.",
        ],
        "ProcessorFailed": [
            "• A loader installation step failed. Nothing was committed.",
            "• Check that `java_path` points to a working Java runtime.",
            "• Run the command with -vv to see the step output.",
        ],
        "LoaderInstallError": [
            "• The loader installer could not be processed.",
            "• Try a different `--loader-version`.",
        ],
        "ModMetadataError": [
            "• A mod jar is corrupt or carries invalid metadata.",
            "• Re-download the mod or remove it from the mods folder.",
        ],
        "ExtractionError": [
            "• A natives archive is corrupt. Delete it under `libraries/` and retry.",
        ],
        "RuntimeRequirementError": [
            "• Point `java_path` at a newer Java runtime.",
        ],
        "ConfigurationError": [
            "• Fix the value in the configuration file, or delete the file to reset.",
        ],
        "TimeoutError": [
            "• A request timed out, which may indicate network throttling.",
            "• Try reducing the number of `--workers`.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_versions_table(
    entries: list[VersionListEntry], installed: set[str], latest: dict[str, str]
):
    console = Console()
    table = Table(box=box.ROUNDED)
    table.add_column("Version", style="bold cyan")
    table.add_column("Type")
    table.add_column("Released", style="dim")
    table.add_column("Installed", justify="center")
    markers = {v: k for k, v in latest.items()}
    for entry in entries:
        name = entry.id
        if entry.id in markers:
            name += f" [magenta]({markers[entry.id]})[/magenta]"
        table.add_row(
            name,
            entry.type,
            (entry.release_time or "")[:10],
            "[green]✓[/green]" if entry.id in installed else "",
        )
    console.print(table)


def print_launch_command(spec: LaunchSpec):
    """Shows the launch command with tokens masked."""
    console = Console()
    console.print(
        Panel(
            Text(" ".join(spec.redacted())),
            title="[bold]Launch Command[/bold]",
            subtitle=f"[dim]cwd: {spec.cwd}[/dim]",
            border_style="cyan",
        )
    )


def print_mod_report(report: ModReport):
    """Shows installed mods followed by every dependency problem."""
    console = Console()
    table = Table(box=box.ROUNDED)
    table.add_column("File", style="dim")
    table.add_column("Mod", style="bold cyan")
    table.add_column("Version")
    table.add_column("Format", style="dim")
    for name, infos in report.files.items():
        declared = [i for i in infos if not i.provided_by]
        if not declared:
            table.add_row(name, "[dim]not a mod[/dim]", "", "")
            continue
        for index, info in enumerate(declared):
            table.add_row(
                name if index == 0 else "",
                info.display_name,
                str(info.version or "?"),
                info.source,
            )
    for name, reason in report.unreadable.items():
        table.add_row(name, "[red]unreadable[/red]", "", escape(reason))
    console.print(table)

    styles = {
        IssueLevel.HARD: "red",
        IssueLevel.SOFT: "yellow",
        IssueLevel.SUGGESTIVE: "dim",
    }
    for mod_id, names in report.duplicates.items():
        files = ", ".join(names)
        console.print(f"[red]✗ {mod_id} is installed twice: {files}[/red]")
    for issue in report.issues:
        style = styles[issue.level]
        console.print(f"[{style}]• {escape(str(issue))}[/{style}]")
    if report.ok:
        console.print("[bold green]✓ All required dependencies are met.[/bold green]")


def print_summary_panel(
    stats: InstallStats, version_id: str, progress_stats: Optional[dict] = None
):
    """Displays the final summary of an installation."""
    console = Console()
    duration_s = stats.elapsed

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row(
        "✓ Downloaded:", f"[bold green]{stats.downloaded}[/bold green]"
    )
    if stats.satisfied > 0:
        stats_table.add_row("○ Up to date:", f"[yellow]{stats.satisfied}[/yellow]")
    if stats.failed > 0:
        stats_table.add_row("✗ Failed:", f"[bold red]{stats.failed}[/bold red]")
    if stats.natives_extracted > 0:
        stats_table.add_row("Natives:", f"[cyan]{stats.natives_extracted}[/cyan]")

    stats_table.add_row("", "")
    stats_table.add_row(
        "Total Size:", f"[cyan]{format_size(stats.bytes_downloaded)}[/cyan]"
    )
    avg_speed = stats.bytes_downloaded / duration_s if duration_s > 0 else 0
    stats_table.add_row(
        "Avg. Speed:", f"[magenta]{format_size(int(avg_speed))}/s[/magenta]"
    )
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    if progress_stats:
        stats_table.add_row("", "")
        stats_table.add_row(
            "Peak Concurrent:",
            f"[green]{progress_stats.get('peak_concurrent', 0)}[/green]",
        )

    if stats.failed:
        title = f"[bold]{version_id}: Incomplete[/bold]"
        border_color = "red"
    else:
        title = f"[bold]{version_id} Installed[/bold]"
        border_color = "green"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()


def print_validation_table(config: LauncherConfig):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("Instance Root:", f"[dim]{config.root_dir}[/dim]")
    table.add_row(
        "Client ID:",
        (
            f"[green]{mask_secret(config.client_id)}[/green]"
            if config.client_id
            else "[yellow]not set (offline only)[/yellow]"
        ),
    )
    table.add_row("Max Workers:", str(config.max_workers))
    table.add_row(
        "Retries:",
        f"{config.max_attempts} attempts, {config.base_delay}s-{config.max_delay}s",
    )
    table.add_row(
        "Timeouts:", f"connect {config.connect_timeout}s, read {config.read_timeout}s"
    )
    table.add_row("Java:", config.java_path)
    table.add_row("Memory:", f"{config.min_memory_mb}M - {config.max_memory_mb}M")

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )
