#!/usr/bin/env python3
"""
Main CLI for timeslice - activity capture and report scheduling.

Usage:
    timeslice daemon                 - Run the capture and report loops
    timeslice report [--date D]      - Generate a report now
    timeslice schedule               - Show configured slots and the next run
    timeslice records [--date D]     - List captured records
    timeslice cleanup                - Remove expired records and images
    timeslice init-config            - Write a default config file
"""

import asyncio
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ..daemon.config import Config
from ..daemon.errors import CLIExecutorError, NoRecordsError, ReportGenerationError
from ..daemon.main import configure_logging, run_daemon
from ..daemon.prompt import PromptBuilder
from ..daemon.report import ReportGenerator
from ..daemon.storage import DataStore, ImageStore, StoragePathResolver
from ..daemon.time_slots import (
    SOLE_SLOT_FILE_NAME,
    enabled_slots,
    next_execution,
    output_file_name_for,
    parse_time_range_label,
)

console = Console()

DATE_FORMAT = "%Y-%m-%d"


def load_config(config_path: Optional[str], root: Optional[str]) -> Config:
    try:
        config = Config.load(Path(config_path) if config_path else None)
    except FileNotFoundError:
        if config_path:
            raise
        console.print("[yellow]No config file found, using defaults[/yellow]")
        config = Config()
    if root:
        config.root_path = Path(root).expanduser()
    return config


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Config file path")
@click.option("--root", "-r", type=click.Path(file_okay=False), help="Override the data root directory")
@click.pass_context
def cli(ctx, config_path: Optional[str], root: Optional[str]):
    """timeslice - screen activity capture and scheduled reports."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["root"] = root


def _config(ctx) -> Config:
    if "config" not in ctx.obj:
        ctx.obj["config"] = load_config(ctx.obj.get("config_path"), ctx.obj.get("root"))
    return ctx.obj["config"]


@cli.command()
@click.pass_context
def daemon(ctx):
    """Run the daemon in the foreground."""
    config = _config(ctx)
    configure_logging(config)
    console.print("[cyan]Starting timeslice daemon...[/cyan]")
    try:
        asyncio.run(run_daemon(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Daemon stopped by user[/yellow]")


@cli.command()
@click.option("--date", "-d", "report_day", type=click.DateTime(formats=[DATE_FORMAT]), help="Report date (default: today)")
@click.option("--slot", "-s", help="Restrict to a time range, e.g. 09:00-12:00 or 22:00-26:00")
@click.pass_context
def report(ctx, report_day: Optional[datetime], slot: Optional[str]):
    """Generate a report now."""
    config = _config(ctx)
    target = report_day.date() if report_day else date.today()
    try:
        time_slot = parse_time_range_label(slot) if slot else None
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--slot") from e

    path_resolver = StoragePathResolver(config.root_path)
    generator = ReportGenerator(
        DataStore(path_resolver, config.storage.text_retention_days),
        path_resolver,
        PromptBuilder(),
    )
    configuration = config.report_generation_configuration()

    try:
        if time_slot is None:
            generated = asyncio.run(
                generator.generate_report(target, configuration.with_output_file_name(SOLE_SLOT_FILE_NAME))
            )
        else:
            generated = asyncio.run(
                generator.generate_report_for_slot(
                    time_slot, target, configuration.with_output_file_name(output_file_name_for(time_slot, False))
                )
            )
    except NoRecordsError as e:
        console.print(f"[yellow]{e}[/yellow]")
        return
    except (CLIExecutorError, ReportGenerationError) as e:
        console.print(f"[red]Report failed:[/red] {e}")
        console.print(f"[dim]Diagnostics: {generator.last_run_log_path}[/dim]")
        sys.exit(1)

    console.print(
        f"[green]✓[/green] Report for {generated.report_date.isoformat()} "
        f"({generated.source_record_count} records) written to {generated.report_path}"
    )


@cli.command()
@click.pass_context
def schedule(ctx):
    """Show configured report slots and the next execution."""
    config = _config(ctx)
    slots = config.report.time_slots
    active = enabled_slots(slots)

    table = Table(title="Report Time Slots")
    table.add_column("Label", style="cyan")
    table.add_column("Window")
    table.add_column("Runs at", justify="right")
    table.add_column("Enabled")
    table.add_column("Output file", style="magenta")

    for slot in slots:
        table.add_row(
            slot.label or "-",
            slot.time_range_label,
            f"{slot.execution_hour:02d}:{slot.execution_minute:02d}" + (" (+1d)" if slot.execution_is_next_day else ""),
            "[green]yes[/green]" if slot.enabled else "[dim]no[/dim]",
            output_file_name_for(slot, len(active) == 1) if slot.enabled else "-",
        )
    console.print(table)

    if not config.report.auto_generate:
        console.print("[yellow]Automatic report generation is disabled[/yellow]")
        return
    upcoming = next_execution(datetime.now(), active)
    if upcoming is None:
        console.print("[yellow]No enabled slots[/yellow]")
        return
    console.print(
        f"Next report: [bold]{upcoming.slot.label or upcoming.slot.time_range_label}[/bold] "
        f"at {upcoming.execution_at:%Y-%m-%d %H:%M}"
    )


@cli.command()
@click.option("--date", "-d", "record_day", type=click.DateTime(formats=[DATE_FORMAT]), help="Day to list (default: today)")
@click.option("--limit", "-l", default=50, help="Max rows")
@click.pass_context
def records(ctx, record_day: Optional[datetime], limit: int):
    """List captured records for a day."""
    config = _config(ctx)
    target = record_day.date() if record_day else date.today()
    store = DataStore(StoragePathResolver(config.root_path), config.storage.text_retention_days)
    loaded = asyncio.run(store.load_records(target))

    if not loaded:
        console.print(f"[yellow]No records for {target.isoformat()}[/yellow]")
        return

    table = Table(title=f"Records for {target.isoformat()} ({len(loaded)})")
    table.add_column("Time", style="cyan")
    table.add_column("Application")
    table.add_column("Window", no_wrap=False)
    table.add_column("Trigger", style="magenta")
    table.add_column("Text", no_wrap=False)

    for record in loaded[:limit]:
        text = record.ocr_text.replace("\n", " ")
        table.add_row(
            f"{record.captured_at:%H:%M:%S}",
            record.application_name,
            record.window_title or "",
            record.trigger.value,
            text[:80] + ("..." if len(text) > 80 else ""),
        )
    console.print(table)


@cli.command()
@click.pass_context
def cleanup(ctx):
    """Remove records and images past their retention window."""
    config = _config(ctx)
    path_resolver = StoragePathResolver(config.root_path)
    now = datetime.now()
    removed_records = DataStore(path_resolver, config.storage.text_retention_days).cleanup_expired(now)
    removed_images = ImageStore(path_resolver, config.storage.image_retention_days).cleanup_expired(now)
    console.print(
        f"[green]✓[/green] Removed {len(removed_records)} record and {len(removed_images)} image day directories"
    )


@cli.command(name="init-config")
@click.option(
    "--path",
    "-p",
    "target",
    type=click.Path(dir_okay=False),
    default=str(Path.home() / ".config" / "timeslice" / "config.yaml"),
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_config(target: str, force: bool):
    """Write a config file with default settings."""
    path = Path(target).expanduser()
    if path.exists() and not force:
        console.print(f"[red]{path} already exists[/red] (use --force to overwrite)")
        sys.exit(1)
    Config().save(path)
    console.print(f"[green]✓[/green] Wrote default config to {path}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
