"""CLI entry point for the society engine."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone

import click

from .core.config import load_settings
from .core.errors import ConfigError


def _load(config: str | None, timezone_name: str | None):
    overrides = {"timezone": timezone_name} if timezone_name else None
    try:
        settings = load_settings(config, overrides)
        settings.tzinfo()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    return settings


@click.group()
def main() -> None:
    """Housing-society resource engine."""


@main.command("show-config")
@click.option("--config", default=None, help="Config file path (TOML)")
def show_config(config: str | None) -> None:
    """Print the effective settings as JSON."""
    settings = _load(config, None)
    click.echo(settings.model_dump_json(indent=2))


@main.command("gate-report")
@click.argument("export_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", default=None, help="Config file path (TOML)")
@click.option("--date", "day", default=None, help="Local day (YYYY-MM-DD), default today")
@click.option("--timezone", "timezone_name", default=None, help="Override the society timezone")
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text")
def gate_report(
    export_file: str,
    config: str | None,
    day: str | None,
    timezone_name: str | None,
    fmt: str,
) -> None:
    """Daily gate counters and a by-house summary from a JSON export of
    gate logs."""
    from pydantic import ValidationError as PydanticValidationError

    from .core.models import GateLog
    from .gate.stats import active_logs, daily_stats, group_by_house
    from .observability.logger import operation_scope, setup_logging

    settings = _load(config, timezone_name)
    setup_logging(settings.observability.log_level, settings.observability.log_format)
    tz = settings.tzinfo()

    try:
        target = date.fromisoformat(day) if day else datetime.now(timezone.utc).astimezone(tz).date()
    except ValueError as exc:
        raise click.BadParameter(f"Invalid date {day!r}; expected YYYY-MM-DD") from exc

    with open(export_file, encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise click.ClickException(f"{export_file} is not valid JSON: {exc}") from exc
    if isinstance(raw, dict):
        raw = [{"id": doc_id, **doc} for doc_id, doc in raw.items()]

    with operation_scope():
        try:
            logs = [GateLog.model_validate(row) for row in raw]
        except PydanticValidationError as exc:
            raise click.ClickException(f"Invalid gate log in export: {exc}") from exc

        stats = daily_stats(logs, target, tz)
        houses = group_by_house(logs)
        active = active_logs(logs)

    if fmt == "json":
        click.echo(json.dumps({
            "day": target.isoformat(),
            "timezone": settings.timezone,
            "entries": stats.entries,
            "exits": stats.exits,
            "inside": stats.inside,
            "by_house": {house: len(rows) for house, rows in houses.items()},
            "active": [log.vehicle_no for log in active],
        }, indent=2))
        return

    click.echo(f"\nGate report for {target.isoformat()} ({settings.timezone})")
    click.echo(f"  Entries: {stats.entries}")
    click.echo(f"  Exits:   {stats.exits}")
    click.echo(f"  Inside:  {stats.inside}")
    if houses:
        click.echo("\nBy house:")
        for house, rows in houses.items():
            inside = sum(1 for log in rows if log.is_active)
            click.echo(f"  {house:10s}  {len(rows):4d} visits  {inside:3d} inside")
    if active:
        click.echo("\nCurrently inside:")
        for log in active:
            ts = log.entry_time.astimezone(tz).strftime("%Y-%m-%d %H:%M")
            click.echo(f"  {log.vehicle_no:12s}  {log.vehicle_class.value:9s}  since {ts}")
    click.echo()


if __name__ == "__main__":
    main()
