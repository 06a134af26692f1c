#!/usr/bin/env python3
"""Command-line import tool for employee feedback JSON exports.

Commands:
1. full <file>         - wipe everything and load the file
2. incremental <file>  - append the file to the stored records
3. refresh             - recompute both aggregate tables
4. verify              - show table counts and the top keywords
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from database import get_db_session, init_db, table_counts
from ingestion import IngestionPipeline
from queries import list_keyword_aggregates
from schemas import FinalCounts, ImportSummary

console = Console()


def load_records(path: Path) -> list:
    """Read a JSON array of raw records from a file.

    Raises:
        ValueError: If the file does not hold a JSON array
    """
    with path.open(encoding="utf-8") as f:
        payload = json.load(f)

    # Accept the API request shape as well
    if isinstance(payload, dict) and "data" in payload:
        payload = payload["data"]
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a JSON array of records")
    return payload


def display_counts(counts: FinalCounts, title: str = "📊 Table Counts"):
    table = Table(title=title, box=box.ROUNDED, show_header=True, header_style="bold magenta")
    table.add_column("Table", style="cyan", width=24)
    table.add_column("Rows", style="green", justify="right")

    table.add_row("employee_insights", str(counts.records))
    table.add_row("insight_summary", str(counts.keyword_aggregates))
    table.add_row("kota_summary", str(counts.city_aggregates))

    console.print(table)


def display_summary(summary: ImportSummary, mode: str):
    """Display the outcome of an import run.

    Args:
        summary: Import outcome
        mode: full or incremental
    """
    border = "bold green" if summary.error_count == 0 else "bold yellow"
    content = f"""
[bold]Mode:[/bold] {mode}
[bold]Previous records:[/bold] {summary.previous_count}
[bold]Requested:[/bold] {summary.total_requested}
[bold]Inserted:[/bold] {summary.inserted_count}
[bold]Errors:[/bold] {summary.error_count}
[bold]Final records:[/bold] {summary.final_count}
    """

    console.print(Panel(content, title="Import Complete", border_style=border, box=box.DOUBLE, padding=(1, 2)))
    display_counts(summary.final_counts)


async def run_import(path: Path, mode: str) -> ImportSummary:
    records = load_records(path)
    console.print(f"[cyan]Loaded {len(records)} records from {path}[/cyan]")

    async with get_db_session() as db:
        pipeline = IngestionPipeline(db)
        if mode == "full":
            return await pipeline.full_reload(records)
        return await pipeline.incremental_append(records)


async def run_refresh() -> tuple[int, int]:
    async with get_db_session() as db:
        return await IngestionPipeline(db).refresh_aggregates()


async def run_verify(top: int):
    async with get_db_session() as db:
        counts = await table_counts(db)
        keywords = await list_keyword_aggregates(db, limit=top)

    display_counts(counts)

    table = Table(title=f"🔑 Top {top} Keywords", box=box.ROUNDED, header_style="bold magenta")
    table.add_column("Keyword", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Positif %", justify="right", style="green")
    table.add_column("Negatif %", justify="right", style="red")
    table.add_column("Netral %", justify="right")
    table.add_column("Dominant")

    for row in keywords:
        table.add_row(
            row.keyword,
            str(row.total_count),
            f"{row.positif_percentage:.2f}",
            f"{row.negatif_percentage:.2f}",
            f"{row.netral_percentage:.2f}",
            row.dominant_sentiment
        )

    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import employee feedback into the insights database")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("full", "Wipe all data and import the file"),
        ("incremental", "Append the file to existing data"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("file", type=Path, help="JSON file with an array of records")

    subparsers.add_parser("refresh", help="Recompute keyword and city summaries")

    verify = subparsers.add_parser("verify", help="Show table counts and top keywords")
    verify.add_argument("--top", type=int, default=10, help="Number of keywords to show")

    return parser


async def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Initialize database
    console.print("[cyan]Initializing database...[/cyan]")
    await init_db()

    if args.command in ("full", "incremental"):
        try:
            summary = await run_import(args.file, args.command)
        except (OSError, ValueError) as e:
            console.print(f"[red]⚠️  Could not read {args.file}: {e}[/red]")
            return 1
        display_summary(summary, args.command)
        return 0 if summary.error_count == 0 else 2

    if args.command == "refresh":
        keywords, cities = await run_refresh()
        console.print(f"[green]✅ Refreshed {keywords} keyword and {cities} city summaries[/green]")
        return 0

    await run_verify(args.top)
    return 0


def cli():
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        console.print("\n\n[cyan] Interrupted[/cyan]\n")
        sys.exit(130)


if __name__ == "__main__":
    cli()
