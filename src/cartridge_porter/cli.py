"""Command-line interface for cartridge-porter."""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .core.config import PorterConfig
from .core.orchestrator import ExportStats, SkipReason
from .core.runner import PorterRunner

console = Console()


@click.group()
@click.version_option(version="0.1.0", prog_name="cartridge-porter")
def cli():
    """Cartridge-Porter: document store to relational export

    Exports every collection of a MongoDB database into PostgreSQL tables,
    creating and widening columns as documents are read.
    """
    pass


@cli.command()
@click.option("--host", "-h", help="The destination database host.")
@click.option("--port", "-p", type=int, help="The destination database port.")
@click.option("--dbname", "-d", help="The destination database name.")
@click.option("--username", "-u", help="The destination database username.")
@click.option("--password", help="The destination database password.")
@click.option("--mdbname", help="The MongoDB database name.")
@click.option("--mongo-uri", help="The MongoDB connection string.")
@click.option(
    "--limit",
    type=click.IntRange(min=0),
    help="Limit rows to this number. This is useful for debugging very large data sets.",
)
@click.option(
    "--data-only",
    is_flag=True,
    help="Only load data into existing tables; never create or alter tables.",
)
@click.option("--skip", help="Comma-separated list of tables to skip.")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
def run(
    host: Optional[str],
    port: Optional[int],
    dbname: Optional[str],
    username: Optional[str],
    password: Optional[str],
    mdbname: Optional[str],
    mongo_uri: Optional[str],
    limit: Optional[int],
    data_only: bool,
    skip: Optional[str],
    config: Optional[Path],
):
    """Export a MongoDB database into PostgreSQL."""

    try:
        if config:
            console.print(f"[blue]Loading configuration from {config}[/blue]")

        porter_config = PorterConfig.load(
            config,
            overrides={
                "source": {"database": mdbname, "connection_string": mongo_uri},
                "destination": {
                    "host": host,
                    "port": port,
                    "database": dbname,
                    "username": username,
                    "password": password,
                },
                "export": {"limit": limit, "data_only": data_only or None, "skip_tables": skip},
            },
        )

        # Display configuration summary
        _display_config_summary(porter_config)

        console.print("[green]Starting cartridge-porter...[/green]")
        runner = PorterRunner(porter_config)
        stats = asyncio.run(runner.run())

        _display_run_summary(stats)

    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)


@cli.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Path to configuration file",
)
def validate(config: Path):
    """Validate configuration file."""

    try:
        console.print(f"[blue]Validating configuration: {config}[/blue]")
        porter_config = PorterConfig.from_file(config)

        console.print("[green]✓ Configuration is valid[/green]")
        _display_config_summary(porter_config)

    except Exception as e:
        console.print(f"[red]✗ Configuration is invalid: {escape(str(e))}[/red]")
        sys.exit(1)


@cli.command()
def init():
    """Initialize a new cartridge-porter configuration file."""

    config_template = """# Cartridge-Porter Configuration

# Source document database
source:
  type: mongodb
  connection_string: "mongodb://localhost:27017"
  database: "source_db"

# Destination relational database
destination:
  type: postgresql
  host: localhost
  port: 5432
  database: "warehouse"
  username: "porter"
  password: ""
  schema_name: "public"

# Export settings
export:
  limit: null  # documents per collection, null for all
  data_only: false  # only load data into existing tables
  skip_tables: []
  max_columns: 500
  max_varchar_length: 512
  max_inline_elements: 25
  progress_interval_seconds: 5

  # Table names from natural keys, e.g. "tag:abc:topics" -> "tag_topics"
  natural_key_field: "_key"
  naming_rules:
    - pattern: "^tag:[^:]+"
      replacement: "tag:#"
    - pattern: "(?<=:)(?:undefined|null|NaN)(?=:|$)"
      replacement: "#"
    - pattern: "\\\\d+"
      replacement: "#"
    - pattern: "[:#]+"
      replacement: "_"
    - pattern: "^_+|_+$"
      replacement: ""

# Monitoring configuration
monitoring:
  prometheus:
    enabled: false
    port: 8080
  log_level: "INFO"
  structured_logging: false
"""

    config_file = Path("cartridge-porter-config.yaml")

    if config_file.exists():
        console.print(
            f"[yellow]Configuration file already exists: {config_file}[/yellow]"
        )
        if not click.confirm("Overwrite existing file?"):
            return

    config_file.write_text(config_template)
    console.print(f"[green]Created configuration file: {config_file}[/green]")
    console.print(
        "[blue]Edit the file with your database connections and export settings.[/blue]"
    )


def _display_config_summary(config: PorterConfig):
    """Display a summary of the configuration."""

    table = Table(title="Configuration Summary")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Source", f"{config.source.type}: {config.source.database}")
    table.add_row(
        "Destination",
        f"{config.destination.type}: {config.destination.host}:"
        f"{config.destination.port}/{config.destination.database}",
    )
    table.add_row("Limit", str(config.export.limit) if config.export.limit else "None")
    table.add_row("Data Only", "Yes" if config.export.data_only else "No")
    table.add_row("Skip Tables", ", ".join(config.export.skip_tables) or "None")
    table.add_row("Max Columns", str(config.export.max_columns))
    table.add_row(
        "Prometheus", "Enabled" if config.monitoring.prometheus.enabled else "Disabled"
    )

    console.print(table)


def _display_run_summary(stats: ExportStats):
    """Display the counters of a finished run."""

    table = Table(title="Export Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green", justify="right")

    table.add_row("Collections", str(stats.collections))
    table.add_row("Documents", str(stats.documents))
    table.add_row("Rows Written", str(stats.rows_written))
    table.add_row("Schema Changes", str(stats.schema_changes))
    for reason in SkipReason:
        table.add_row(f"Skipped ({reason.value})", str(stats.skipped[reason]))

    console.print(table)


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
