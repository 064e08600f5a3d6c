"""
CLI Operational Commands

Database operational commands: init, health, swarms, memory-stats, sweep,
analytics, config.
Registered on the top-level app in hivestore.main.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from hivestore.cli.config import CLIConfig
from hivestore.cli.output import fail, get_console, print_json, print_table
from hivestore.config import StoreConfig
from hivestore.exceptions import ConfigError, HiveStoreError
from hivestore.logging_config import logger
from hivestore.maintenance import MemorySweeper
from hivestore.storage.sqlite.facade import HiveCoordinator, open_coordinator

console = get_console()

DB_OPTION_HELP = "Database file. Defaults to HIVESTORE_DB_PATH or ./data/hive-mind.db."


def _load_config(db_path: Optional[Path]) -> StoreConfig:
    try:
        config = StoreConfig()
    except ConfigError as e:
        fail(str(e), code="INVALID_CONFIG")
    if db_path is not None:
        config.db_path = str(db_path)
    return config


@contextmanager
def _coordinator(db_path: Optional[Path], failure_code: str = "DB_OPEN_FAILED", **kwargs) -> Iterator[HiveCoordinator]:
    config = _load_config(db_path)
    try:
        coordinator = open_coordinator(config=config, **kwargs)
    except HiveStoreError as e:
        fail(str(e), code=failure_code)
    try:
        yield coordinator
    finally:
        coordinator.close()


def init(
    db_path: Optional[Path] = typer.Option(None, "--db", "-d", help=DB_OPTION_HELP, dir_okay=False),
    schema: Optional[Path] = typer.Option(None, "--schema", help="External DDL file to apply instead of the built-in schema."),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON."),
):
    """
    Create the database and apply the schema (idempotent).
    """
    with _coordinator(db_path, failure_code="SCHEMA_INIT_FAILED", schema_path=schema) as coordinator:
        location = str(coordinator.persistence.db_path or ":memory:")
        version = coordinator.persistence.get_metadata("schema_version")

    logger.info(f"Initialized {location}")
    if CLIConfig.wants_json(json_output):
        print_json({"status": "ok", "db_path": location, "schema_version": version})
    else:
        console.print(f"[green]Initialized[/green] {location} (schema {version})")


def health(
    db_path: Optional[Path] = typer.Option(None, "--db", "-d", help=DB_OPTION_HELP, dir_okay=False),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON."),
):
    """
    Report row counts per table. Exits 1 when the database is unhealthy.
    """
    with _coordinator(db_path) as coordinator:
        report = coordinator.health_check()

    if CLIConfig.wants_json(json_output):
        print_json(report.model_dump(mode="json"))
    else:
        status = "[green]healthy[/green]" if report.healthy else "[red]unhealthy[/red]"
        console.print(f"Status: {status} - {report.message}")
        print_table("Coordination Database Health", ["Table", "Rows"], report.tables.items())

    if not report.healthy:
        raise typer.Exit(code=1)


def swarms(
    db_path: Optional[Path] = typer.Option(None, "--db", "-d", help=DB_OPTION_HELP, dir_okay=False),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON."),
):
    """
    List swarms, newest first, with agent counts.
    """
    with _coordinator(db_path) as coordinator:
        rows = coordinator.get_all_swarms()

    if CLIConfig.wants_json(json_output):
        print_json([swarm.model_dump(mode="json") for swarm in rows])
        return

    print_table(
        "Swarms",
        ["ID", "Name", "Topology", "Status", "Agents", "Active"],
        (
            (s.id, s.name, s.topology, s.status, s.agent_count or 0, "*" if s.is_active else "")
            for s in rows
        ),
    )


def memory_stats(
    db_path: Optional[Path] = typer.Option(None, "--db", "-d", help=DB_OPTION_HELP, dir_okay=False),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n", help="Limit the report to one namespace."),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON."),
):
    """
    Memory cache totals and per-namespace figures.
    """
    with _coordinator(db_path) as coordinator:
        totals = coordinator.get_memory_stats()
        names = [namespace] if namespace else coordinator.list_namespaces()
        per_namespace = [coordinator.get_namespace_stats(name) for name in names]

    if CLIConfig.wants_json(json_output):
        print_json({
            "totals": totals.model_dump(mode="json"),
            "namespaces": [stats.model_dump(mode="json") for stats in per_namespace],
        })
        return

    console.print(
        f"[bold]{totals.total_entries}[/bold] entries, {totals.total_size} bytes, "
        f"{totals.namespace_count} namespaces"
    )
    print_table(
        "Namespaces",
        ["Namespace", "Entries", "Bytes", "Avg TTL", "Last Access"],
        (
            (
                stats.namespace, stats.entry_count, stats.total_size,
                f"{stats.avg_ttl:.0f}" if stats.avg_ttl is not None else None,
                stats.last_accessed.isoformat() if stats.last_accessed else None,
            )
            for stats in per_namespace
        ),
    )


def sweep(
    db_path: Optional[Path] = typer.Option(None, "--db", "-d", help=DB_OPTION_HELP, dir_okay=False),
    namespace: Optional[List[str]] = typer.Option(None, "--namespace", "-n", help="Namespace to sweep (repeatable). Default: all."),
    capacity: Optional[int] = typer.Option(None, "--capacity", min=0, help="Max entries kept per namespace, 0 disables trimming."),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON."),
):
    """
    Run one maintenance sweep: expire TTL'd memory, trim namespaces, time out proposals.
    """
    with _coordinator(db_path) as coordinator:
        sweeper = MemorySweeper(coordinator, namespaces=namespace or None, capacity=capacity)
        report = sweeper.sweep_once()

    if CLIConfig.wants_json(json_output):
        print_json(report.to_dict())
    else:
        console.print(
            f"Removed [bold]{report.total_removed}[/bold] memory entries, "
            f"resolved [bold]{len(report.timed_out_proposals)}[/bold] proposals"
        )


def show_config(
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON."),
):
    """
    Show the effective configuration.
    """
    config = _load_config(None)
    if CLIConfig.wants_json(json_output):
        print_json(config.to_dict())
    else:
        print_table("hivestore Configuration", ["Setting", "Value"], config.to_dict().items())


def analytics(
    db_path: Optional[Path] = typer.Option(None, "--db", "-d", help=DB_OPTION_HELP, dir_okay=False),
):
    """
    File size, schema version, row counts and per-statement timings (always JSON).
    """
    with _coordinator(db_path) as coordinator:
        print_json(coordinator.get_database_analytics())
