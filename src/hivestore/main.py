import typer

from hivestore import __version__
from hivestore.cli import operational
from hivestore.cli.config import CLIConfig
from hivestore.logging_config import setup_logging

app = typer.Typer(help="hivestore: coordination database for agent swarms", no_args_is_help=True)


@app.callback()
def global_options(
    human: bool = typer.Option(
        False, "--human", "-H",
        help="Tables and colors instead of JSON (also via HIVESTORE_HUMAN_MODE).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
):
    """
    Operational tooling for the hive-mind coordination database.

    Machine mode is the default: one JSON document per result and no
    console logs. Use --human/-H for readable output.
    """
    CLIConfig.reset()
    if human:
        CLIConfig.set_machine_mode(False)
    setup_logging(
        level="DEBUG" if verbose else "INFO",
        suppress_console=CLIConfig.is_machine_mode(),
        force=True,
    )


@app.command()
def version():
    """
    Print the installed hivestore version.
    """
    typer.echo(f"hivestore v{__version__}")


app.command(name="init")(operational.init)
app.command(name="health")(operational.health)
app.command(name="swarms")(operational.swarms)
app.command(name="memory-stats")(operational.memory_stats)
app.command(name="sweep")(operational.sweep)
app.command(name="analytics")(operational.analytics)
app.command(name="config")(operational.show_config)


if __name__ == "__main__":
    app()
