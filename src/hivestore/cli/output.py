"""
CLI Output Utilities

Every command prints through these helpers so that machine mode gets one
line of JSON per result and human mode gets rich tables.
"""

import json
import re
from typing import Any, Iterable, NoReturn, Optional, Sequence

import typer
from rich.console import Console as RichConsole
from rich.table import Table

from hivestore.cli.config import CLIConfig

_MARKUP = re.compile(r"\[/?[a-z ]+\]")


class MachineAwareConsole:
    """
    rich Console stand-in. In machine mode markup is stripped from strings
    and tables are dropped, since scripted callers read the JSON output.
    """

    def __init__(self):
        self._rich_console = RichConsole()

    def print(self, *args, **kwargs):
        if not CLIConfig.is_machine_mode():
            self._rich_console.print(*args, **kwargs)
            return

        for arg in args:
            if isinstance(arg, str):
                plain = _MARKUP.sub("", arg).strip()
                if plain:
                    typer.echo(plain)
            elif not isinstance(arg, Table):
                typer.echo(str(arg))

    def __getattr__(self, name):
        return getattr(self._rich_console, name)


_console = MachineAwareConsole()


def get_console() -> MachineAwareConsole:
    return _console


def print_json(data: Any, minified: Optional[bool] = None) -> None:
    """Print data as JSON: minified in machine mode, indented otherwise."""
    if minified is None:
        minified = CLIConfig.is_machine_mode()
    if minified:
        typer.echo(json.dumps(data, separators=(",", ":"), default=str))
    else:
        typer.echo(json.dumps(data, indent=2, default=str))


def print_table(title: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> None:
    """
    Render rows as a rich table, first column highlighted. Rows beyond
    CLIConfig.TABLE_ROW_LIMIT are summarized in the caption.
    """
    rows = list(rows)
    table = Table(title=title)
    for index, column in enumerate(columns):
        table.add_column(column, style="cyan" if index == 0 else None)
    for row in rows[:CLIConfig.TABLE_ROW_LIMIT]:
        table.add_row(*("-" if value is None else str(value) for value in row))
    if len(rows) > CLIConfig.TABLE_ROW_LIMIT:
        table.caption = f"{len(rows) - CLIConfig.TABLE_ROW_LIMIT} more rows not shown"
    _console.print(table)


def print_error(message: str, code: Optional[str] = None) -> None:
    """Machine mode: {"status": "error", ...} on stdout. Human mode: stderr."""
    if CLIConfig.is_machine_mode():
        error = {"status": "error", "message": message}
        if code:
            error["code"] = code
        print_json(error)
    else:
        typer.echo(f"Error: {message}", err=True)


def fail(message: str, code: str) -> NoReturn:
    """Report an error and end the command with exit status 1."""
    print_error(message, code=code)
    raise typer.Exit(code=1)
