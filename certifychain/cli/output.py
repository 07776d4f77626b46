"""Rendering of command results.

``--format`` picks one of:
- json: one line of JSON on stdout (default, for piping into jq)
- pretty: indented JSON
- table: a rich table; single records render as key/value rows
"""

import json
import sys
from enum import Enum
from typing import Any, Optional, Sequence

import typer
from rich.console import Console
from rich.table import Table

# Colours for certificate/entity status and flow outcome cells
_STATUS_STYLES = {
    "valid": "green",
    "active": "green",
    "consistent": "green",
    "pending": "yellow",
    "chain_only": "yellow",
    "store_only": "yellow",
    "unknown": "yellow",
    "revoked": "red",
    "not_found": "red",
    "failed": "red",
    "corrupt": "red",
}
_STYLED_COLUMNS = {"status", "outcome"}


class OutputFormat(str, Enum):
    json = "json"
    pretty = "pretty"
    table = "table"


def _dump(data: Any, indent: Optional[int] = None) -> str:
    try:
        return json.dumps(data, indent=indent, default=str)
    except (TypeError, ValueError) as e:
        typer.echo(f"Cannot serialize result: {e}", err=True)
        raise typer.Exit(2) from e


def _cell(column: str, value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    text = str(value)
    style = _STATUS_STYLES.get(text) if column in _STYLED_COLUMNS else None
    return f"[{style}]{text}[/{style}]" if style else text


def render_table(
    rows: Sequence[dict[str, Any]],
    columns: Optional[list[str]] = None,
    title: Optional[str] = None,
) -> None:
    if not rows:
        typer.echo("Nothing to show.", err=True)
        return

    columns = columns or list(rows[0])
    table = Table(title=title, header_style="bold")
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*(_cell(column, row.get(column)) for column in columns))
    Console().print(table)


def output(
    data: Any,
    format: OutputFormat = OutputFormat.json,
    table_columns: Optional[list[str]] = None,
    table_title: Optional[str] = None,
) -> None:
    """Print a command result in the requested format."""
    if format == OutputFormat.table and isinstance(data, list):
        render_table(data, columns=table_columns, title=table_title)
    elif format == OutputFormat.table and isinstance(data, dict):
        rows = [{"field": key, "value": value} for key, value in data.items()]
        render_table(rows, columns=["field", "value"], title=table_title)
    elif format == OutputFormat.json:
        print(_dump(data))
    else:
        print(_dump(data, indent=2))


def output_error(
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
    exit_code: int = 1,
) -> None:
    """Write ``{"error": true, "code", "message"}`` to stderr and exit."""
    body: dict[str, Any] = {"error": True, "code": code, "message": message}
    if details:
        body["details"] = details
    print(_dump(body), file=sys.stderr)
    raise typer.Exit(exit_code)
