from __future__ import annotations

from typing import Iterable, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from recordsql.config import Settings
from recordsql.domain.messages import MessageKind, MessageSink
from recordsql.sql.filters import CompiledFilter
from recordsql.sql.synthesizer import SqlSynthesizer

_KIND_STYLES = {
    MessageKind.ERROR: "red",
    MessageKind.WARNING: "yellow",
    MessageKind.INFO: "blue",
    MessageKind.SUCCESS: "green",
}


def print_settings(settings: Settings, console: Optional[Console] = None) -> None:
    """Render the effective configuration, password masked."""
    console = console or Console()
    table = Table(title="recordsql settings", box=box.ROUNDED)
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")

    for name, value in settings.model_dump().items():
        if name == "db_password":
            value = "***"
        table.add_row(name, str(value))
    console.print(table)


def print_statements(synthesizers: Iterable[SqlSynthesizer], console: Optional[Console] = None) -> None:
    """
    Render the synthesized SQL of each record as a rich table.

    Operations the record does not support are shown as "n/a".
    """
    console = console or Console()
    for synthesizer in synthesizers:
        schema = synthesizer.schema
        table = Table(
            title=f"{schema.name} [dim]({synthesizer.name_in_db})[/dim]",
            box=box.ROUNDED,
            caption="Parameter indexes refer to positions in the row",
        )
        table.add_column("Operation", style="cyan", no_wrap=True)
        table.add_column("SQL", style="green")
        table.add_column("Params", justify="right", style="yellow")

        for operation, sql, indexes in synthesizer.describe():
            if sql is None:
                table.add_row(operation, "[dim]n/a[/dim]", "")
                continue
            table.add_row(operation, sql, ", ".join(str(i) for i in indexes))
        console.print(table)


def print_messages(messages: MessageSink, console: Optional[Console] = None) -> None:
    console = console or Console()
    if not messages:
        return
    table = Table(title="Messages", box=box.ROUNDED)
    table.add_column("Kind", no_wrap=True)
    table.add_column("Field", style="cyan")
    table.add_column("Text")
    for m in messages:
        style = _KIND_STYLES.get(m.kind, "")
        table.add_row(f"[{style}]{m.kind.value}[/{style}]", m.field_name or "", m.text)
    console.print(table)


def print_compiled_filter(compiled: CompiledFilter, console: Optional[Console] = None) -> None:
    """Render a compiled filter: its clause and bound parameters."""
    console = console or Console()
    console.print(f"[bold]Clause:[/bold] {compiled.where_clause}")

    table = Table(title="Parameters", box=box.ROUNDED, caption=f"Row limit {compiled.max_rows}")
    table.add_column("#", justify="right", style="blue")
    table.add_column("Type", style="cyan")
    table.add_column("Value", style="magenta")
    for i, (value, vt) in enumerate(zip(compiled.param_values, compiled.param_types)):
        table.add_row(str(i), vt.value, repr(value))
    console.print(table)

    if compiled.output_fields:
        names = ", ".join(f.name for f in compiled.output_fields)
        console.print(f"[bold]Fields:[/bold] {names}")


__all__ = [
    "print_compiled_filter",
    "print_messages",
    "print_settings",
    "print_statements",
]
