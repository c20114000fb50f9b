from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import typer

from recordsql.config import get_settings
from recordsql.domain.messages import MessageSink
from recordsql.errors import RecordSqlError
from recordsql.registry import SchemaRegistry, load_declarations
from recordsql.reporter import print_compiled_filter, print_messages, print_settings, print_statements
from recordsql.sql.filters import FilterRequest, compile_filter
from recordsql.utils.logging import configure_logging

app = typer.Typer(help="recordsql: inspect synthesized SQL and compiled filters.")


def _load_registry(declarations: Path) -> SchemaRegistry:
    try:
        return SchemaRegistry.from_declarations(load_declarations(declarations))
    except (OSError, ValueError, RecordSqlError) as exc:
        # pydantic's ValidationError and json's JSONDecodeError are ValueErrors
        typer.echo(f"Could not load {declarations}: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    print_settings(get_settings())


@app.command()
def sql(
    declarations: Path = typer.Argument(..., help="JSON file with record and link declarations."),
    record: Optional[str] = typer.Option(None, "--record", "-r", help="Show only this record."),
) -> None:
    """
    Print the SQL synthesized for each table-backed record.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, sql_level=settings.sql_log_level)
    registry = _load_registry(declarations)

    names = [record] if record else [s.name for s in registry if s.is_db_record]
    try:
        synthesizers = [registry.synthesizer(name) for name in names]
    except KeyError as exc:
        typer.echo(str(exc.args[0]), err=True)
        raise typer.Exit(code=1) from exc
    except RecordSqlError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    print_statements(synthesizers)


@app.command("filter")
def filter_(
    declarations: Path = typer.Argument(..., help="JSON file with record and link declarations."),
    record: str = typer.Argument(..., help="Record to filter."),
    request: Path = typer.Argument(..., help="JSON file with the filter request."),
    tenant: Optional[str] = typer.Option(None, "--tenant", "-t", help="Tenant id of the caller."),
    max_rows: Optional[int] = typer.Option(None, "--max-rows", help="Override MAX_ROWS_TO_FILTER."),
) -> None:
    """
    Compile a filter request and print the clause, parameters and messages.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, sql_level=settings.sql_log_level)
    registry = _load_registry(declarations)

    if record not in registry:
        typer.echo(f"No record named {record!r} in {declarations}", err=True)
        raise typer.Exit(code=1)
    schema = registry.schema(record)

    try:
        filter_request = FilterRequest.model_validate(json.loads(request.read_text(encoding="utf-8")))
    except (OSError, ValueError) as exc:
        typer.echo(f"Could not read filter request {request}: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    tenant_id = tenant
    if tenant is not None and schema.tenant_field is not None:
        tenant_id = schema.tenant_field.value_type.parse(tenant)

    messages = MessageSink()
    compiled = compile_filter(schema, filter_request, tenant_id, messages, max_rows=max_rows)
    print_messages(messages)
    if compiled is None:
        typer.echo("Filter request rejected.", err=True)
        raise typer.Exit(code=2)
    print_compiled_filter(compiled)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
