"""ContentWard CLI entry point.

Provides the `contentward` command with subcommands:
  - validate: Load and validate a policy file
  - elements: List the registered conditions and actions
  - filter: Run one JSON-RPC message through a policy file
  - apply: Apply field modifications to a JSON(C) document
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from pydantic import BaseModel, TypeAdapter, ValidationError
from rich.console import Console
from rich.table import Table

from contentward import __version__

app = typer.Typer(
    name="contentward",
    help="Policy enforcement and content rewriting for MCP traffic.",
    no_args_is_help=True,
)

_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        _console.print(f"contentward {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """ContentWard: detect and rewrite sensitive content in MCP messages."""


def _load_policy_set(policy: Path) -> Any:
    from contentward.policy.loader import PolicyValidationError, load_policies

    try:
        return load_policies(policy)
    except FileNotFoundError as e:
        _console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None
    except PolicyValidationError as e:
        _console.print(f"[bold red]Policy error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None


def _read_text(source: Path) -> str:
    if str(source) == "-":
        return sys.stdin.read()
    try:
        return source.read_text(encoding="utf-8")
    except OSError as e:
        _console.print(f"[bold red]Error:[/bold red] Cannot read {source}: {e}", highlight=False)
        raise typer.Exit(1) from None


# ---------------------------------------------------------------------------
# validate command
# ---------------------------------------------------------------------------


@app.command()
def validate(
    policy: Annotated[
        Path,
        typer.Argument(help="Path to contentward.yaml policy file."),
    ],
) -> None:
    """Validate a policy file and summarize its policies."""
    policy_set = _load_policy_set(policy)

    table = Table(title=f"Policies in {policy}", title_style="bold")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Enabled")
    table.add_column("Severity", justify="right")
    table.add_column("Origin")
    table.add_column("Methods")
    table.add_column("Conditions")
    table.add_column("Actions")
    for p in policy_set.policies:
        table.add_row(
            str(p.policy_id),
            p.name,
            "[#00ff88]yes[/#00ff88]" if p.enabled else "[dim]no[/dim]",
            str(p.severity),
            p.origin.value,
            ", ".join(p.methods) or "[dim]all[/dim]",
            ", ".join(c.class_id for c in p.conditions) or "[dim]none[/dim]",
            ", ".join(a.class_id for a in p.actions) or "[dim]none[/dim]",
        )
    _console.print(table)
    _console.print(
        f"[bold #00ff88]✓[/bold #00ff88] {policy} is valid "
        f"({len(policy_set.policies)} policies, {len(policy_set.enabled_policies)} enabled)",
        highlight=False,
    )


# ---------------------------------------------------------------------------
# elements command
# ---------------------------------------------------------------------------


@app.command()
def elements(
    output_json: Annotated[
        bool,
        typer.Option("--json", help="Output element descriptions as JSON."),
    ] = False,
) -> None:
    """List the registered conditions and actions."""
    from contentward.engine.actions import ACTIONS
    from contentward.engine.conditions import CONDITIONS

    described = [e.describe() for e in CONDITIONS] + [e.describe() for e in ACTIONS]

    if output_json:
        Console().print_json(json.dumps(described))
        return

    table = Table(title="Policy elements", title_style="bold")
    table.add_column("Type")
    table.add_column("Class ID", style="bold")
    table.add_column("Name")
    table.add_column("Params")
    table.add_column("Description", style="dim")
    for element in described:
        params = ", ".join(element["params_schema"].get("properties", {}))
        table.add_row(
            element["element_type"],
            element["class_id"],
            element["name"],
            params,
            element["description"],
        )
    _console.print(table)


# ---------------------------------------------------------------------------
# filter command
# ---------------------------------------------------------------------------


@app.command(name="filter")
def filter_message(
    policy: Annotated[
        Path,
        typer.Argument(help="Path to contentward.yaml policy file."),
    ],
    message: Annotated[
        Path,
        typer.Argument(help="File holding one JSON-RPC message, or '-' for stdin."),
    ],
    origin: Annotated[
        str,
        typer.Option("--origin", "-o", help="Which side sent the message: 'client' or 'server'."),
    ] = "client",
    log: Annotated[
        Optional[Path],
        typer.Option(
            "--log",
            "-l",
            help="Path to write structured JSON Lines audit log. Without this, logs only to stderr.",
        ),
    ] = None,
    server_id: Annotated[
        Optional[str],
        typer.Option("--server-id", help="Server identifier passed to conditions."),
    ] = None,
    session_id: Annotated[
        Optional[str],
        typer.Option("--session-id", help="Session identifier passed to conditions."),
    ] = None,
) -> None:
    """Run one JSON-RPC message through the policies and print the result.

    The resulting message is written to stdout as a single JSON line;
    alerts and actions are summarized on stderr.

    Examples:
      contentward filter contentward.yaml request.json --origin client
      cat response.json | contentward filter contentward.yaml - --origin server
    """
    from contentward.audit.logger import AuditLogger
    from contentward.engine.elements import ElementValidationError
    from contentward.engine.models import PolicyContext
    from contentward.filter import MessageFilter
    from contentward.protocol import ProtocolError, parse_message_line, serialize_message

    policy_set = _load_policy_set(policy)

    try:
        parsed = parse_message_line(origin.lower(), _read_text(message))
    except ProtocolError as e:
        _console.print(f"[bold red]Invalid message:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None

    audit_logger = AuditLogger(log_path=log)
    message_filter = MessageFilter(policy_set, audit_logger=audit_logger)
    context = PolicyContext(server_id=server_id, session_id=session_id)
    try:
        result = asyncio.run(message_filter.filter(parsed, context))
    except ElementValidationError as e:
        _console.print(f"[bold red]Policy error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None
    finally:
        audit_logger.close()

    sys.stdout.write(serialize_message(result.message).decode("utf-8"))
    sys.stdout.flush()

    if result.error is not None:
        return
    if result.is_modified:
        _console.print("[#ffcc00]Message modified[/#ffcc00]", highlight=False)
    elif result.alerts:
        _console.print("[dim]Findings recorded; message unchanged[/dim]", highlight=False)
    else:
        _console.print("[#00ff88]✓ No findings[/#00ff88]", highlight=False)


# ---------------------------------------------------------------------------
# apply command
# ---------------------------------------------------------------------------


class _ModificationSpec(BaseModel):
    field_path: str
    start: int
    end: int
    operation: str
    replacement_text: Optional[str] = None


@app.command()
def apply(
    document: Annotated[
        Path,
        typer.Argument(help="JSON or JSON-with-comments document, or '-' for stdin."),
    ],
    modifications: Annotated[
        Path,
        typer.Argument(help="JSON file holding a list of field modifications."),
    ],
    output_json: Annotated[
        bool,
        typer.Option("--json", help="Output the result text and applied offsets as JSON."),
    ] = False,
) -> None:
    """Apply field modifications to a document and print the edited text.

    Each modification is an object with field_path, start, end, operation
    (remove, redact, redactWithPattern or replace) and replacement_text.
    """
    from contentward.engine.models import FieldModification, ModificationOperation
    from contentward.modify.fields import apply_field_modifications
    from contentward.modify.jsonc import PayloadParseError

    try:
        specs = TypeAdapter(list[_ModificationSpec]).validate_json(_read_text(modifications))
        mods = [
            FieldModification(
                field_path=s.field_path,
                start=s.start,
                end=s.end,
                operation=ModificationOperation(s.operation),
                replacement_text=s.replacement_text,
            )
            for s in specs
        ]
    except (ValidationError, ValueError) as e:
        _console.print(f"[bold red]Invalid modifications:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None

    try:
        result = apply_field_modifications(_read_text(document), mods)
    except PayloadParseError as e:
        _console.print(f"[bold red]Invalid document:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None

    if output_json:
        data = {
            "result_text": result.result_text,
            "applied_count": result.applied_count,
            "applied_modifications": [m.to_dict() for m in result.applied_modifications],
        }
        Console().print_json(json.dumps(data, ensure_ascii=False))
        return

    sys.stdout.write(result.result_text)
    if not result.result_text.endswith("\n"):
        sys.stdout.write("\n")
    sys.stdout.flush()
