"""
ReceiptFlow CLI — command-line interface.

Usage:
    receiptflow classify workspace.yaml --output classified.yaml
    receiptflow classify receipts.csv --defaults
    receiptflow validate workspace.yaml
    receiptflow rules --defaults
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from receiptflow import __version__

app = typer.Typer(
    name="receiptflow",
    help="ReceiptFlow — receipt classification and reimbursement workflow",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]ReceiptFlow[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """ReceiptFlow — Classify. Validate. Approve."""


def _build_flow(
    source: str,
    config: str | None,
    rules_file: str | None = None,
    defaults: bool = False,
):  # noqa: ANN202
    from receiptflow.config import ReceiptFlowConfig
    from receiptflow.flow import ReceiptFlow
    from receiptflow.logging_setup import configure_logging
    from receiptflow.workspace import Workspace, load_receipts_csv, load_workspace

    config_path = config if config and Path(config).exists() else None
    settings = ReceiptFlowConfig.load(config_path)
    if defaults:
        settings.classification.use_default_rules = True
    if rules_file:
        settings.classification.rules_file = rules_file
    configure_logging(settings.logging)

    path = Path(source)
    if path.suffix.lower() == ".csv":
        workspace = Workspace(receipts=load_receipts_csv(path))
    else:
        workspace = load_workspace(path)
    return ReceiptFlow.from_workspace(workspace, config=settings)


def _fail(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")
    raise typer.Exit(code=1)


@app.command()
def classify(
    source: str = typer.Argument(..., help="Workspace file (.yaml/.json) or receipts CSV"),
    config: str = typer.Option(
        "receiptflow.yaml",
        "--config",
        "-c",
        help="Path to config file",
    ),
    rules: str = typer.Option(
        None,
        "--rules",
        "-r",
        help="Extra rules file (.yaml/.json)",
    ),
    defaults: bool = typer.Option(
        False,
        "--defaults",
        help="Load the built-in system rules",
    ),
    output: str = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the classified workspace to this file",
    ),
) -> None:
    """Classify every unprocessed receipt and assign archive numbers."""
    from receiptflow.errors import ReceiptFlowError
    from receiptflow.workspace import save_workspace

    try:
        flow = _build_flow(source, config, rules, defaults)
    except (FileNotFoundError, ValueError, ReceiptFlowError) as e:
        _fail(str(e))

    with console.status("[bold green]Classifying receipts...[/bold green]"):
        batch = flow.classify_all()

    table = Table(title="Classified Receipts")
    table.add_column("Receipt", style="bold cyan")
    table.add_column("Type")
    table.add_column("Category")
    table.add_column("Tags")
    table.add_column("Archive Number", style="bold")
    table.add_column("Rule")
    for result in batch.results:
        receipt = result.receipt
        table.add_row(
            receipt.id,
            receipt.receipt_type.name,
            receipt.category.name,
            receipt.tags or "",
            result.archive_number or "",
            escape(result.rule_applied.name) if result.rule_applied else "[dim]default[/dim]",
        )
    console.print(table)
    console.print(f"Classified [bold]{batch.classified}[/bold] of {batch.total}, failed {batch.failed}")
    for error in batch.errors:
        console.print(f"  [red]✗[/red] {error}")

    if output:
        path = save_workspace(flow.snapshot(), output)
        console.print(f"[green]✓[/green] Workspace saved to [bold]{path}[/bold]")


@app.command()
def validate(
    source: str = typer.Argument(..., help="Workspace file (.yaml/.json)"),
    config: str = typer.Option(
        "receiptflow.yaml",
        "--config",
        "-c",
        help="Path to config file",
    ),
    reimbursement_id: str = typer.Option(
        None,
        "--id",
        help="Validate only this reimbursement",
    ),
) -> None:
    """Run the compliance checks on the workspace's reimbursements."""
    from receiptflow.compliance.validator import Severity
    from receiptflow.errors import ReceiptFlowError

    try:
        flow = _build_flow(source, config)
        if reimbursement_id:
            targets = [flow.reimbursements.require(reimbursement_id)]
        else:
            targets = flow.reimbursements.list_all()
    except (FileNotFoundError, ValueError, ReceiptFlowError) as e:
        _fail(str(e))

    if not targets:
        console.print("[yellow]No reimbursements to validate[/yellow]")
        return

    severity_colors = {
        Severity.ERROR: "red",
        Severity.WARNING: "yellow",
        Severity.INFO: "blue",
    }
    blocked = 0
    for reimbursement in targets:
        result = flow.workflow.validate(reimbursement.id)
        if not result.is_compliant:
            blocked += 1
        status = "[green]compliant[/green]" if result.is_compliant else "[red]blocked[/red]"
        console.print(Panel.fit(
            f"[bold]{escape(reimbursement.title or '(untitled)')}[/bold] — {status}, score {result.score}/100",
            subtitle=reimbursement.id,
        ))
        for issue in result.issues:
            color = severity_colors.get(issue.severity, "white")
            label = escape(f"[{issue.severity.value.upper()}]")
            console.print(f"  [{color}]{label}[/{color}] {issue.code}: {escape(issue.message)}")
        for warning in result.warnings:
            hint = f" — {warning.suggestion}" if warning.suggestion else ""
            console.print(f"  [yellow]\\[WARNING][/yellow] {warning.code}: {escape(warning.message + hint)}")

    if blocked:
        raise typer.Exit(code=1)


@app.command()
def rules(
    source: str = typer.Argument(None, help="Workspace or rules file (.yaml/.json)"),
    defaults: bool = typer.Option(
        False,
        "--defaults",
        help="Include the built-in system rules",
    ),
) -> None:
    """List classification rules in evaluation order."""
    from receiptflow.classification.rule_store import RuleStore, create_default_rule_store
    from receiptflow.errors import ReceiptFlowError
    from receiptflow.workspace import load_rules

    store = create_default_rule_store() if defaults else RuleStore()
    if source:
        try:
            for rule in load_rules(source):
                store.add(rule)
        except (FileNotFoundError, ValueError, ReceiptFlowError) as e:
            _fail(str(e))

    table = Table(title="Classification Rules")
    table.add_column("ID", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Name", style="bold cyan")
    table.add_column("Conditions")
    table.add_column("Actions")
    table.add_column("Enabled")

    for rule in store.all_rules():
        conditions = ", ".join(
            escape(f"{c.field.name} {c.operator.name} {c.value!r}") for c in rule.conditions
        ) or "[dim]any receipt[/dim]"
        actions = ", ".join(f"{a.type.name}={a.value}" if a.value else a.type.name for a in rule.actions)
        table.add_row(
            str(rule.id),
            str(rule.priority),
            escape(rule.name),
            conditions,
            escape(actions),
            "✅" if rule.enabled else "—",
        )
    console.print(table)


if __name__ == "__main__":
    app()
