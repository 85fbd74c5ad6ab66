"""
CLI interface for the usage reconciler.

Operator access to ingestion, dashboard queries and bulk clearing.
"""

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from usage_reconciler.api.handlers import UsageAPI, build_api
from usage_reconciler.config.loader import default_config, load_service_config
from usage_reconciler.core.summary import summarize_usage
from usage_reconciler.demo.seed_demo_data import seed_demo_data

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _api(ctx: typer.Context) -> UsageAPI:
    return ctx.obj["api"]


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML service configuration"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    ),
):
    """Usage Reconciler CLI."""
    _configure_logging(verbose)
    try:
        service_config = load_service_config(str(config)) if config else default_config()
    except (OSError, ValueError) as e:
        console.print(f"[red]Error loading config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    ctx.obj = {"config": service_config, "api": build_api(service_config)}
    if ctx.invoked_subcommand is None:
        console.print("Usage Reconciler - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the usage record store."""
    try:
        _api(ctx).repository.initialize_schema()
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def ingest(
    ctx: typer.Context,
    payload: Optional[str] = typer.Argument(
        None,
        help="JSON body: {modelName, imageCount}, {model, count} or a list of these"
    ),
    file: Optional[Path] = typer.Option(
        None,
        "--file",
        "-f",
        help="Read the JSON body from a file"
    ),
    user_id: Optional[str] = typer.Option(None, "--user-id", help="Sent as the x-user-id header"),
    email: Optional[str] = typer.Option(None, "--email", help="Sent as the x-email header"),
    authorization: Optional[str] = typer.Option(
        None,
        "--authorization",
        help="Sent as the Authorization header"
    ),
):
    """Record usage events as the desktop client would."""
    if file is not None:
        body = file.read_text(encoding="utf-8")
    elif payload is not None:
        body = payload
    else:
        console.print("[red]Error:[/] provide a JSON payload or --file")
        sys.exit(EXIT_CODE_FAIL)

    headers = {}
    if user_id:
        headers["x-user-id"] = user_id
    if email:
        headers["x-email"] = email
    if authorization:
        headers["Authorization"] = authorization

    response = _api(ctx).post_usage(body, headers)
    if not response.ok:
        console.print(f"[red]Error:[/] {response.body['error']}")
        if "receivedFormat" in response.body:
            console.print(f"Received keys: {response.body['receivedFormat']}")
        sys.exit(EXIT_CODE_FAIL)

    data = response.body["data"]
    if isinstance(data, list):
        for item in data:
            if item["success"]:
                console.print(f"[green]✓[/] #{item['index']} {_describe(item['data'])}")
            else:
                console.print(f"[red]✗[/] #{item['index']} {item['error']}")
    else:
        console.print(f"[green]✓[/] {_describe(data)}")

    sys.exit(EXIT_CODE_PASS if response.body["success"] else EXIT_CODE_FAIL)


def _describe(record: dict) -> str:
    return f"{record['modelName']} x{record['imageCount']} for {record['userId']}"


@app.command()
def query(
    ctx: typer.Context,
    user_id: Optional[str] = typer.Option(
        None,
        "--user-id",
        "-u",
        help="Account to reconcile; omit for the whole window"
    ),
    force_test_data: bool = typer.Option(
        False,
        "--force-test-data",
        help="Serve placeholder data when nothing is found or the store fails"
    ),
    summary: bool = typer.Option(
        False,
        "--summary",
        "-s",
        help="Show per-day totals instead of individual records"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the raw response body"),
):
    """Show usage for the trailing window."""
    params = {}
    if user_id:
        params["userId"] = user_id
    if force_test_data:
        params["forceTestData"] = "true"

    response = _api(ctx).get_usage(params)
    if as_json:
        console.print_json(json.dumps(response.body))
        sys.exit(EXIT_CODE_PASS if response.ok else EXIT_CODE_FAIL)

    if not response.ok:
        console.print(f"[red]Error:[/] {response.body['error']}")
        sys.exit(EXIT_CODE_FAIL)

    records = response.body["data"]
    if response.body.get("message"):
        console.print(f"[yellow]{response.body['message']}[/]")
    if response.body.get("error"):
        console.print(f"[dim]{response.body['error']}[/]")

    if not records:
        console.print("\n[bold yellow]No usage data in the last window[/]")
        sys.exit(EXIT_CODE_PASS)

    if summary:
        _display_summary(records)
    else:
        _display_records(records)
    sys.exit(EXIT_CODE_PASS)


def _display_records(records: List[dict]) -> None:
    table = Table(title="Model Usage")
    table.add_column("Model")
    table.add_column("Images", justify="right")
    table.add_column("Timestamp", justify="right")
    table.add_column("User")
    for record in records:
        table.add_row(
            record["modelName"],
            str(record["imageCount"]),
            str(record["timestamp"]),
            record.get("userId") or "-",
        )
    console.print(table)


def _display_summary(records: List[dict]) -> None:
    result = summarize_usage(records)
    table = Table(title="Daily Usage")
    table.add_column("Date")
    for name in result.model_names:
        table.add_column(name, justify="right")
    for bucket in result.days:
        table.add_row(bucket.label, *(str(bucket.totals.get(name, 0)) for name in result.model_names))
    console.print(table)


@app.command()
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Confirm deleting every record"),
):
    """Delete every stored usage record."""
    if not yes:
        console.print("[red]Refusing to clear without --yes[/]")
        sys.exit(EXIT_CODE_FAIL)

    response = _api(ctx).delete_usage()
    if not response.ok:
        console.print(f"[red]Error:[/] {response.body['error']}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] {response.body['message']} ({response.body['deleted']} records)")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def seed(ctx: typer.Context):
    """Insert demo usage events."""
    api = _api(ctx)
    try:
        api.repository.initialize_schema()
        accepted = seed_demo_data(api)
    except Exception as e:
        console.print(f"[red]Error seeding demo data:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Demo usage data inserted ({accepted} events)")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
