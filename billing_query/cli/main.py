"""
CLI interface for billing queries.

Runs the billing queries against a local billing database from the
command line.
"""

import asyncio
import sys
from typing import Any, Callable, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from billing_query.config.loader import AppConfig, default_config, load_config
from billing_query.core.handler import BillingQueryHandler, Response, create_handler
from billing_query.storage.repository import initialize_schema
from billing_query.utils.logging import configure_logging

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1

ConfigOption = typer.Option(None, "--config", "-c", help="Path to YAML configuration file")
OwnerOption = typer.Option(..., "--owner", "-o", help="Owner to authenticate as")
CredentialOption = typer.Option(
    ..., "--credential", envvar="BILLING_QUERY_CREDENTIAL", help="Credential of the owner"
)
ForOwnerOption = typer.Option(None, "--for-owner", help="Owner to query (defaults to --owner)")
StartOption = typer.Option(None, "--start", "-s", help="Range start, RFC 3339 (e.g. 2024-01-01T00:00:00Z)")
EndOption = typer.Option(None, "--end", "-e", help="Range end, RFC 3339 (defaults to now)")
TimeoutOption = typer.Option(None, "--timeout", "-t", help="Query time limit in seconds")


def _load(config_path: Optional[str]) -> AppConfig:
    """Load configuration and set up logging."""
    try:
        config = load_config(config_path) if config_path else default_config()
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    configure_logging(config.logging.level, json=config.logging.json)
    return config


def _costs_body(
    owner: str,
    credential: str,
    for_owner: Optional[str],
    start: Optional[str],
    end: Optional[str]
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"auth": {"owner": owner, "credential": credential}}
    if for_owner:
        body["owner"] = for_owner
    time_range = {}
    if start:
        time_range["startTime"] = start
    if end:
        time_range["endTime"] = end
    if time_range:
        body["timeRange"] = time_range
    return body


def _run(
    config: AppConfig,
    call: Callable[[BillingQueryHandler], Any]
) -> Response:
    async def _execute() -> Response:
        handler = await create_handler(config)
        return await call(handler)

    try:
        return asyncio.run(_execute())
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _exit_on_failure(response: Response) -> None:
    if not response.success:
        console.print(f"[red]Error ({response.status}):[/] {response.body['error']}")
        sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Billing query CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Billing Query - Use --help to see available commands")


@app.command()
def init(config_path: Optional[str] = ConfigOption):
    """Initialize the billing database."""
    config = _load(config_path)
    try:
        initialize_schema(config.database.path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def namespaces(
    owner: str = OwnerOption,
    credential: str = CredentialOption,
    start: Optional[str] = StartOption,
    end: Optional[str] = EndOption,
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="consumption or recharge"),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n", help="Only this namespace"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum number of records"),
    timeout: Optional[float] = TimeoutOption,
    config_path: Optional[str] = ConfigOption
):
    """List namespace billing history, newest first."""
    config = _load(config_path)
    body = _costs_body(owner, credential, None, start, end)
    if kind:
        body["kind"] = kind
    if namespace:
        body["namespace"] = namespace
    if limit is not None:
        body["limit"] = limit

    response = _run(config, lambda handler: handler.billing_history_list(body, timeout=timeout))
    _exit_on_failure(response)

    records = response.body["data"]["list"]
    if not records:
        console.print("\n[dim]No billing records found in range.[/]")
        sys.exit(EXIT_CODE_OK)

    table = Table(title="Namespace Billing History")
    table.add_column("Timestamp")
    table.add_column("Namespace")
    table.add_column("Kind")
    table.add_column("Amount", justify="right")
    for record in records:
        table.add_row(record["timestamp"], record["namespace"], record["kind"], record["amount"])
    console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command()
def properties(
    owner: str = OwnerOption,
    credential: str = CredentialOption,
    timeout: Optional[float] = TimeoutOption,
    config_path: Optional[str] = ConfigOption
):
    """Show the billable property catalog."""
    config = _load(config_path)
    envelope = {"owner": owner, "credential": credential}
    response = _run(config, lambda handler: handler.get_properties(envelope, timeout=timeout))
    _exit_on_failure(response)

    table = Table(title="Billable Properties")
    table.add_column("Name")
    table.add_column("Enum", justify="right")
    table.add_column("Unit")
    table.add_column("Display name")
    for prop in response.body["data"]["properties"]:
        table.add_row(prop["name"], str(prop["enum"]), prop["unit"], prop["displayName"])
    console.print(table)
    sys.exit(EXIT_CODE_OK)


def _amount_command(
    label: str,
    query: Callable[[BillingQueryHandler], Callable[..., Any]],
    owner: str,
    credential: str,
    for_owner: Optional[str],
    start: Optional[str],
    end: Optional[str],
    timeout: Optional[float],
    config_path: Optional[str]
) -> None:
    config = _load(config_path)
    body = _costs_body(owner, credential, for_owner, start, end)
    response = _run(config, lambda handler: query(handler)(body, timeout=timeout))
    _exit_on_failure(response)

    console.print(f"[bold]{label}:[/bold] {response.body['data']['amount']}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def consumption(
    owner: str = OwnerOption,
    credential: str = CredentialOption,
    for_owner: Optional[str] = ForOwnerOption,
    start: Optional[str] = StartOption,
    end: Optional[str] = EndOption,
    timeout: Optional[float] = TimeoutOption,
    config_path: Optional[str] = ConfigOption
):
    """Show the consumption amount in a time range."""
    _amount_command(
        "Consumption amount", lambda handler: handler.get_consumption_amount,
        owner, credential, for_owner, start, end, timeout, config_path
    )


@app.command()
def recharge(
    owner: str = OwnerOption,
    credential: str = CredentialOption,
    for_owner: Optional[str] = ForOwnerOption,
    start: Optional[str] = StartOption,
    end: Optional[str] = EndOption,
    timeout: Optional[float] = TimeoutOption,
    config_path: Optional[str] = ConfigOption
):
    """Show the recharge amount in a time range."""
    _amount_command(
        "Recharge amount", lambda handler: handler.get_recharge_amount,
        owner, credential, for_owner, start, end, timeout, config_path
    )


@app.command("properties-used")
def properties_used(
    owner: str = OwnerOption,
    credential: str = CredentialOption,
    for_owner: Optional[str] = ForOwnerOption,
    start: Optional[str] = StartOption,
    end: Optional[str] = EndOption,
    timeout: Optional[float] = TimeoutOption,
    config_path: Optional[str] = ConfigOption
):
    """Show the amount used across all properties in a time range."""
    _amount_command(
        "Properties used amount", lambda handler: handler.get_properties_used_amount,
        owner, credential, for_owner, start, end, timeout, config_path
    )


@app.command()
def costs(
    owner: str = OwnerOption,
    credential: str = CredentialOption,
    for_owner: Optional[str] = ForOwnerOption,
    start: Optional[str] = StartOption,
    end: Optional[str] = EndOption,
    timeout: Optional[float] = TimeoutOption,
    config_path: Optional[str] = ConfigOption
):
    """Show hourly costs broken down by property."""
    config = _load(config_path)
    body = _costs_body(owner, credential, for_owner, start, end)
    response = _run(config, lambda handler: handler.get_costs(body, timeout=timeout))
    _exit_on_failure(response)

    cost_map = response.body["data"]["costs"]
    if not cost_map:
        console.print("\n[dim]No costs found in range.[/]")
        sys.exit(EXIT_CODE_OK)

    table = Table(title="Hourly Costs")
    table.add_column("Hour")
    table.add_column("Property")
    table.add_column("Amount", justify="right")
    for bucket, by_property in cost_map.items():
        for prop, amount in by_property.items():
            table.add_row(bucket, prop, amount)
    console.print(table)
    sys.exit(EXIT_CODE_OK)


if __name__ == "__main__":
    app()
