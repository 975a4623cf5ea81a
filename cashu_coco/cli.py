"""Cashu Coco CLI - run the workflow node from a terminal."""

import asyncio
import json
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from .config import SEED_ENV_VAR, Settings, configure_logging
from .description import NODE_DESCRIPTION, OPERATION_ALIASES, OPERATIONS
from .host import LocalExecuteContext
from .node import CashuCocoNode, test_credentials
from .registry import ManagerRegistry
from .types import CashuCocoError, NodeOperationError, UnknownMintError, WalletError

app = typer.Typer(
    name="cashu-coco",
    help="Cashu Coco - Cashu e-cash wallet operations as a workflow node",
    rich_markup_mode="markdown",
)
console = Console()


def load_settings(mint_url: str | None = None, seed: str | None = None) -> Settings:
    settings = Settings.from_env()
    if mint_url:
        settings.mint_url = mint_url
    if seed:
        settings.seed = seed
    configure_logging(settings.log_level)
    return settings


def get_seed(settings: Settings) -> str:
    """Get the wallet seed from settings or prompt for it."""
    if settings.seed:
        return settings.seed

    console.print("\n[yellow]Seed not found.[/yellow]")
    console.print("Format: 64-byte hex string or BIP39 mnemonic")
    console.print(f"Set {SEED_ENV_VAR} in the environment or .env to skip this prompt")
    seed = Prompt.ask("Enter seed", password=True)
    if not seed:
        console.print("[red]Seed is required![/red]")
        raise typer.Exit(1)
    return seed


def parse_parameters(pairs: list[str]) -> dict[str, Any]:
    """Turn ``name=value`` pairs into node parameters.

    Values that parse as JSON (numbers, booleans) keep that type; anything
    else stays a string.
    """
    parameters: dict[str, Any] = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"Expected name=value, got '{pair}'")
        try:
            parameters[name] = json.loads(raw)
        except json.JSONDecodeError:
            parameters[name] = raw
    return parameters


def handle_error(e: Exception) -> None:
    """Print errors with user-friendly messages."""
    cause = e.__cause__ if isinstance(e, NodeOperationError) and e.__cause__ else e
    if isinstance(cause, UnknownMintError):
        console.print(f"[red]🏦 {cause}[/red]")
        console.print("[dim]Run the mint addMint operation first[/dim]")
    elif isinstance(cause, WalletError) and "insufficient balance" in str(cause).lower():
        console.print(f"[red]💰 {cause}[/red]")
    else:
        console.print(f"[red]❌ {cause}[/red]")


@app.command()
def describe() -> None:
    """List resources, operations and their parameters."""
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Resource", style="green")
    table.add_column("Operation")
    table.add_column("Parameters", style="dim")

    properties = NODE_DESCRIPTION["properties"]
    for resource, operations in OPERATIONS.items():
        for operation in operations:
            names = ["mintUrl"]
            for prop in properties:
                show = prop.get("displayOptions", {}).get("show", {})
                if prop["name"] == "operation" or not show.get("operation"):
                    continue
                if resource in show["resource"] and operation in show["operation"]:
                    names.append(prop["name"])
            table.add_row(resource, operation, ", ".join(names))

    console.print(table)
    aliases = ", ".join(f"{old} -> {new}" for old, new in OPERATION_ALIASES.items())
    console.print(f"[dim]Aliases: {aliases}[/dim]")


@app.command()
def run(
    resource: Annotated[str, typer.Argument(help="Resource: mint, wallet or quote")],
    operation: Annotated[str, typer.Argument(help="Operation, e.g. getBalances")],
    param: Annotated[
        Optional[list[str]],
        typer.Option("--param", "-p", help="Node parameter as name=value"),
    ] = None,
    mint_url: Annotated[
        Optional[str], typer.Option("--mint", "-m", help="Mint URL for the credential")
    ] = None,
    continue_on_fail: Annotated[
        bool,
        typer.Option("--continue-on-fail", help="Report failures as error records"),
    ] = False,
) -> None:
    """Execute one node operation and print its output as JSON."""
    settings = load_settings(mint_url)
    credentials = settings.credentials()
    credentials["seed"] = get_seed(settings)

    parameters = {"resource": resource, "operation": operation}
    parameters.update(parse_parameters(param or []))
    ctx = LocalExecuteContext(
        parameters, credentials, continue_on_fail=continue_on_fail
    )

    async def _run() -> list[dict[str, Any]]:
        registry = ManagerRegistry(restore_on_create=False)
        try:
            return await CashuCocoNode(registry, settings).execute(ctx)
        finally:
            await registry.aclose()

    try:
        output = asyncio.run(_run())
    except CashuCocoError as e:
        handle_error(e)
        raise typer.Exit(1)

    console.print_json(json.dumps(output))


@app.command()
def check(
    mint_url: Annotated[
        Optional[str], typer.Option("--mint", "-m", help="Mint URL to test")
    ] = None,
) -> None:
    """Test the credential's mint connection."""
    settings = load_settings(mint_url)
    result = asyncio.run(test_credentials(settings.credentials()))
    if result["status"] == "OK":
        console.print(f"[green]✅ {result['message']}[/green]")
    else:
        console.print(f"[red]❌ {result['message']}[/red]")
        raise typer.Exit(1)


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
