"""Command-line interface for poolvest."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from app.errors import ReferralError
from app.logging_config import configure_logging, get_logger
from app.referral.service import referral_service
from app.storage.db import db

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="poolvest",
    help="poolvest - referral tree and commission administration",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


def _add_descendants(branch: Tree, nodes: list[dict]) -> None:
    for node in nodes:
        child = branch.add(
            f"[green]{node['full_name']}[/green] <{node['email']}> "
            f"[dim]level {node['level']}, commission {node['commission']:.2f}[/dim]"
        )
        _add_descendants(child, node["referrals"])


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("tree")
def show_tree(
    wallet: Annotated[str | None, typer.Option("--wallet", "-w", help="Wallet address")] = None,
    user_id: Annotated[int | None, typer.Option("--user-id", "-u", help="User ID")] = None,
) -> None:
    """Show a user's referrers and referral tree."""
    if (wallet is None) == (user_id is None):
        console.print("[red]Pass exactly one of --wallet or --user-id[/red]")
        raise typer.Exit(2)

    try:
        tree = referral_service.get_tree_by_wallet(wallet) if wallet else referral_service.get_tree(user_id)
    except ReferralError as e:
        console.print(f"[bold red]✗[/bold red] {e.message}")
        raise typer.Exit(1)

    user = tree["user"]
    if tree["ancestors"]:
        chain = " → ".join(a["full_name"] for a in tree["ancestors"])
        console.print(f"[bold]Referred through:[/bold] {chain}")
    else:
        console.print("[bold]Referred through:[/bold] [dim]root user[/dim]")

    root = Tree(f"[bold cyan]{user['full_name']}[/bold cyan] <{user['email']}>")
    _add_descendants(root, tree["descendants"])
    console.print(root)


@app.command("distribute")
def distribute(
    wallet: Annotated[str, typer.Argument(help="Wallet address of the investor")],
    amount: Annotated[float, typer.Argument(help="Investment amount")],
) -> None:
    """Distribute commissions for an investment up the referral chain."""
    try:
        result = referral_service.distribute_by_wallet(wallet, amount)
    except ReferralError as e:
        console.print(f"[bold red]✗[/bold red] {e.message}")
        raise typer.Exit(1)

    if not result.credits:
        console.print(f"[yellow]Nothing distributed ({result.stop_reason})[/yellow]")
        return

    table = Table(title=f"Commissions for {amount:.2f}")
    table.add_column("Level", justify="right", style="cyan")
    table.add_column("Referral", justify="right")
    table.add_column("Beneficiary", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Amount", justify="right", style="green")

    for credit in result.credits:
        table.add_row(
            str(credit.level),
            str(credit.referral_id),
            str(credit.beneficiary_id),
            f"{credit.rate:%}",
            f"{credit.amount:.2f}",
        )

    console.print(table)
    console.print(f"Total: [bold]{result.total:.2f}[/bold] (stopped: {result.stop_reason})")


@app.command("reparent")
def reparent(
    referral_id: Annotated[int, typer.Argument(help="Referral to move")],
    parent_id: Annotated[int, typer.Argument(help="New parent referral")],
) -> None:
    """Move a referral and its subtree under another referral."""
    try:
        referral = referral_service.reparent_referral(referral_id, parent_id)
    except ReferralError as e:
        console.print(f"[bold red]✗[/bold red] {e.message}")
        raise typer.Exit(1)

    console.print(
        f"[bold green]✓[/bold green] Referral {referral.id} now at level {referral.level} "
        f"under user {referral.referrer_id}"
    )


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port")] = 8000,
    reload: Annotated[bool, typer.Option("--reload", help="Reload on code changes")] = False,
) -> None:
    """Run the API server."""
    import uvicorn

    uvicorn.run("app.api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
