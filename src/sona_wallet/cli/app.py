"""Operator CLI for Sona Wallet: set up a deployment and run the chat API."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="sona-wallet",
    help="Chat-driven Solana wallet assistant.",
    no_args_is_help=True,
)
console = Console()

_base_path: Path | None = None


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"sona-wallet {version('sona-wallet')}")
        raise typer.Exit()


@app.callback()
def main(
    directory: Path = typer.Option(
        None,
        "--dir",
        "-d",
        help="Directory containing .sona-wallet/ (defaults to the current directory)",
        envvar="SONA_WALLET_DIR",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Chat-driven Solana wallet assistant."""
    global _base_path
    _base_path = directory
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose)],
    )
    if not verbose:
        # Request logging from the HTTP clients is noise at info level
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _run(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


# Provider presets: user-facing name -> (config provider, base_url, default model, env var)
PROVIDER_PRESETS = {
    "openai":    ("openai",    None,                         "gpt-4o-mini",              "OPENAI_API_KEY"),
    "anthropic": ("anthropic", None,                         "claude-3-5-haiku-latest",  "ANTHROPIC_API_KEY"),
    "ollama":    ("openai",    "http://localhost:11434/v1",  "llama3.1",                 None),
}


# ------------------------------------------------------------------
# init
# ------------------------------------------------------------------


@app.command()
def init(
    name: str = typer.Option("Sona", "--name", "-n", help="Assistant name"),
    provider: str = typer.Option("openai", "--provider", "-p", help="LLM provider (openai, anthropic, ollama)"),
    model: str = typer.Option(None, "--model", "-m", help="Model name (defaults per provider)"),
    rpc_url: str = typer.Option(None, "--rpc-url", help="Solana JSON-RPC endpoint"),
    cluster: str = typer.Option(None, "--cluster", help="Cluster name used in explorer links"),
    keypair: Path = typer.Option(None, "--keypair", help="Solana CLI keypair file (devnet/testing signer)"),
    signer_url: str = typer.Option(None, "--signer-url", help="Wallet bridge URL"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing configuration"),
):
    """Write a default configuration to .sona-wallet/config.yaml."""
    from sona_wallet.config import AppConfig, LLMProviderConfig, get_root_dir, save_config

    if provider not in PROVIDER_PRESETS:
        console.print(f"[red]Unknown provider '{provider}'. Choose from: {', '.join(PROVIDER_PRESETS)}[/red]")
        raise typer.Exit(1)
    if keypair and signer_url:
        console.print("[red]Use either --keypair or --signer-url, not both.[/red]")
        raise typer.Exit(1)

    root_dir = get_root_dir(_base_path, create=True)
    config_path = root_dir / "config.yaml"
    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration already exists at {config_path}. Use --force to overwrite.[/yellow]")
        raise typer.Exit(1)

    config_provider, base_url, default_model, env_var = PROVIDER_PRESETS[provider]
    config = AppConfig(name=name)
    provider_config = LLMProviderConfig(
        api_key=f"${{{env_var}}}" if env_var else "ollama",
        model=model or default_model,
        base_url=base_url,
    )
    config.llm.default_provider = config_provider
    setattr(config.llm, config_provider, provider_config)

    if rpc_url:
        config.chain.rpc_url = rpc_url
    if cluster:
        config.chain.cluster = cluster
    if keypair:
        config.signer.kind = "keypair"
        config.signer.keypair_path = str(keypair)
    elif signer_url:
        config.signer.kind = "http"
        config.signer.url = signer_url

    save_config(config, config_path)

    signer_line = config.signer.kind
    if config.signer.kind == "none":
        signer_line = "[yellow]none[/yellow] (transfers need --keypair or --signer-url)"
    console.print(Panel(
        f"[bold green]{name} initialized![/bold green]\n\n"
        f"Config: {config_path}\n"
        f"RPC: {config.chain.rpc_url} ({config.chain.cluster})\n"
        f"Provider: [cyan]{provider}[/cyan] (model: {provider_config.model})\n"
        f"Signer: {signer_line}\n\n"
        f"Next steps:\n"
        f"  sona-wallet status\n"
        f"  sona-wallet serve",
        title="Sona Wallet",
    ))


# ------------------------------------------------------------------
# serve
# ------------------------------------------------------------------


@app.command()
def serve(
    port: int = typer.Option(None, "--port", "-p", help="Port to serve on (default from config)"),
    host: str = typer.Option(None, "--host", help="Host to bind to (default from config)"),
):
    """Run the chat API server."""
    from sona_wallet.api.server import run_server
    from sona_wallet.config import get_root_dir, load_config

    config_path = get_root_dir(_base_path) / "config.yaml"
    if not config_path.exists():
        console.print("[red]No configuration found. Run 'sona-wallet init' first.[/red]")
        raise typer.Exit(1)
    server = load_config(config_path).server
    host = host or server.host
    port = port or server.port

    console.print(f"[bold green]Serving Sona Wallet at http://{host}:{port}[/bold green]")
    run_server(host=host, port=port, base_path=_base_path)


# ------------------------------------------------------------------
# status
# ------------------------------------------------------------------


@app.command()
def status():
    """Show the deployment configuration."""
    from sona_wallet.core.session import WalletChatSession

    async def _status():
        session = await WalletChatSession.load(_base_path)
        s = session.status()
        assets = [session.assets.get(symbol) for symbol in s["assets"]]
        await session.shutdown()
        return s, assets

    try:
        s, assets = _run(_status())
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(Panel(
        f"[bold]{s['name']}[/bold]\n\n"
        f"RPC: {s['rpc_url']} ({s['cluster']})\n"
        f"Signer: {s['signer'] or '[yellow]not available[/yellow]'}\n"
        f"Messages: {s['messages']}",
        title="Sona Wallet Status",
    ))

    table = Table(title="Assets")
    table.add_column("Symbol", style="bold")
    table.add_column("Decimals")
    table.add_column("Mint")
    for asset in assets:
        table.add_row(asset.symbol, str(asset.decimals), asset.mint or "[dim]native[/dim]")
    console.print(table)
