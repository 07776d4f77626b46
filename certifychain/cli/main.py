"""certifychain CLI - Main entry point with subcommand registration."""

from typing import Optional

import typer

from certifychain import __version__
from certifychain.cli import cert, entity
from certifychain.cli.output import OutputFormat, output
from certifychain.cli.utils import KEY_OPTION_HELP, open_reconciler, run_async
from certifychain.log_config import configure_logging

app = typer.Typer(
    name="certifychain",
    help="CertifyChain - issue and verify certificates anchored on-chain.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"certifychain version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override CERTIFYCHAIN_LOG_LEVEL"),
) -> None:
    """CertifyChain - issue and verify certificates anchored on-chain.

    The wallet key comes from CERTIFYCHAIN_WALLET_KEY or --key; the API
    from CERTIFYCHAIN_API_URL; the chain from CERTIFYCHAIN_RPC_URL and
    CERTIFYCHAIN_CONTRACT_ADDRESS.

    Examples:
        certifychain serve
        certifychain entity register --name "Acme University"
        certifychain cert issue -r "Jane Doe"
        certifychain cert verify 0x01
    """
    configure_logging(level=log_level.upper() if log_level else None, fmt="text")


@app.command("serve")
def serve_cmd(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (defaults to CERTIFYCHAIN_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the CertifyChain API."""
    import uvicorn

    from certifychain import config

    uvicorn.run("certifychain.main:app", host=host, port=port or config.SERVICE_PORT, reload=reload)


@app.command("signin")
def signin_cmd(
    key: Optional[str] = typer.Option(None, "--key", help=KEY_OPTION_HELP),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Check that the wallet can sign in to the API."""

    async def _run():
        async with open_reconciler(key, sign_in=False, with_chain=False) as reconciler:
            return await reconciler.records.sign_in(reconciler.wallet)

    output(run_async(_run()).model_dump(mode="json"), format)


app.add_typer(entity.app, name="entity", help="Register and inspect issuing entities")
app.add_typer(cert.app, name="cert", help="Issue, revoke, search and verify certificates")


if __name__ == "__main__":
    app()
