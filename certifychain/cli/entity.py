"""Issuing entity commands.

Commands:
    certifychain entity register --name ...   Register on-chain and off-chain
    certifychain entity update --name ...     Edit your entity's name or description
    certifychain entity show [ADDRESS]        Show an entity (yours by default)
    certifychain entity list                  List registered entities
"""

from typing import Optional

import typer

from certifychain.cli.output import OutputFormat, output, output_error
from certifychain.cli.utils import KEY_OPTION_HELP, open_public, open_reconciler, report_flow, run_async
from certifychain.exceptions import NotFoundError, ValidationError

app = typer.Typer(
    name="entity",
    help="Register and inspect issuing entities.",
    no_args_is_help=True,
)

LIST_COLUMNS = ["id", "name", "wallet_address", "status", "certificate_count", "registered_at"]


@app.command("register")
def register_cmd(
    name: str = typer.Option(..., "--name", "-n", help="Entity name"),
    description: Optional[str] = typer.Option(None, "--description", help="Description"),
    organization_type: Optional[str] = typer.Option(None, "--type", help="Organization type"),
    country: Optional[str] = typer.Option(None, "--country"),
    website: Optional[str] = typer.Option(None, "--website", help="Website (https:// added if missing)"),
    email: Optional[str] = typer.Option(None, "--email"),
    phone: Optional[str] = typer.Option(None, "--phone"),
    address: Optional[str] = typer.Option(None, "--address", help="Postal address"),
    registration_number: Optional[str] = typer.Option(None, "--registration-number"),
    tax_id: Optional[str] = typer.Option(None, "--tax-id"),
    fee: Optional[int] = typer.Option(None, "--fee", help="Registration fee in wei (read from the contract by default)"),
    key: Optional[str] = typer.Option(None, "--key", help=KEY_OPTION_HELP),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Register the wallet as an issuing entity.

    Skips whichever half (chain or record store) is already done.

    Examples:
        certifychain entity register --name "Acme University" --website acme.edu
    """
    profile = {
        "name": name,
        "description": description,
        "organization_type": organization_type,
        "country": country,
        "website": website,
        "email": email,
        "phone": phone,
        "address": address,
        "registration_number": registration_number,
        "tax_id": tax_id,
    }

    async def _run():
        async with open_reconciler(key) as reconciler:
            return await reconciler.register_entity(profile, fee=fee)

    report_flow(run_async(_run()), format)


@app.command("update")
def update_cmd(
    name: Optional[str] = typer.Option(None, "--name", "-n", help="New entity name"),
    description: Optional[str] = typer.Option(None, "--description", help="New description"),
    key: Optional[str] = typer.Option(None, "--key", help=KEY_OPTION_HELP),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Edit your entity's name or description (off-chain profile only).

    Examples:
        certifychain entity update --description "Founded 1890"
    """
    if name is None and description is None:
        error = ValidationError("Nothing to update: pass --name or --description")
        output_error(code=error.code, message=error.message)
        return

    async def _run():
        async with open_reconciler(key, with_chain=False) as reconciler:
            entity = await reconciler.records.get_my_entity()
            if entity is None:
                raise NotFoundError("No entity registered for this wallet")
            return await reconciler.records.update_entity(entity.id, name=name, description=description)

    entity = run_async(_run())
    output(entity.model_dump(mode="json"), format, table_title=entity.name)


@app.command("show")
def show_cmd(
    address: Optional[str] = typer.Argument(None, help="Wallet address (defaults to your own entity)"),
    key: Optional[str] = typer.Option(None, "--key", help=KEY_OPTION_HELP),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Show an entity profile."""

    async def _run():
        if address:
            async with open_public() as reconciler:
                return await reconciler.records.get_entity_by_wallet(address)
        async with open_reconciler(key, with_chain=False) as reconciler:
            return await reconciler.records.get_my_entity()

    entity = run_async(_run())
    if entity is None:
        error = NotFoundError(f"No entity registered for {address or 'this wallet'}")
        output_error(code=error.code, message=error.message)
        return
    output(entity.model_dump(mode="json"), format, table_title=entity.name)


@app.command("list")
def list_cmd(
    limit: int = typer.Option(10, "--limit", "-l", help="Page size (1-100)"),
    cursor: Optional[str] = typer.Option(None, "--cursor", help="Cursor from the previous page"),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """List registered entities, newest first."""

    async def _run():
        async with open_public() as reconciler:
            return await reconciler.records.list_entities(limit=limit, cursor=cursor)

    page = run_async(_run())
    if format == OutputFormat.table:
        output(
            [e.model_dump(mode="json") for e in page.entities],
            format,
            table_columns=LIST_COLUMNS,
            table_title=f"Entities (next cursor: {page.next_cursor or '-'})",
        )
    else:
        output(page.model_dump(mode="json"), format)
