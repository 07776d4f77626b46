"""Certificate commands.

Commands:
    certifychain cert issue --recipient-name ...   Issue and anchor a certificate
    certifychain cert revoke <ID>                  Revoke on-chain, then off-chain
    certifychain cert list                         Your certificates
    certifychain cert search [QUERY]               Search certificates
    certifychain cert verify <ON_CHAIN_ID>         Verify against the registry
    certifychain cert retry [PENDING_ID]           Finish an interrupted operation
"""

from pathlib import Path
from typing import Optional

import typer

from certifychain.cli import journal
from certifychain.cli.output import OutputFormat, output, output_error
from certifychain.cli.utils import (
    KEY_OPTION_HELP,
    open_public,
    open_reconciler,
    report_flow,
    run_async,
)
from certifychain.exceptions import CertifyChainError
from certifychain.reconcile.outcomes import Outcome, VerificationStatus

app = typer.Typer(
    name="cert",
    help="Issue, revoke, search and verify certificates.",
    no_args_is_help=True,
)

LIST_COLUMNS = ["id", "recipient_name", "recipient_email", "status", "blockchain_id", "issued_at"]


def _certificate_rows(certificates) -> list[dict]:
    return [c.model_dump(mode="json") for c in certificates]


@app.command("issue")
def issue_cmd(
    recipient_name: str = typer.Option(..., "--recipient-name", "-r", help="Recipient full name"),
    recipient_email: Optional[str] = typer.Option(None, "--recipient-email", "-e"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Also sent on-chain as metadata"),
    document: Optional[Path] = typer.Option(None, "--document", help="Image to upload and attach", exists=True, dir_okay=False),
    document_url: Optional[str] = typer.Option(None, "--document-url", help="URL of an already uploaded document"),
    fee: Optional[int] = typer.Option(None, "--fee", help="Issuance fee in wei (read from the contract by default)"),
    key: Optional[str] = typer.Option(None, "--key", help=KEY_OPTION_HELP),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Issue a certificate from your entity.

    The record is stored first and its hash anchored on-chain afterwards.

    Examples:
        certifychain cert issue -r "Jane Doe" -d "BSc Computer Science"
    """

    async def _run():
        async with open_reconciler(key) as reconciler:
            url = document_url
            if document is not None:
                url = await reconciler.records.upload(document)
            payload = {
                "recipient_name": recipient_name,
                "recipient_email": recipient_email,
                "description": description,
                "document_url": url,
            }
            return await reconciler.issue_certificate(payload, fee=fee)

    report_flow(run_async(_run()), format)


@app.command("revoke")
def revoke_cmd(
    cert_id: int = typer.Argument(..., help="Certificate id"),
    key: Optional[str] = typer.Option(None, "--key", help=KEY_OPTION_HELP),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Revoke one of your certificates."""

    async def _run():
        async with open_reconciler(key) as reconciler:
            return await reconciler.revoke_certificate(cert_id)

    report_flow(run_async(_run()), format)


@app.command("list")
def list_cmd(
    entity_id: Optional[str] = typer.Option(None, "--entity", help="List another entity's certificates"),
    key: Optional[str] = typer.Option(None, "--key", help=KEY_OPTION_HELP),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """List certificates, newest first (yours by default)."""

    async def _run():
        if entity_id:
            async with open_public() as reconciler:
                return await reconciler.records.list_entity_certificates(entity_id)
        async with open_reconciler(key, with_chain=False) as reconciler:
            return await reconciler.records.list_my_certificates()

    rows = _certificate_rows(run_async(_run()))
    output(rows, format, table_columns=LIST_COLUMNS, table_title="Certificates")


@app.command("search")
def search_cmd(
    query: Optional[str] = typer.Argument(None, help="Matches recipient name, email or hash"),
    recipient_email: Optional[str] = typer.Option(None, "--email", help="Exact recipient email"),
    revoked: Optional[bool] = typer.Option(None, "--revoked/--active", help="Filter by revocation"),
    limit: int = typer.Option(10, "--limit", "-l", help="Page size (1-100)"),
    cursor: Optional[int] = typer.Option(None, "--cursor", help="Cursor from the previous page"),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Search certificates."""

    async def _run():
        async with open_public() as reconciler:
            return await reconciler.records.search_certificates(
                query=query,
                recipient_email=recipient_email,
                is_revoked=revoked,
                limit=limit,
                cursor=cursor,
            )

    page = run_async(_run())
    if format == OutputFormat.table:
        output(
            _certificate_rows(page.certificates),
            format,
            table_columns=LIST_COLUMNS,
            table_title=f"Certificates (next cursor: {page.next_cursor or '-'})",
        )
    else:
        output(page.model_dump(mode="json"), format)


@app.command("verify")
def verify_cmd(
    on_chain_id: str = typer.Argument(..., help="On-chain certificate id (hex or decimal)"),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Verify a certificate against the registry contract.

    Exits 1 unless the certificate is valid.
    """

    async def _run():
        async with open_public(with_chain=True) as reconciler:
            return await reconciler.verify_certificate(on_chain_id)

    result = run_async(_run())
    output(result.to_dict(), format, table_title=f"Certificate {result.status.value}")
    if result.status != VerificationStatus.VALID:
        raise typer.Exit(1)


@app.command("retry")
def retry_cmd(
    pending_id: Optional[str] = typer.Argument(None, help="Pending operation id (lists them when omitted)"),
    fee: Optional[int] = typer.Option(None, "--fee", help="Fee in wei when the chain write is retried"),
    key: Optional[str] = typer.Option(None, "--key", help=KEY_OPTION_HELP),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Finish an operation that left the chain and the record store out of step.

    Chain-only results redo the store write, store-only issuances redo the
    chain write, and unconfirmed transactions are awaited again.
    """
    if pending_id is None:
        output(journal.entries(), format, table_title="Pending operations")
        return

    try:
        result = journal.load(pending_id)
    except CertifyChainError as e:
        output_error(code=e.code, message=e.message)
        return

    async def _run():
        async with open_reconciler(key) as reconciler:
            if result.outcome == Outcome.CHAIN_ONLY:
                return await reconciler.retry_store(result)
            if result.outcome == Outcome.STORE_ONLY:
                return await reconciler.retry_chain(result, fee=fee)
            return await reconciler.resolve_unknown(result)

    report_flow(run_async(_run()), format, entry=pending_id)
