"""Shared plumbing for the certifychain CLI commands."""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Coroutine, Optional, TypeVar

import typer

from certifychain import config
from certifychain.api_client import ApiClient
from certifychain.chain.client import ChainClient
from certifychain.cli import journal
from certifychain.cli.output import OutputFormat, output, output_error
from certifychain.exceptions import CertifyChainError
from certifychain.reconcile.flow import Reconciler
from certifychain.reconcile.outcomes import FlowResult, Outcome
from certifychain.wallet import Wallet

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

T = TypeVar("T")

KEY_OPTION_HELP = "Wallet private key (defaults to CERTIFYCHAIN_WALLET_KEY)"


def make_api_client() -> ApiClient:
    return ApiClient.from_config()


def make_chain_client(account=None) -> ChainClient:
    return ChainClient.from_config(account=account)


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a command coroutine; CertifyChainErrors print code and message and exit 1."""
    try:
        return asyncio.run(coro)
    except CertifyChainError as e:
        output_error(code=e.code, message=e.message, exit_code=EXIT_FAILURE)


@asynccontextmanager
async def open_reconciler(
    key: Optional[str],
    sign_in: bool = True,
    with_chain: bool = True,
) -> AsyncIterator[Reconciler]:
    """Wallet, signed-in API client and chain client for one command."""
    wallet = Wallet.from_private_key(key or config.WALLET_PRIVATE_KEY)
    api = make_api_client()
    chain = None
    try:
        if sign_in:
            await api.sign_in(wallet)
        if with_chain:
            chain = make_chain_client(wallet.account)
        yield Reconciler(wallet, chain, api)
    finally:
        await api.close()
        if chain is not None:
            await chain.close()


@asynccontextmanager
async def open_public(with_chain: bool = False) -> AsyncIterator[Reconciler]:
    """Unauthenticated access for public lookups."""
    api = make_api_client()
    chain = None
    try:
        if with_chain:
            chain = make_chain_client()
        yield Reconciler(None, chain, api)
    finally:
        await api.close()
        if chain is not None:
            await chain.close()


def report_flow(result: FlowResult, format: OutputFormat, entry: Optional[str] = None) -> None:
    """Print a flow result; unfinished ones are journaled for ``cert retry``."""
    data = result.to_dict()
    if result.outcome in (Outcome.CHAIN_ONLY, Outcome.STORE_ONLY, Outcome.UNKNOWN):
        data["pending_id"] = journal.save(result, entry)
    elif entry is not None:
        journal.remove(entry)

    output(data, format, table_title=f"{result.operation}: {data['outcome']}")
    if not result.ok:
        raise typer.Exit(EXIT_FAILURE)
