"""Tests for the certifychain CLI.

Commands run against the in-process API app and the mock chain; the
factories in ``certifychain.cli.utils`` are patched to hand them out.
"""
import json

import pytest
from httpx import ASGITransport
from typer.testing import CliRunner

from certifychain import log_config
from certifychain.api_client import ApiClient
from certifychain.cli import journal
from certifychain.cli import utils as cli_utils
from certifychain.cli.main import app
from certifychain.exceptions import ChainUnavailableError
from tests.conftest import ADDRESS_B, TEST_KEY

runner = CliRunner()


@pytest.fixture
def cli(app_module, mock_chain, monkeypatch):
    """Invoke the CLI wired to the test app and mock chain."""
    monkeypatch.setattr(log_config, "_configured", True)
    monkeypatch.setattr(
        cli_utils,
        "make_api_client",
        lambda: ApiClient(base_url="http://test", transport=ASGITransport(app=app_module.app)),
    )
    monkeypatch.setattr(cli_utils, "make_chain_client", lambda account=None: mock_chain)

    def _invoke(*args: str):
        return runner.invoke(app, list(args))

    return _invoke


def _json(result) -> dict:
    return json.loads(result.stdout)


@pytest.fixture
def registered(cli):
    result = cli("entity", "register", "--name", "Acme University", "--key", TEST_KEY)
    assert result.exit_code == 0, result.output
    return _json(result)


class TestBasics:

    def test_version(self, cli):
        result = cli("--version")
        assert result.exit_code == 0
        assert "certifychain version" in result.stdout

    def test_no_args_shows_help(self, cli):
        result = cli()
        assert "entity" in result.output
        assert "cert" in result.output

    def test_signin(self, cli, wallet):
        result = cli("signin", "--key", TEST_KEY)
        assert result.exit_code == 0
        assert _json(result)["wallet_address"] == wallet.address.lower()


class TestEntityCommands:

    def test_register(self, registered, wallet):
        assert registered["outcome"] == "consistent"
        assert registered["chain_writes"] == 1
        assert registered["record"]["wallet_address"] == wallet.address.lower()

    def test_register_again_is_noop(self, cli, registered):
        result = cli("entity", "register", "--name", "Acme University", "--key", TEST_KEY)
        assert result.exit_code == 0
        data = _json(result)
        assert (data["chain_writes"], data["store_writes"]) == (0, 0)

    def test_show_own(self, cli, registered):
        result = cli("entity", "show", "--key", TEST_KEY)
        assert result.exit_code == 0
        assert _json(result)["name"] == "Acme University"

    def test_update(self, cli, registered):
        result = cli("entity", "update", "--description", "Founded 1890", "--key", TEST_KEY)
        assert result.exit_code == 0, result.output
        data = _json(result)
        assert data["description"] == "Founded 1890"
        assert data["name"] == "Acme University"

        shown = _json(cli("entity", "show", "--key", TEST_KEY))
        assert shown["description"] == "Founded 1890"

    def test_update_without_entity(self, cli):
        result = cli("entity", "update", "--name", "Acme", "--key", TEST_KEY)
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output

    def test_update_needs_a_field(self, cli):
        result = cli("entity", "update", "--key", TEST_KEY)
        assert result.exit_code == 1
        assert "VALIDATION" in result.output

    def test_show_unknown_wallet(self, cli):
        result = cli("entity", "show", ADDRESS_B)
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output

    def test_list_table(self, cli, registered):
        result = cli("entity", "list", "--format", "table")
        assert result.exit_code == 0
        assert "Entities" in result.stdout

    def test_list_pretty(self, cli, registered):
        result = cli("entity", "list", "--format", "pretty")
        assert result.exit_code == 0
        assert result.stdout.startswith("{\n")
        assert [e["name"] for e in _json(result)["entities"]] == ["Acme University"]


class TestCertCommands:

    def test_issue_list_verify(self, cli, registered):
        result = cli("cert", "issue", "-r", "Jane Doe", "-d", "BSc", "--key", TEST_KEY)
        assert result.exit_code == 0, result.output
        issued = _json(result)
        assert issued["outcome"] == "consistent"
        on_chain_id = issued["on_chain_id"]

        listed = _json(cli("cert", "list", "--key", TEST_KEY))
        assert [c["blockchain_id"] for c in listed] == [on_chain_id]

        verified = cli("cert", "verify", on_chain_id)
        assert verified.exit_code == 0
        data = _json(verified)
        assert data["status"] == "valid"
        assert data["hash_matches"] is True

    def test_issue_with_document(self, cli, registered, tmp_path):
        image = tmp_path / "diploma.png"
        image.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 16)

        result = cli("cert", "issue", "-r", "Jane Doe", "--document", str(image), "--key", TEST_KEY)
        assert result.exit_code == 0, result.output
        assert _json(result)["record"]["document_url"].startswith("/uploads/")

    def test_verify_unknown_exits_1(self, cli):
        result = cli("cert", "verify", "0x2a")
        assert result.exit_code == 1
        assert _json(result)["status"] == "not_found"

    def test_verify_malformed_id(self, cli):
        result = cli("cert", "verify", "nonsense")
        assert result.exit_code == 1
        assert "VALIDATION" in result.output

    def test_revoke(self, cli, registered, mock_chain):
        cert_id = _json(cli("cert", "issue", "-r", "Jane Doe", "--key", TEST_KEY))["certificate_id"]

        result = cli("cert", "revoke", str(cert_id), "--key", TEST_KEY)
        assert result.exit_code == 0
        assert _json(result)["record"]["is_revoked"] is True
        assert mock_chain.certificates[1].is_revoked

    def test_revoke_missing_exits_1(self, cli, registered):
        result = cli("cert", "revoke", "999", "--key", TEST_KEY)
        assert result.exit_code == 1
        assert _json(result)["error"]["code"] == "NOT_FOUND"

    def test_search(self, cli, registered):
        cli("cert", "issue", "-r", "Jane Doe", "--key", TEST_KEY)
        cli("cert", "issue", "-r", "John Roe", "--key", TEST_KEY)

        data = _json(cli("cert", "search", "jane"))
        assert [c["recipient_name"] for c in data["certificates"]] == ["Jane Doe"]

        data = _json(cli("cert", "search", "--revoked"))
        assert data["certificates"] == []


class TestRetry:

    def test_store_only_issue_is_journaled_and_finished(self, cli, registered, mock_chain):
        simulate = mock_chain.issue_certificate.side_effect
        mock_chain.issue_certificate.side_effect = ChainUnavailableError("RPC refused")

        result = cli("cert", "issue", "-r", "Jane Doe", "--key", TEST_KEY)
        assert result.exit_code == 1
        data = _json(result)
        assert data["outcome"] == "store_only"
        pending_id = data["pending_id"]

        pending = _json(cli("cert", "retry"))
        assert [p["id"] for p in pending] == [pending_id]
        assert pending[0]["error"] == "CHAIN_UNAVAILABLE"

        mock_chain.issue_certificate.side_effect = simulate
        result = cli("cert", "retry", pending_id, "--key", TEST_KEY)
        assert result.exit_code == 0, result.output
        assert _json(result)["outcome"] == "consistent"
        assert journal.entries() == []

    def test_corrupt_entry_is_listed_not_fatal(self, cli):
        directory = journal.journal_dir()
        directory.mkdir(parents=True, exist_ok=True)
        (directory / "issue-7.json").write_text('{"operation": "iss')

        result = cli("cert", "retry")
        assert result.exit_code == 0, result.output
        assert _json(result) == [{
            "id": "issue-7",
            "operation": None,
            "outcome": "corrupt",
            "transaction_hash": None,
            "error": None,
        }]

        result = cli("cert", "retry", "issue-7")
        assert result.exit_code == 1
        assert "VALIDATION" in result.output

    def test_unknown_pending_id(self, cli):
        result = cli("cert", "retry", "issue-404")
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output
