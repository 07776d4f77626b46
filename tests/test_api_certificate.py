"""Tests for certificate record endpoints."""
import pytest
from httpx import AsyncClient

CHAIN_ID = "0x" + "00" * 31 + "07"
TX_HASH = "0x" + "ee" * 32


async def _issue(client: AsyncClient, entity: dict, name: str = "Jane Doe", **fields) -> dict:
    response = await client.post(
        "/certificate", json={"recipient_name": name, "issuer_id": entity["id"], **fields}
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_is_pending_until_anchored(self, signed_in_client: AsyncClient, entity):
        cert = await _issue(
            signed_in_client, entity, recipient_email="jane@acme.edu", description="BSc"
        )
        assert cert["status"] == "pending"
        assert cert["blockchain_id"] is None
        assert cert["issuer_name"] == "Acme University"
        assert len(cert["certificate_hash"]) == 64

    @pytest.mark.asyncio
    async def test_client_supplied_hash_is_ignored(self, signed_in_client: AsyncClient, entity):
        cert = await _issue(signed_in_client, entity, certificate_hash="0" * 64)
        assert cert["certificate_hash"] != "0" * 64

    @pytest.mark.asyncio
    async def test_requires_signin(self, client: AsyncClient):
        response = await client.post(
            "/certificate", json={"recipient_name": "Jane Doe", "issuer_id": "x"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_other_wallets_entity_is_403(self, entity, other_client: AsyncClient):
        response = await other_client.post(
            "/certificate", json={"recipient_name": "Jane Doe", "issuer_id": entity["id"]}
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_invalid_email_is_422(self, signed_in_client: AsyncClient, entity):
        response = await signed_in_client.post(
            "/certificate",
            json={"recipient_name": "Jane Doe", "recipient_email": "jane", "issuer_id": entity["id"]},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_email_is_stored_as_entered(self, signed_in_client: AsyncClient, entity):
        response = await signed_in_client.post(
            "/certificate",
            json={
                "recipient_name": "Jane Doe",
                "recipient_email": " Jane.Doe@Example.COM ",
                "issuer_id": entity["id"],
            },
        )
        assert response.status_code == 200
        assert response.json()["recipient_email"] == "Jane.Doe@Example.COM"


class TestChainLinkAndRevoke:

    @pytest.mark.asyncio
    async def test_attach_makes_it_valid(self, signed_in_client: AsyncClient, entity):
        cert = await _issue(signed_in_client, entity)
        response = await signed_in_client.post(
            f"/certificate/{cert['id']}/chain",
            json={"blockchain_id": CHAIN_ID, "transaction_hash": TX_HASH},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "valid"
        assert data["blockchain_id"] == CHAIN_ID
        assert data["transaction_hash"] == TX_HASH

    @pytest.mark.asyncio
    async def test_relinking_to_another_id_is_409(self, signed_in_client: AsyncClient, entity):
        cert = await _issue(signed_in_client, entity)
        await signed_in_client.post(f"/certificate/{cert['id']}/chain", json={"blockchain_id": CHAIN_ID})
        response = await signed_in_client.post(
            f"/certificate/{cert['id']}/chain", json={"blockchain_id": "0x" + "00" * 31 + "08"}
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_revoke_with_and_without_body(self, signed_in_client: AsyncClient, entity):
        first = await _issue(signed_in_client, entity)
        second = await _issue(signed_in_client, entity, name="John Roe")

        response = await signed_in_client.post(
            f"/certificate/{first['id']}/revoke", json={"revoke_tx_hash": TX_HASH}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "revoked"
        assert response.json()["revoke_tx_hash"] == TX_HASH

        response = await signed_in_client.post(f"/certificate/{second['id']}/revoke")
        assert response.status_code == 200
        assert response.json()["is_revoked"] is True

    @pytest.mark.asyncio
    async def test_revoke_twice_is_harmless(self, signed_in_client: AsyncClient, entity):
        cert = await _issue(signed_in_client, entity)
        first = (await signed_in_client.post(f"/certificate/{cert['id']}/revoke")).json()
        second = (await signed_in_client.post(f"/certificate/{cert['id']}/revoke")).json()
        assert second["revoked_at"] == first["revoked_at"]

    @pytest.mark.asyncio
    async def test_stranger_cannot_revoke(self, signed_in_client: AsyncClient, entity, other_client):
        cert = await _issue(signed_in_client, entity)
        response = await other_client.post(f"/certificate/{cert['id']}/revoke")
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_revoke_missing_is_404(self, signed_in_client: AsyncClient):
        response = await signed_in_client.post("/certificate/999/revoke")
        assert response.status_code == 404


class TestQueries:

    @pytest.mark.asyncio
    async def test_public_lookups(self, signed_in_client: AsyncClient, entity, other_client):
        cert = await _issue(signed_in_client, entity)
        await signed_in_client.post(f"/certificate/{cert['id']}/chain", json={"blockchain_id": CHAIN_ID})

        by_id = await other_client.get(f"/certificate/{cert['id']}")
        assert by_id.status_code == 200

        by_chain = await other_client.get(f"/certificate/chain/{CHAIN_ID.upper().replace('0X', '0x')}")
        assert by_chain.json()["id"] == cert["id"]

        by_hash = await other_client.get(f"/certificate/hash/{cert['certificate_hash'].upper()}")
        assert by_hash.json()["id"] == cert["id"]

        by_entity = await other_client.get(f"/certificate/entity/{entity['id']}")
        assert [c["id"] for c in by_entity.json()] == [cert["id"]]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path", ["/certificate/999", "/certificate/chain/0x01", "/certificate/hash/" + "0" * 64]
    )
    async def test_misses_are_404(self, client: AsyncClient, path):
        response = await client.get(path)
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_me_lists_own_certificates_newest_first(
        self, signed_in_client: AsyncClient, entity, other_client
    ):
        first = await _issue(signed_in_client, entity)
        second = await _issue(signed_in_client, entity, name="John Roe")

        mine = (await signed_in_client.get("/certificate/me")).json()
        assert [c["id"] for c in mine] == [second["id"], first["id"]]

        theirs = (await other_client.get("/certificate/me")).json()
        assert theirs == []

    @pytest.mark.asyncio
    async def test_search(self, signed_in_client: AsyncClient, entity):
        jane = await _issue(signed_in_client, entity, recipient_email="jane@acme.edu")
        john = await _issue(signed_in_client, entity, name="John Roe")
        await signed_in_client.post(f"/certificate/{john['id']}/revoke")

        data = (await signed_in_client.get("/certificate/search", params={"query": "jane"})).json()
        assert [c["id"] for c in data["certificates"]] == [jane["id"]]

        data = (await signed_in_client.get("/certificate/search", params={"is_revoked": "true"})).json()
        assert [c["id"] for c in data["certificates"]] == [john["id"]]

        page = (await signed_in_client.get("/certificate/search", params={"limit": 1})).json()
        assert len(page["certificates"]) == 1
        assert page["next_cursor"] is not None

        rest = (
            await signed_in_client.get(
                "/certificate/search", params={"limit": 1, "cursor": page["next_cursor"]}
            )
        ).json()
        assert rest["next_cursor"] is None
        ids = {page["certificates"][0]["id"], rest["certificates"][0]["id"]}
        assert ids == {jane["id"], john["id"]}
