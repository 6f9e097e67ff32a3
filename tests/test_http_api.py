"""HTTP API endpoints."""

import pytest
from httpx import ASGITransport, AsyncClient

from signal_relay.api.http_server import RelayAPI
from signal_relay.domain.ports import PersistenceError
from signal_relay.domain.schema import IngestionStats
from signal_relay.services.message_service import MessageService
from signal_relay.services.signal_service import TradeSignalService


class ExplodingStore:
    """Store whose reads fail with a chosen exception."""

    def __init__(self, error):
        self.error = error

    async def list_messages(self, page=1, limit=100):
        raise self.error

    async def list_message_texts(self, limit=100):
        raise self.error

    async def list_trade_signals(self, limit=100):
        raise self.error

    async def check_health(self):
        return False


def build_client(store, faults=None, **kwargs):
    api = RelayAPI(
        store=store,
        message_service=MessageService(store),
        signal_service=TradeSignalService(store),
        on_fault=faults.append if faults is not None else None,
        **kwargs
    )
    return AsyncClient(transport=ASGITransport(app=api.app), base_url="http://test")


class TestHealth:

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["environment"] == "test"
        assert body["port"] == 3000
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_readyz_healthy(self, client):
        response = await client.get("/readyz")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["store"] == "ok"

    @pytest.mark.asyncio
    async def test_readyz_while_draining(self, store):
        async def stats():
            return IngestionStats(total_received=3)

        async with build_client(store, state_provider=lambda: "DRAINING", stats_provider=stats) as ac:
            response = await ac.get("/readyz")

        assert response.status_code == 503
        body = response.json()
        assert body["state"] == "DRAINING"
        assert body["ingestion"]["total_received"] == 3


class TestMessages:

    @pytest.mark.asyncio
    async def test_empty_listing(self, client):
        response = await client.get("/messages")

        assert response.status_code == 200
        assert response.json() == {
            "data": [],
            "pagination": {"total": 0, "page": 1, "pages": 0, "limit": 100}
        }

    @pytest.mark.asyncio
    async def test_pagination_envelope(self, client, store):
        for index in range(5):
            await store.create_message(f"m{index}")

        response = await client.get("/messages", params={"page": "2", "limit": "2"})

        body = response.json()
        assert [m["text"] for m in body["data"]] == ["m2", "m1"]
        assert body["pagination"] == {"total": 5, "page": 2, "pages": 3, "limit": 2}
        assert "createdAt" in body["data"][0]
        assert "userId" in body["data"][0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [{"page": "abc"}, {"page": "0"}, {"page": "-2", "limit": "x"}, {"limit": "0"}])
    async def test_invalid_query_values_fall_back(self, client, params):
        response = await client.get("/messages", params=params)

        assert response.status_code == 200
        assert response.json()["pagination"]["page"] == 1
        assert response.json()["pagination"]["limit"] == 100

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [
        {"limit": str(10 ** 20)},
        {"page": str(10 ** 19)},
        {"page": str(2 ** 63 - 1)},
        {"page": str(2 ** 62), "limit": str(2 ** 62)},
    ])
    async def test_out_of_range_query_values(self, client, faults, store, params):
        await store.create_message("only")

        response = await client.get("/messages", params=params)

        assert response.status_code == 200
        assert response.json()["pagination"]["total"] == 1
        assert faults == []

    @pytest.mark.asyncio
    async def test_texts(self, client, store):
        await store.create_message("first")
        await store.create_message("second")

        response = await client.get("/messages/text")

        assert response.status_code == 200
        assert response.json() == ["second", "first"]

    @pytest.mark.asyncio
    async def test_create_single(self, client):
        response = await client.post("/messages", json={"text": "hello"})

        assert response.status_code == 201
        body = response.json()
        assert body["text"] == "hello"
        assert isinstance(body["id"], int)

    @pytest.mark.asyncio
    async def test_create_batch(self, client, store):
        response = await client.post("/messages", json=[{"text": "a"}, {"text": "b"}])

        assert response.status_code == 201
        assert [m["text"] for m in response.json()] == ["a", "b"]
        assert await store.count_messages() == 2

    @pytest.mark.asyncio
    async def test_create_batch_is_all_or_nothing(self, client, store):
        response = await client.post("/messages", json=[{"text": "a"}, {"body": "b"}, {"text": ""}])

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation failed"
        assert body["invalid_indexes"] == [1, 2]
        assert await store.count_messages() == 0

    @pytest.mark.asyncio
    async def test_create_without_text(self, client):
        response = await client.post("/messages", json={})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_malformed_json(self, client):
        response = await client.post(
            "/messages",
            content=b"{not json",
            headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"


class TestTrades:

    @pytest.mark.asyncio
    async def test_submit_single(self, client, store):
        response = await client.post(
            "/trades",
            json={"symbol": "btcusd", "type": "compra", "entry": 50000, "sl": 49000, "tp": 52000}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["data"][0]["symbol"] == "BTCUSD"
        assert body["data"][0]["type"] == "COMPRA"
        assert body["metadata"]["total"] == 1
        assert "errors" not in body

        texts = (await client.get("/messages/text")).json()
        assert texts == ["SINAL\nPAR: BTCUSD\nCOMPRA\nENTRADA: 50000\nSL: 49000\nTP: 52000"]

    @pytest.mark.asyncio
    async def test_submit_invalid_still_201(self, client):
        response = await client.post(
            "/trades",
            json={"symbol": "BTCUSD", "type": "HOLD", "entry": 1, "sl": 1, "tp": 1}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["data"] == []
        assert body["errors"][0]["error"] == "Invalid signal type"
        assert body["metadata"]["errors"] == 1

    @pytest.mark.asyncio
    async def test_submit_scalar_body(self, client):
        response = await client.post("/trades", json="BTCUSD")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_list_newest_first(self, client):
        await client.post("/trades", json=[
            {"symbol": "AAA", "type": "BUY", "entry": 1, "sl": 1, "tp": 1},
            {"symbol": "BBB", "type": "SELL", "entry": 2, "sl": 2, "tp": 2},
        ])

        response = await client.get("/trades")

        assert response.status_code == 200
        assert [s["symbol"] for s in response.json()] == ["BBB", "AAA"]
        assert response.json()[0]["type"] == "VENDA"

    @pytest.mark.asyncio
    async def test_oversized_price_is_reported_inline(self, client, faults, store):
        response = await client.post(
            "/trades",
            json={"symbol": "BTCUSD", "type": "BUY", "entry": 10 ** 400, "sl": 1, "tp": 1}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["data"] == []
        assert body["errors"][0]["type"] == "InvalidNumberError"
        assert body["errors"][0]["field"] == "entry"
        assert faults == []
        assert await store.count_trade_signals() == 0


class TestFailures:

    @pytest.mark.asyncio
    async def test_store_failure_returns_500(self):
        faults = []
        async with build_client(ExplodingStore(PersistenceError("connection refused")), faults) as ac:
            response = await ac.get("/messages")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error", "details": "connection refused"}
        assert faults == []

    @pytest.mark.asyncio
    async def test_unexpected_error_reports_fault(self):
        faults = []
        async with build_client(ExplodingStore(RuntimeError("boom")), faults) as ac:
            response = await ac.get("/trades")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert len(faults) == 1
        assert isinstance(faults[0], RuntimeError)

    @pytest.mark.asyncio
    async def test_readyz_unhealthy_store(self):
        async with build_client(ExplodingStore(RuntimeError("boom"))) as ac:
            response = await ac.get("/readyz")

        assert response.status_code == 503
        assert response.json()["checks"]["store"] == "failed"


@pytest.mark.asyncio
async def test_cors_allows_any_origin(client):
    response = await client.get("/", headers={"Origin": "http://example.com"})

    assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.asyncio
async def test_each_request_gets_a_correlation_id(client):
    first = await client.get("/")
    second = await client.get("/")

    assert first.headers["x-correlation-id"].startswith("http-")
    assert first.headers["x-correlation-id"] != second.headers["x-correlation-id"]
