"""Tests for the Polymarket client against a mocked HTTP transport."""

import httpx
import pytest

from paper_journal.domain.errors import ExternalSourceError, MarketNotFoundError
from paper_journal.market.polymarket import PolymarketClient

GAMMA = "https://gamma.test"
CLOB = "https://clob.test"

MARKET = {
    "id": "42",
    "slug": "btc-above-100k",
    "question": "Will BTC close above $100k?",
    "outcomePrices": '["0.35", "0.65"]',
    "bestBid": "0.34",
    "bestAsk": "0.36",
    "closed": False,
    "clobTokenIds": '["tok-yes", "tok-no"]',
}

BOOKS = {
    "tok-yes": {"bids": [{"price": "0.33", "size": "10"}], "asks": [{"price": "0.37", "size": "4"}]},
    "tok-no": {"bids": [{"price": "0.62", "size": "8"}], "asks": [{"price": "0.66", "size": "2"}]},
}


def _client(handler) -> PolymarketClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PolymarketClient(GAMMA, CLOB, http=http)


def _default_handler(requests: list[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/markets":
            params = request.url.params
            if params.get("slug") == MARKET["slug"] or params.get("id") == MARKET["id"]:
                return httpx.Response(200, json=[MARKET])
            return httpx.Response(200, json=[])
        if request.url.path == "/book":
            book = BOOKS.get(request.url.params.get("token_id"))
            if book is None:
                return httpx.Response(404, json={"error": "No orderbook exists"})
            return httpx.Response(200, json=book)
        return httpx.Response(404)

    return handler


class TestGetMarket:
    async def test_by_slug(self):
        requests: list[httpx.Request] = []
        client = _client(_default_handler(requests))

        market = await client.get_market(slug="btc-above-100k")

        assert market["id"] == "42"
        assert len(requests) == 1
        assert requests[0].url.params["slug"] == "btc-above-100k"

    async def test_falls_back_to_id_when_slug_unknown(self):
        requests: list[httpx.Request] = []
        client = _client(_default_handler(requests))

        market = await client.get_market(market_id="42", slug="renamed-slug")

        assert market["slug"] == "btc-above-100k"
        assert [r.url.params.get("id") for r in requests] == [None, "42"]

    async def test_not_found(self):
        client = _client(_default_handler([]))
        with pytest.raises(MarketNotFoundError):
            await client.get_market(slug="nope")

    async def test_requires_an_identifier(self):
        client = _client(_default_handler([]))
        with pytest.raises(ValueError):
            await client.get_market()


class TestErrors:
    async def test_http_status_is_wrapped(self):
        client = _client(lambda request: httpx.Response(503, text="down"))
        with pytest.raises(ExternalSourceError, match="HTTP 503"):
            await client.get_snapshot(slug="x")

    async def test_timeout_is_wrapped(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = _client(handler)
        with pytest.raises(ExternalSourceError, match="Timed out"):
            await client.get_snapshot(market_id="42")

    async def test_connection_error_is_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler)
        with pytest.raises(ExternalSourceError):
            await client.get_market(slug="x")

    async def test_invalid_json_is_wrapped(self):
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(ExternalSourceError, match="Invalid JSON"):
            await client.get_market(slug="x")


class TestSnapshot:
    async def test_snapshot_with_books(self):
        client = _client(_default_handler([]))

        snap = await client.get_snapshot(slug="btc-above-100k")

        assert snap.market_id == "42"
        assert snap.question == "Will BTC close above $100k?"
        assert snap.outcome_prices == (0.35, 0.65)
        assert snap.best_bid == 0.34
        assert snap.token_ids == ("tok-yes", "tok-no")
        assert snap.order_books["tok-yes"].best_ask == 0.37
        assert snap.order_books["tok-no"].best_bid == 0.62
        await client.close()

    async def test_missing_book_is_absent_not_an_error(self):
        books = {"tok-yes": BOOKS["tok-yes"]}

        def handler(request):
            if request.url.path == "/book":
                book = books.get(request.url.params.get("token_id"))
                return httpx.Response(200, json=book) if book else httpx.Response(404)
            return httpx.Response(200, json=[MARKET])

        snap = await _client(handler).get_snapshot(market_id="42")
        assert set(snap.order_books) == {"tok-yes"}

    async def test_without_books_skips_clob(self):
        requests: list[httpx.Request] = []
        client = _client(_default_handler(requests))

        snap = await client.get_snapshot(slug="btc-above-100k", with_order_books=False)

        assert snap.order_books == {}
        assert all(r.url.path == "/markets" for r in requests)
