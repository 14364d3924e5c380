"""Tests for the marketplace client: retries, filtering, mapping."""

import sys
from pathlib import Path

# Add parent directory to path to import project modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from marketplace.client import MarketplaceClient, MarketplaceRequestError
from marketplace.mapping import map_attributes, map_listing, parse_marketplace_date

NOW = datetime(2025, 10, 19, 12, 0, tzinfo=timezone.utc)

PROPERTY_ITEM = {
    "ListingId": 4521337,
    "Title": "Sunny villa with harbour views",
    "Category": "0350-5748-3399-",
    "CategoryPath": "/Trade-Me-Property/Residential/For-sale",
    "PriceDisplay": "Asking price $850,000",
    "StartDate": "/Date(1760000000000)/",
    "Body": "Lovely family home.",
    "Suburb": "Ponsonby",
    "Region": "Auckland",
    "Attributes": [
        {"Name": "bedrooms", "DisplayName": "Bedrooms", "Value": "4"},
        {"Name": "bathrooms", "DisplayName": "Bathrooms", "Value": "2"},
        {"Name": "property_type", "DisplayName": "Property type", "Value": "Townhouse"},
        {"Name": "floor_area", "DisplayName": "Floor area", "Value": "180m²"},
        {"Name": "listing_status", "DisplayName": "Status", "Value": "Under offer"},
    ],
    "Photos": [
        {"Key": 1, "Value": {"FullSize": "https://images.example.com/full/1.jpg"}},
        {"Key": 2, "Value": {"Large": "https://images.example.com/large/2.jpg"}},
    ],
}

NON_PROPERTY_ITEM = {
    "ListingId": 99,
    "Title": "Mountain bike",
    "Category": "0002-0356-",
    "CategoryPath": "/Sports/Cycling/Bikes",
    "StartPrice": 300,
}


def watchlist_body(items, total=None, page=1, page_size=100):
    return {
        "TotalCount": total if total is not None else len(items),
        "Page": page,
        "PageSize": page_size,
        "List": items,
    }


def make_client(handler, **settings) -> MarketplaceClient:
    marketplace = {
        "consumer_key": "K",
        "consumer_secret": "S",
        "token": "T",
        "token_secret": "TS",
        "max_retries": 3,
        "retry_delay": 0,
    }
    marketplace.update(settings)
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MarketplaceClient({"marketplace": marketplace}, http_client=http, clock=lambda: NOW)


class TestRetries:
    """Test bounded retry behavior."""

    def test_two_failures_then_success(self):
        """Transient failures are retried and the success is returned."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, json=watchlist_body([PROPERTY_ITEM]))

        async def scenario():
            client = make_client(handler)
            try:
                return await client.fetch_watchlist()
            finally:
                await client.http.aclose()

        page = asyncio.run(scenario())

        assert len(calls) == 3
        assert [listing.id for listing in page.listings] == ["4521337"]

    def test_three_failures_raise_after_exactly_three_attempts(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500, text="boom")

        async def scenario():
            client = make_client(handler)
            try:
                await client.fetch_watchlist()
            finally:
                await client.http.aclose()

        with pytest.raises(MarketplaceRequestError) as exc_info:
            asyncio.run(scenario())

        assert len(calls) == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, httpx.HTTPStatusError)

    def test_timeouts_and_bad_json_are_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectTimeout("timed out", request=request)
            if len(calls) == 2:
                return httpx.Response(200, text="<html>not json</html>")
            return httpx.Response(200, json=watchlist_body([]))

        async def scenario():
            client = make_client(handler)
            try:
                return await client.fetch_watchlist()
            finally:
                await client.http.aclose()

        page = asyncio.run(scenario())

        assert len(calls) == 3
        assert page.listings == []

    def test_requests_are_signed(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["authorization"] = request.headers["Authorization"]
            seen["host"] = request.url.host
            return httpx.Response(200, json=watchlist_body([]))

        async def scenario():
            client = make_client(handler, sandbox=True)
            try:
                await client.fetch_watchlist()
            finally:
                await client.http.aclose()

        asyncio.run(scenario())

        assert 'oauth_consumer_key="K"' in seen["authorization"]
        assert 'oauth_token="T"' in seen["authorization"]
        assert 'oauth_signature="S%26TS"' in seen["authorization"]
        assert seen["host"] == "api.tmsandbox.co.nz"


class TestEndpoints:
    """Test watchlist, detail and search endpoints."""

    def test_watchlist_keeps_only_property_items(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/MyTradeMe/Watchlist/All.json"
            assert request.url.params["category"] == "5"
            assert request.url.params["page"] == "2"
            return httpx.Response(
                200,
                json=watchlist_body([PROPERTY_ITEM, NON_PROPERTY_ITEM], total=250, page=2),
            )

        async def scenario():
            client = make_client(handler)
            try:
                return await client.fetch_watchlist(page=2)
            finally:
                await client.http.aclose()

        page = asyncio.run(scenario())

        assert [listing.id for listing in page.listings] == ["4521337"]
        assert page.skipped == 1
        assert page.total_count == 250
        assert page.has_more

    def test_detail_falls_back_to_watchlist_scan(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path.startswith("/v1/Listings/"):
                return httpx.Response(500, text="error")
            return httpx.Response(200, json=watchlist_body([PROPERTY_ITEM]))

        async def scenario():
            client = make_client(handler)
            try:
                return await client.fetch_detail("4521337")
            finally:
                await client.http.aclose()

        listing = asyncio.run(scenario())

        assert listing.id == "4521337"
        assert paths.count("/v1/Listings/4521337.json") == 3
        assert paths[-1] == "/v1/MyTradeMe/Watchlist/All.json"

    def test_detail_reraises_when_scan_misses(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.startswith("/v1/Listings/"):
                return httpx.Response(404, text="missing")
            return httpx.Response(200, json=watchlist_body([PROPERTY_ITEM]))

        async def scenario():
            client = make_client(handler)
            try:
                await client.fetch_detail("111")
            finally:
                await client.http.aclose()

        with pytest.raises(MarketplaceRequestError, match="/v1/Listings/111.json"):
            asyncio.run(scenario())

    def test_search_merges_default_params(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"TotalCount": 1, "List": [PROPERTY_ITEM]})

        async def scenario():
            client = make_client(handler)
            try:
                return await client.search({"rows": 5, "region": 1})
            finally:
                await client.http.aclose()

        listings = asyncio.run(scenario())

        assert seen["path"] == "/v1/Search/Property/Residential.json"
        assert seen["params"]["rows"] == "5"
        assert seen["params"]["sort_order"] == "Default"
        assert seen["params"]["region"] == "1"
        assert len(listings) == 1

    def test_missing_credentials_rejected(self):
        with pytest.raises(ValueError, match="consumer_key"):
            MarketplaceClient({"marketplace": {"consumer_key": "K"}})


class TestMapping:
    """Test payload to Listing mapping."""

    def test_map_full_item(self):
        listing = map_listing(PROPERTY_ITEM, now=NOW)

        assert listing.id == "4521337"
        assert listing.title == "Sunny villa with harbour views"
        assert listing.price == 850000
        assert listing.bedrooms == 4
        assert listing.bathrooms == 2
        assert listing.property_type == "townhouse"
        assert listing.floor_area == "180m²"
        assert listing.status == "under_offer"
        assert listing.listing_type == "for_sale"
        assert listing.address == "Ponsonby, Auckland"
        assert listing.days_on_market == 10
        assert listing.image_urls == [
            "https://images.example.com/full/1.jpg",
            "https://images.example.com/large/2.jpg",
        ]
        assert listing.primary_image_url == "https://images.example.com/full/1.jpg"
        assert listing.source_url.endswith("/listing/4521337")

    def test_start_price_fallback_and_defaults(self):
        listing = map_listing({"ListingId": "7", "StartPrice": 420000}, now=NOW)

        assert listing.price == 420000
        assert listing.status == "active"
        assert listing.title == "Property Listing"
        assert listing.days_on_market == 0

    def test_first_matching_attribute_wins(self):
        mapped = map_attributes(
            [
                {"Name": "Bedrooms", "Value": "3"},
                {"Name": "Bedrooms (approx)", "Value": "5"},
                {"Name": "Location", "Value": "Wellington"},
            ]
        )

        assert mapped == {"bedrooms": "3", "address": "Wellington"}

    def test_marketplace_and_iso_dates(self):
        assert parse_marketplace_date("/Date(0)/") == datetime(1970, 1, 1, tzinfo=timezone.utc)
        assert parse_marketplace_date("2025-10-01T00:00:00Z") == datetime(
            2025, 10, 1, tzinfo=timezone.utc
        )
        assert parse_marketplace_date("not a date") is None
