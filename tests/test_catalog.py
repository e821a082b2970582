# =============================================================================
# Unit Tests — Product Catalog Client
# =============================================================================
#
# Normalisation of raw catalog entries and the HTTP client, driven by
# httpx.MockTransport so no request leaves the process.
# =============================================================================

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from cardwise.config import Settings
from cardwise.exceptions import CollaboratorUnavailable
from cardwise.services.catalog import (
    SAMPLE_PRODUCTS,
    CatalogClient,
    normalize_product,
    product_to_text,
)

RAW_CARD = {
    "id": 101,
    "card_name": "SBI SimplyCLICK",
    "bank": {"name": "SBI Card"},
    "card_type": "Shopping",
    "annual_fee_text": "499",
    "reward_rate": "10X on partner sites",
    "product_usps": [
        {"header": "Welcome gift", "description": "Amazon voucher worth Rs 500"},
        {"header": "Fuel", "description": ""},
    ],
    "tags": ["online", "shopping"],
}


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _client(handler) -> CatalogClient:
    settings = Settings(_env_file=None, catalog_api_base="https://catalog.test/api/")
    return CatalogClient(settings, transport=httpx.MockTransport(handler))


class TestNormalizeProduct:
    """Tests for normalize_product()."""

    def test_maps_field_variants(self):
        product = normalize_product(RAW_CARD)
        assert product["id"] == "101"
        assert product["name"] == "SBI SimplyCLICK"
        assert product["bank_name"] == "SBI Card"
        assert product["category"] == "Shopping"
        assert product["annual_fee"] == "499"
        assert product["rewards"] == "10X on partner sites"
        assert product["benefits"] == "Welcome gift: Amazon voucher worth Rs 500, Fuel"
        assert product["features"] == "online, shopping"
        assert product["eligibility"] == ""

    def test_nameless_entry_dropped(self):
        assert normalize_product({"id": 5, "bank_name": "HDFC Bank"}) is None

    def test_id_defaults_to_name(self):
        assert normalize_product({"name": "Axis Flipkart"})["id"] == "Axis Flipkart"


class TestProductToText:
    """Tests for product_to_text()."""

    def test_renders_present_fields_in_order(self):
        text = product_to_text(SAMPLE_PRODUCTS[0])
        assert text.startswith("Card: HDFC Regalia | Bank: HDFC Bank | Type: Premium")
        assert "Credit Score" not in text


class TestCatalogClient:
    """Tests for CatalogClient.fetch_cards()."""

    def test_posts_filter_payload_and_normalises(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"cards": [RAW_CARD, {"id": 9}]}})

        products = _run(_client(handler).fetch_cards())

        assert [p["name"] for p in products] == ["SBI SimplyCLICK"]
        assert seen[0].method == "POST"
        assert str(seen[0].url) == "https://catalog.test/api/cards"
        assert json.loads(seen[0].content)["banks_ids"] == []

    @pytest.mark.parametrize(
        "body",
        [[RAW_CARD], {"data": [RAW_CARD]}, {"cards": [RAW_CARD]}],
    )
    def test_accepts_response_shapes(self, body):
        products = _run(_client(lambda request: httpx.Response(200, json=body)).fetch_cards())
        assert len(products) == 1

    def test_http_error_status(self):
        client = _client(lambda request: httpx.Response(503, text="down"))
        with pytest.raises(CollaboratorUnavailable) as exc_info:
            _run(client.fetch_cards())
        assert exc_info.value.collaborator == "catalog"

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(CollaboratorUnavailable, match="connection refused"):
            _run(_client(handler).fetch_cards())

    def test_invalid_json(self):
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(CollaboratorUnavailable, match="invalid JSON"):
            _run(client.fetch_cards())

    def test_unexpected_shape(self):
        client = _client(lambda request: httpx.Response(200, json={"status": "ok"}))
        with pytest.raises(CollaboratorUnavailable, match="unexpected response shape"):
            _run(client.fetch_cards())
