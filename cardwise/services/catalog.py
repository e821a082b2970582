# =============================================================================
# Product Catalog Client — Remote Card API
# =============================================================================
#
# Fetches the credit card catalog that populates the "structured" collection.
#
# DESIGN DECISION: httpx.AsyncClient, one per fetch.
# The catalog is fetched at initialisation and on refresh, never on the
# query path, so connection pooling buys nothing and a short-lived client
# cannot leak.
#
# DESIGN DECISION: Normalise at the boundary.
# The upstream API has drifted between field names (bank_name vs bank,
# card_type vs category, product_usps vs benefits). normalize_product()
# maps every variant onto one flat dict so the rest of the core sees a
# single shape: {id, name, bank_name, category, annual_fee, ...}.
# =============================================================================

from __future__ import annotations

import logging

import httpx

from cardwise.config import Settings
from cardwise.exceptions import CollaboratorUnavailable

logger = logging.getLogger(__name__)


# Display label for each normalised field, in rendering order
_TEXT_FIELDS: tuple[tuple[str, str], ...] = (
    ("name", "Card"),
    ("bank_name", "Bank"),
    ("category", "Type"),
    ("annual_fee", "Annual Fee"),
    ("credit_score", "Credit Score"),
    ("rewards", "Rewards"),
    ("benefits", "Benefits"),
    ("features", "Features"),
    ("eligibility", "Eligibility"),
    ("description", "Description"),
)

# Unfiltered catalog request
_CATALOG_PAYLOAD: dict = {
    "slug": "",
    "banks_ids": [],
    "card_networks": [],
    "annualFees": "",
    "credit_score": "",
    "sort_by": "",
    "free_cards": "",
    "eligiblityPayload": {},
    "cardGeniusPayload": {},
}


SAMPLE_PRODUCTS: tuple[dict, ...] = (
    {
        "id": "1",
        "name": "HDFC Regalia",
        "bank_name": "HDFC Bank",
        "category": "Premium",
        "annual_fee": "₹2,500",
        "rewards": "4X rewards on dining, 2X on travel",
        "benefits": "Lounge access, travel insurance",
        "eligibility": "Income > ₹12 LPA",
    },
    {
        "id": "2",
        "name": "ICICI Amazon Pay",
        "bank_name": "ICICI Bank",
        "category": "Co-branded",
        "annual_fee": "₹500",
        "rewards": "5% cashback on Amazon, 2% on other spends",
        "benefits": "No fuel surcharge, Amazon Prime membership",
        "eligibility": "Good credit score",
    },
)


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def _as_text(value: object) -> str:
    """Flatten API values (dicts with a name, lists, numbers) to a string."""
    if value is None:
        return ""
    if isinstance(value, dict):
        return _as_text(value.get("name") or value.get("title") or "")
    if isinstance(value, (list, tuple)):
        return ", ".join(t for t in (_as_text(v) for v in value) if t)
    return str(value).strip()


def _usps_to_text(usps: object) -> str:
    if not isinstance(usps, list):
        return _as_text(usps)
    parts = []
    for usp in usps:
        if isinstance(usp, dict):
            header = _as_text(usp.get("header"))
            description = _as_text(usp.get("description"))
            parts.append(f"{header}: {description}" if header and description
                         else header or description)
        else:
            parts.append(_as_text(usp))
    return ", ".join(p for p in parts if p)


def normalize_product(raw: dict) -> dict | None:
    """
    Map one raw catalog entry to the normalised product shape.

    Returns None for entries without a name (they cannot be cited).
    """
    name = _as_text(raw.get("name") or raw.get("card_name"))
    if not name:
        return None

    benefits = _as_text(raw.get("benefits")) or _usps_to_text(raw.get("product_usps"))

    return {
        "id": _as_text(raw.get("id") or raw.get("seo_card_alias")) or name,
        "name": name,
        "bank_name": _as_text(raw.get("bank_name") or raw.get("bank")),
        "category": _as_text(raw.get("card_type") or raw.get("category")),
        "annual_fee": _as_text(raw.get("annual_fee") or raw.get("annual_fee_text")),
        "credit_score": _as_text(raw.get("credit_score")),
        "rewards": _as_text(raw.get("rewards") or raw.get("reward_rate")),
        "benefits": benefits,
        "features": _as_text(raw.get("features") or raw.get("tags")),
        "eligibility": _as_text(raw.get("eligibility")),
        "description": _as_text(raw.get("description")),
    }


def product_to_text(product: dict) -> str:
    """Render a normalised product as 'Card: … | Bank: … | …' for embedding."""
    return " | ".join(
        f"{label}: {product[key]}"
        for key, label in _TEXT_FIELDS
        if product.get(key)
    )


# ---------------------------------------------------------------------------
# Catalog Client
# ---------------------------------------------------------------------------


class CatalogClient:
    """
    Async client for the card catalog API (POST {base}/cards).

    Usage:
        client = CatalogClient(settings)
        products = await client.fetch_cards()
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = settings.catalog_api_base.rstrip("/")
        self._timeout = settings.catalog_timeout_seconds
        # Injected in tests (httpx.MockTransport)
        self._transport = transport

    async def fetch_cards(self) -> list[dict]:
        """
        Fetch and normalise the full catalog.

        Returns:
            Normalised products; entries without a name are dropped.

        Raises:
            CollaboratorUnavailable: On transport errors, non-2xx status, or
                an unrecognisable response body.
        """
        url = f"{self._base_url}/cards"
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            ) as client:
                response = await client.post(url, json=_CATALOG_PAYLOAD)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            raise CollaboratorUnavailable("catalog", str(e)) from e
        except ValueError as e:
            raise CollaboratorUnavailable("catalog", f"invalid JSON: {e}") from e

        raw_cards = _extract_cards(body)
        if raw_cards is None:
            raise CollaboratorUnavailable(
                "catalog", f"unexpected response shape: {type(body).__name__}"
            )

        products = [
            p for p in (normalize_product(c) for c in raw_cards if isinstance(c, dict))
            if p is not None
        ]
        logger.info(
            "Fetched %d cards from catalog (%d dropped)",
            len(products), len(raw_cards) - len(products),
        )
        return products


def _extract_cards(body: object) -> list | None:
    """Accept a bare list, {"data": [...]}, or {"data": {"cards": [...]}}."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get("cards"), list):
            return data["cards"]
        if isinstance(body.get("cards"), list):
            return body["cards"]
    return None
