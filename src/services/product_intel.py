# src/services/product_intel.py

"""Background-side client for the product-intel and search-suggestion services."""

import logging
from typing import Any
from urllib.parse import urlparse

from src.config.settings import Settings
from src.filters.product_identity import page_key
from src.services.api_client import ApiClient, ApiError

logger = logging.getLogger("affilifind.intel")


class ProductIntelService:
    """Forwards DOM snapshots to ``/v1/product-intel``.

    Successful responses are kept in memory per page key for the life
    of the background context.
    """

    def __init__(self, api_client: ApiClient) -> None:
        self._api = api_client
        self._memory: dict[str, dict[str, Any]] = {}

    async def fetch(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Return ``{product, selectors, cachedAt}`` for the page.

        Raises :class:`ValueError` without a url and
        :class:`ApiError` on transport failures.
        """
        url = payload.get("url")
        if not url:
            raise ValueError("url is required for remote intel")
        key = page_key(str(url))
        if key in self._memory:
            logger.debug("Remote intel memory hit for %s", key)
            return self._memory[key]

        data = await self._api.post_json("/v1/product-intel", payload)
        if not isinstance(data, dict):
            raise ApiError("Unexpected product-intel response shape")
        self._memory[key] = data
        logger.info(
            "Remote intel for %s (missing=%s)",
            key,
            payload.get("missingFields"),
        )
        return data


def is_secure_url(url: Any) -> bool:
    """True for absolute ``https`` URLs."""
    if not isinstance(url, str):
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme == "https" and bool(parsed.netloc)


class SearchSuggestionsClient:
    """Web-search backed alternatives for a product.

    Items without an https URL are dropped and at most
    ``SUGGESTION_LIMIT`` items are kept.
    """

    def __init__(self, api_client: ApiClient) -> None:
        self._api = api_client
        self._memory: dict[str, dict[str, Any]] = {}

    async def search(
        self,
        query: str,
        context: str = "",
        product: dict[str, Any] | None = None,
        dom_snippet: str | None = None,
        selector_hints: dict[str, list[str]] | None = None,
    ) -> dict[str, Any]:
        query = (query or "").strip()
        if not query:
            raise ValueError("query is required for search suggestions")
        product_url = (product or {}).get("url") or ""
        cache_key = f"{query.lower()}::{context or ''}::{product_url}"
        if cache_key in self._memory:
            return self._memory[cache_key]

        data = await self._api.post_json(
            "/v1/search-suggestions",
            {
                "query": query,
                "context": context or "",
                "product": product,
                "domSnippet": dom_snippet,
                "selectorHints": selector_hints,
            },
        )
        raw_items = data.get("items") if isinstance(data, dict) else None
        candidates = raw_items if isinstance(raw_items, list) else []
        items = [
            item
            for item in candidates
            if isinstance(item, dict) and is_secure_url(item.get("url"))
        ]
        dropped = len(candidates) - len(items)
        if dropped:
            logger.info("Dropped %d suggestions without an https URL", dropped)
        result = {"items": items[: Settings.SUGGESTION_LIMIT]}
        self._memory[cache_key] = result
        return result
