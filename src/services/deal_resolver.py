# src/services/deal_resolver.py

"""Deal Resolution Cache: memory + session tiers in front of the affiliate API."""

import hashlib
import logging
from typing import Any

from src.config.settings import Settings
from src.filters.product_identity import canonical_json
from src.models.deal import DealMatch, LookupFailure
from src.models.product import Product
from src.services.api_client import ApiClient, ApiError
from src.storage.session_cache import DEAL_PREFIX, SessionCache

logger = logging.getLogger("affilifind.deals")


def deal_cache_key(product: Product) -> str:
    """Key for an affiliate lookup: title, sku, url and gtin."""
    return canonical_json({
        "t": product.title,
        "sku": product.sku,
        "url": product.url,
        "upc": product.gtin,
    })


def similar_cache_key(product: Product, limit: int) -> str:
    """Key for a similar-products lookup."""
    return canonical_json({
        "sim": True,
        "t": product.title,
        "upc": product.gtin,
        "limit": limit,
    })


def _session_key(cache_key: str) -> str:
    digest = hashlib.sha256(cache_key.encode("utf-8")).hexdigest()
    return f"{DEAL_PREFIX}{digest}"


class DealResolver:
    """Looks up affiliate deals and similar products with two cache tiers.

    Memory is always consulted first.  The session tier is only used
    when it is ephemeral.  Failures are returned as
    :class:`LookupFailure` and never cached.  Concurrent lookups for
    one key are not coalesced; the memory tier absorbs repeats once
    the first one lands.
    """

    def __init__(
        self,
        api_client: ApiClient,
        session: SessionCache,
    ) -> None:
        self._api = api_client
        self._session = session
        self._memory: dict[str, Any] = {}
        self.remote_calls = 0

    async def _cached(self, cache_key: str) -> Any | None:
        if cache_key in self._memory:
            return self._memory[cache_key]
        if not self._session.ephemeral:
            return None
        stored = await self._session.get(_session_key(cache_key))
        if stored is not None:
            logger.debug("Session tier hit for %s", cache_key)
            self._memory[cache_key] = stored
        return stored

    async def _store(self, cache_key: str, data: Any) -> None:
        self._memory[cache_key] = data
        if self._session.ephemeral:
            await self._session.set(_session_key(cache_key), data)

    async def _fetch(
        self, cache_key: str, path: str, params: dict[str, Any],
    ) -> Any:
        cached = await self._cached(cache_key)
        if cached is not None:
            return cached
        self.remote_calls += 1
        data = await self._api.get_json(path, params)
        if not isinstance(data, dict):
            raise ApiError(f"Unexpected response shape from {path}")
        await self._store(cache_key, data)
        return data

    async def lookup_deal(
        self, product: Product,
    ) -> DealMatch | LookupFailure:
        """Affiliate match for ``product``."""
        params = {
            "url": product.url,
            "title": product.title,
            "sku": product.sku or product.mpn,
            "upc": product.gtin,
            "brand": product.brand,
            "price": product.price,
            "currency": product.currency,
        }
        try:
            data = await self._fetch(
                deal_cache_key(product), "/v1/affiliate-links", params,
            )
        except ApiError as exc:
            logger.warning(
                "Deal lookup failed for %r: %s", product.title, exc,
            )
            return LookupFailure(error=str(exc))
        return DealMatch.from_response(data, product)

    async def lookup_similar(
        self,
        product: Product,
        limit: int = Settings.SIMILAR_DEFAULT_LIMIT,
    ) -> dict[str, Any] | LookupFailure:
        """Similar products for ``product`` as ``{items}``."""
        params = {
            "url": product.url,
            "title": product.title,
            "upc": product.gtin,
            "sku": product.sku or product.mpn,
            "brand": product.brand,
            "limit": limit,
        }
        try:
            data = await self._fetch(
                similar_cache_key(product, limit), "/v1/similar", params,
            )
        except ApiError as exc:
            logger.warning(
                "Similar lookup failed for %r: %s", product.title, exc,
            )
            return LookupFailure(error=str(exc))
        items = data.get("items")
        return {**data, "items": items if isinstance(items, list) else []}

    def clear(self) -> int:
        count = len(self._memory)
        self._memory.clear()
        logger.info("Deal cache purged (%d entries removed)", count)
        return count
