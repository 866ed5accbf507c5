# src/services/background.py

"""Background context: routes content/popup messages to the services."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from src.config.settings import Settings
from src.models.deal import LookupFailure
from src.models.product import Product
from src.services import messaging
from src.services.deal_resolver import DealResolver
from src.services.product_intel import (
    ProductIntelService,
    SearchSuggestionsClient,
)
from src.storage.config_store import ConfigStore
from src.storage.deal_history_db import DealHistoryDB
from src.storage.session_cache import TAB_PREFIX, SessionCache

logger = logging.getLogger("affilifind.background")

TabNotifier = Callable[[int, dict[str, Any]], Awaitable[Any]]


class BackgroundService:
    """Message router for the background context.

    Every handler returns a plain dict.  Failures inside a handler
    come back as ``{"error": message}`` and never escape the router.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        session: SessionCache,
        deal_resolver: DealResolver,
        intel_service: ProductIntelService,
        suggestions: SearchSuggestionsClient,
        history_db: DealHistoryDB,
        notify_tab: TabNotifier | None = None,
    ) -> None:
        self.config_store = config_store
        self.session = session
        self.deal_resolver = deal_resolver
        self.intel_service = intel_service
        self.suggestions = suggestions
        self.history_db = history_db
        self.notify_tab = notify_tab
        self.active_tab_id: int | None = None
        self._product_by_tab: dict[int, dict[str, Any]] = {}
        self._handlers: dict[
            str, Callable[[dict[str, Any], int | None], Awaitable[Any]]
        ] = {
            messaging.PRODUCT_DETECTED: self._on_product_detected,
            messaging.LOOKUP_AFFILIATE: self._on_lookup_affiliate,
            messaging.SIMILAR_PRODUCTS: self._on_similar_products,
            messaging.REMOTE_PRODUCT_INTEL: self._on_remote_intel,
            messaging.GET_POPUP_DATA: self._on_popup_data,
            messaging.APPLY_AFFILIATE: self._on_apply_affiliate,
            messaging.SET_CONFIG: self._on_set_config,
            messaging.GET_DEAL_HISTORY: self._on_deal_history,
            messaging.SEARCH_PRODUCT_SUGGESTIONS: self._on_search_suggestions,
        }

    # ── Entry points ─────────────────────────────────────

    async def handle(
        self, message: dict[str, Any], tab_id: int | None = None,
    ) -> Any:
        """Dispatch one message and return its response."""
        kind = message.get("type") if isinstance(message, dict) else None
        handler = self._handlers.get(str(kind))
        if handler is None:
            logger.warning("Unknown message type: %r", kind)
            return {"error": f"Unknown message type: {kind}"}
        try:
            return await handler(message, tab_id)
        except Exception as exc:
            logger.error(
                "Handler for %s failed: %s", kind, exc, exc_info=True,
            )
            return {"error": str(exc)}

    async def on_installed(self) -> None:
        """First-install hook: persist defaults under existing values."""
        config = await self.config_store.ensure_defaults()
        logger.info("Installed with API base %s", config.api_base)

    async def on_tab_removed(self, tab_id: int) -> None:
        """Forget everything stored for a closed tab."""
        self._product_by_tab.pop(tab_id, None)
        await self.session.remove(f"{TAB_PREFIX}{tab_id}")
        logger.debug("Tab %s closed; product memory cleared", tab_id)

    # ── Handlers ─────────────────────────────────────────

    async def _on_product_detected(
        self, message: dict[str, Any], tab_id: int | None,
    ) -> dict[str, Any]:
        product = message.get("product")
        if tab_id is not None:
            self._product_by_tab[tab_id] = {
                "product": product,
                "lastLookupAt": int(time.time() * 1000),
            }
            await self.session.set(f"{TAB_PREFIX}{tab_id}", product)
        return {"ok": True}

    async def _on_lookup_affiliate(
        self, message: dict[str, Any], tab_id: int | None,
    ) -> dict[str, Any]:
        product = Product.from_dict(message.get("product"))
        result = await self.deal_resolver.lookup_deal(product)
        if isinstance(result, LookupFailure):
            return result.to_dict()
        return result.raw

    async def _on_similar_products(
        self, message: dict[str, Any], tab_id: int | None,
    ) -> dict[str, Any]:
        product = Product.from_dict(message.get("product"))
        limit = int(message.get("limit") or Settings.SIMILAR_DEFAULT_LIMIT)
        result = await self.deal_resolver.lookup_similar(product, limit)
        if isinstance(result, LookupFailure):
            return result.to_dict()
        return result

    async def _on_remote_intel(
        self, message: dict[str, Any], tab_id: int | None,
    ) -> dict[str, Any]:
        return await self.intel_service.fetch(message.get("payload") or {})

    async def _tab_product(self, tab_id: int | None) -> dict[str, Any] | None:
        if tab_id is None:
            return None
        entry = self._product_by_tab.get(tab_id)
        if entry and entry.get("product"):
            return entry["product"]
        return await self.session.get(f"{TAB_PREFIX}{tab_id}")

    async def _on_popup_data(
        self, message: dict[str, Any], tab_id: int | None,
    ) -> dict[str, Any]:
        target_tab = message.get("tabId", self.active_tab_id)
        product_data = await self._tab_product(target_tab)
        deal: dict[str, Any] | None = None
        similar: dict[str, Any] = {"items": []}
        if product_data:
            product = Product.from_dict(product_data)
            match = await self.deal_resolver.lookup_deal(product)
            if not isinstance(match, LookupFailure):
                deal = match.raw
            found = await self.deal_resolver.lookup_similar(
                product, Settings.SIMILAR_DEFAULT_LIMIT,
            )
            if not isinstance(found, LookupFailure):
                similar = found
        config = await self.config_store.get()
        return {
            "product": product_data,
            "deal": deal,
            "similar": similar,
            "config": config.to_dict(),
        }

    async def _on_apply_affiliate(
        self, message: dict[str, Any], tab_id: int | None,
    ) -> dict[str, Any]:
        applied_at = int(time.time() * 1000)
        record = message.get("dealRecord")
        if record:
            await asyncio.to_thread(self.history_db.append, record)
        target = self.active_tab_id if self.active_tab_id is not None else tab_id
        if target is not None and self.notify_tab is not None:
            try:
                await self.notify_tab(target, {"type": messaging.DEAL_APPLIED})
            except Exception as exc:
                logger.warning(
                    "Deal-applied notification to tab %s failed: %s",
                    target,
                    exc,
                )
        logger.info(
            "Affiliate applied: %s", message.get("affiliateUrl"),
        )
        return {"ok": True, "appliedAt": applied_at}

    async def _on_set_config(
        self, message: dict[str, Any], tab_id: int | None,
    ) -> dict[str, Any]:
        await self.config_store.set(message.get("updates") or {})
        return {"ok": True}

    async def _on_deal_history(
        self, message: dict[str, Any], tab_id: int | None,
    ) -> dict[str, Any]:
        entries = await asyncio.to_thread(self.history_db.list)
        return {"items": [e.to_dict() for e in entries]}

    async def _on_search_suggestions(
        self, message: dict[str, Any], tab_id: int | None,
    ) -> dict[str, Any]:
        product = message.get("product") or None
        query = (
            message.get("query") or (product or {}).get("title") or ""
        ).strip()
        if not query:
            return {"error": "No query provided"}
        return await self.suggestions.search(
            query,
            context=(product or {}).get("brand") or message.get("context") or "",
            product=product,
            dom_snippet=message.get("domSnippet"),
            selector_hints=message.get("selectorHints"),
        )
