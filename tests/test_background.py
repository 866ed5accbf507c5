# tests/test_background.py

"""Tests for the background message router and the local bus."""

import tempfile
import unittest
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from src.models.deal import DealMatch, LookupFailure
from src.services import messaging
from src.services.background import BackgroundService
from src.services.messaging import LocalMessageBus, MessageDeliveryError
from src.storage.config_store import ConfigStore
from src.storage.deal_history_db import DealHistoryDB
from src.storage.kv_store import MemoryKeyValueStore
from src.storage.session_cache import SessionCache

PRODUCT: dict[str, Any] = {
    "title": "Oak Desk",
    "brand": "Acme",
    "price": 120.0,
    "url": "https://shop.example.com/p/7",
}

DEAL_RAW: dict[str, Any] = {
    "match": {"merchant": "Acme"},
    "affiliate": {"url": "https://aff.example.com/r/7", "discountPercent": 10},
}


class TestBackgroundService(unittest.IsolatedAsyncioTestCase):
    """Handler behaviour for every message kind."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.history = DealHistoryDB(Path(self._tmp.name) / "history.db")
        self.session_kv = MemoryKeyValueStore()
        self.config_kv = MemoryKeyValueStore(ephemeral=False)
        self.resolver = MagicMock()
        self.resolver.lookup_deal = AsyncMock(
            return_value=DealMatch.from_response(DEAL_RAW)
        )
        self.resolver.lookup_similar = AsyncMock(return_value={"items": [{"title": "Pine"}]})
        self.intel = MagicMock()
        self.intel.fetch = AsyncMock(return_value={"product": {}, "selectors": {}})
        self.suggestions = MagicMock()
        self.suggestions.search = AsyncMock(return_value={"items": []})
        self.notify = AsyncMock(return_value={"ok": True})
        self.service = self._service()

    def tearDown(self) -> None:
        self.history.close()
        self._tmp.cleanup()

    def _service(self) -> BackgroundService:
        return BackgroundService(
            config_store=ConfigStore(self.config_kv),
            session=SessionCache(self.session_kv),
            deal_resolver=self.resolver,
            intel_service=self.intel,
            suggestions=self.suggestions,
            history_db=self.history,
            notify_tab=self.notify,
        )

    async def test_unknown_type(self) -> None:
        """Unknown kinds come back as an error."""
        reply = await self.service.handle({"type": "NOT_A_THING"})
        self.assertIn("error", reply)

    async def test_handler_exception_becomes_error(self) -> None:
        """A raising handler is converted to {error}."""
        self.intel.fetch.side_effect = ValueError("url is required for remote intel")
        reply = await self.service.handle(
            {"type": messaging.REMOTE_PRODUCT_INTEL, "payload": {}}, tab_id=3,
        )
        self.assertEqual(reply, {"error": "url is required for remote intel"})

    async def test_lookup_affiliate(self) -> None:
        """Deals come back raw; failures as {error}."""
        reply = await self.service.handle(
            {"type": messaging.LOOKUP_AFFILIATE, "product": PRODUCT}, tab_id=1,
        )
        self.assertEqual(reply, DEAL_RAW)

        self.resolver.lookup_deal.return_value = LookupFailure("API 500: down")
        reply = await self.service.handle(
            {"type": messaging.LOOKUP_AFFILIATE, "product": PRODUCT}, tab_id=1,
        )
        self.assertEqual(reply, {"error": "API 500: down"})

    async def test_similar_products_limit(self) -> None:
        """The requested limit reaches the resolver."""
        await self.service.handle(
            {"type": messaging.SIMILAR_PRODUCTS, "product": PRODUCT, "limit": 2},
        )
        self.assertEqual(self.resolver.lookup_similar.await_args.args[1], 2)

    async def test_popup_data_for_active_tab(self) -> None:
        """Product, deal, similar items and config for the active tab."""
        await self.service.handle(
            {"type": messaging.PRODUCT_DETECTED, "product": PRODUCT}, tab_id=5,
        )
        self.service.active_tab_id = 5
        reply = await self.service.handle({"type": messaging.GET_POPUP_DATA})
        self.assertEqual(reply["product"], PRODUCT)
        self.assertEqual(reply["deal"], DEAL_RAW)
        self.assertEqual(reply["similar"], {"items": [{"title": "Pine"}]})
        self.assertIn("apiBase", reply["config"])

    async def test_popup_data_survives_restart(self) -> None:
        """Tab products are recovered from the session area."""
        await self.service.handle(
            {"type": messaging.PRODUCT_DETECTED, "product": PRODUCT}, tab_id=5,
        )
        restarted = self._service()
        reply = await restarted.handle({"type": messaging.GET_POPUP_DATA, "tabId": 5})
        self.assertEqual(reply["product"], PRODUCT)

    async def test_popup_data_without_product(self) -> None:
        """No product, no lookups."""
        reply = await self.service.handle({"type": messaging.GET_POPUP_DATA, "tabId": 9})
        self.assertIsNone(reply["product"])
        self.assertIsNone(reply["deal"])
        self.assertEqual(reply["similar"], {"items": []})
        self.resolver.lookup_deal.assert_not_awaited()

    async def test_tab_removed_forgets_product(self) -> None:
        """Closing a tab clears memory and session entries."""
        await self.service.handle(
            {"type": messaging.PRODUCT_DETECTED, "product": PRODUCT}, tab_id=5,
        )
        await self.service.on_tab_removed(5)
        reply = await self.service.handle({"type": messaging.GET_POPUP_DATA, "tabId": 5})
        self.assertIsNone(reply["product"])

    async def test_apply_affiliate_records_and_notifies(self) -> None:
        """The ledger gains an entry and the tab is told."""
        self.service.active_tab_id = 4
        reply = await self.service.handle({
            "type": messaging.APPLY_AFFILIATE,
            "affiliateUrl": "https://aff.example.com/r/7",
            "dealRecord": {
                "product": {"title": "Oak Desk", "price": 100},
                "deal": {"merchant": "Acme", "discountPercent": 20},
                "source": "content",
            },
        })
        self.assertTrue(reply["ok"])
        self.assertIsInstance(reply["appliedAt"], int)
        self.notify.assert_awaited_once_with(4, {"type": messaging.DEAL_APPLIED})

        history = await self.service.handle({"type": messaging.GET_DEAL_HISTORY})
        self.assertEqual(len(history["items"]), 1)
        self.assertEqual(history["items"][0]["savingsValue"], 20.0)

    async def test_apply_affiliate_notification_failure(self) -> None:
        """A closed tab does not fail the apply."""
        self.notify.side_effect = MessageDeliveryError("no tab")
        with self.assertLogs("affilifind.background", level="WARNING"):
            reply = await self.service.handle(
                {"type": messaging.APPLY_AFFILIATE, "affiliateUrl": "https://a"},
                tab_id=2,
            )
        self.assertTrue(reply["ok"])
        self.assertEqual(self.history.count(), 0)

    async def test_set_config(self) -> None:
        """Partial updates are persisted."""
        reply = await self.service.handle(
            {"type": messaging.SET_CONFIG, "updates": {"apiKey": "k"}},
        )
        self.assertEqual(reply, {"ok": True})
        self.assertEqual(await self.config_kv.get("apiKey"), "k")

    async def test_search_suggestions_defaults(self) -> None:
        """Query defaults to the title and context to the brand."""
        await self.service.handle(
            {"type": messaging.SEARCH_PRODUCT_SUGGESTIONS, "product": PRODUCT},
        )
        args = self.suggestions.search.await_args
        self.assertEqual(args.args[0], "Oak Desk")
        self.assertEqual(args.kwargs["context"], "Acme")

    async def test_search_suggestions_without_query(self) -> None:
        """Nothing to search for is an error."""
        reply = await self.service.handle({"type": messaging.SEARCH_PRODUCT_SUGGESTIONS})
        self.assertEqual(reply, {"error": "No query provided"})
        self.suggestions.search.assert_not_awaited()

    async def test_on_installed_writes_defaults(self) -> None:
        """Install writes all config keys."""
        await self.service.on_installed()
        self.assertIsNotNone(await self.config_kv.get("apiBase"))
        self.assertIsNotNone(await self.config_kv.get("autoInject"))


class TestLocalMessageBus(unittest.IsolatedAsyncioTestCase):
    """Routing between the two contexts."""

    async def test_messages_carry_tab_id(self) -> None:
        """The background sees which tab sent a message."""
        bus = LocalMessageBus()
        seen: list[Any] = []

        async def background(message: dict[str, Any], tab_id: int | None) -> Any:
            seen.append((message["type"], tab_id))
            return {"ok": True}

        bus.bind_background(background)
        reply = await bus.sender_for(7).send({"type": "PING"})
        self.assertEqual(reply, {"ok": True})
        self.assertEqual(seen, [("PING", 7)])

    async def test_send_to_tab(self) -> None:
        """Background notifications reach the attached tab only."""
        bus = LocalMessageBus()
        handler = AsyncMock(return_value={"ok": True})
        bus.attach_tab(3, handler)
        await bus.send_to_tab(3, {"type": messaging.DEAL_APPLIED})
        handler.assert_awaited_once_with({"type": messaging.DEAL_APPLIED})

        bus.detach_tab(3)
        with self.assertRaises(MessageDeliveryError):
            await bus.send_to_tab(3, {"type": messaging.DEAL_APPLIED})

    async def test_no_background(self) -> None:
        """Sending without a background is a delivery error."""
        with self.assertRaises(MessageDeliveryError):
            await LocalMessageBus().send({"type": "PING"})


if __name__ == "__main__":
    unittest.main()
