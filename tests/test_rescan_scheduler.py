# tests/test_rescan_scheduler.py

"""Tests for the RescanScheduler state machine, dedup and navigation."""

import asyncio
import unittest
from typing import Any

from src.extractors.dom_reader import PageDocument
from src.extractors.heuristic_extractor import HeuristicExtractor
from src.extractors.locators import SelectorLearningStore
from src.extractors.structured_extractor import StructuredExtractor
from src.models.product import Product
from src.services import messaging
from src.services.deal_presenter import DealPresenter
from src.services.detection_orchestrator import DetectionOrchestrator
from src.services.remote_fallback import RemoteFallbackClient
from src.services.rescan_scheduler import RescanScheduler, ScanState
from src.storage.config_store import ConfigStore
from src.storage.kv_store import MemoryKeyValueStore

PAGE_URL = "https://shop.example.com/p/7"

DEAL_RESPONSE: dict[str, Any] = {
    "match": {"merchant": "Acme"},
    "affiliate": {
        "url": "https://aff.example.com/r/7",
        "discountPercent": 10,
        "couponCode": None,
    },
}


def _page(title: str, url: str = PAGE_URL) -> PageDocument:
    return PageDocument.from_html(
        url,
        f"<html><head><title>{title}</title>"
        f"<meta name='description' content='Solid oak desk'></head>"
        f"<body><h1>{title}</h1><span class='price'>$120.00</span></body></html>",
    )


class _Page:
    """Mutable page the scheduler reads through its page source."""

    def __init__(self, document: PageDocument) -> None:
        self.document = document
        self.reads = 0

    async def read(self) -> PageDocument:
        self.reads += 1
        return self.document


class _BackgroundChannel:
    """Answers content messages the way the background would."""

    def __init__(self, deal_response: Any = None) -> None:
        self.deal_response = deal_response or DEAL_RESPONSE
        self.messages: list[dict[str, Any]] = []

    async def send(self, message: dict[str, Any]) -> Any:
        self.messages.append(message)
        kind = message["type"]
        if kind == messaging.LOOKUP_AFFILIATE:
            return self.deal_response
        if kind == messaging.REMOTE_PRODUCT_INTEL:
            return {"error": "offline"}
        if kind == messaging.APPLY_AFFILIATE:
            return {"ok": True, "appliedAt": 1}
        return {"ok": True}

    def kinds(self) -> list[str]:
        return [m["type"] for m in self.messages]


class _GatedOrchestrator:
    """Orchestrator whose detect() blocks until the gate opens."""

    def __init__(self, product: Product | None) -> None:
        self.product = product
        self.calls = 0
        self.gate = asyncio.Event()

    async def detect(self, document: PageDocument) -> Product | None:
        self.calls += 1
        await self.gate.wait()
        return self.product

    def detect_locally(self, document: PageDocument) -> Product | None:
        return self.product


def _scheduler(
    page: _Page,
    channel: _BackgroundChannel,
    orchestrator: Any = None,
    config_store: ConfigStore | None = None,
) -> RescanScheduler:
    store = SelectorLearningStore()
    remote = RemoteFallbackClient(channel, store)
    orchestrator = orchestrator or DetectionOrchestrator(
        StructuredExtractor(), HeuristicExtractor(store), remote,
    )
    return RescanScheduler(
        page.read,
        orchestrator,
        channel,  # type: ignore[arg-type]
        store,
        remote,
        config_store=config_store,
        presenter=DealPresenter(),
        mutation_debounce=0.01,
        navigation_debounce=0.01,
    )


class TestScanLoop(unittest.IsolatedAsyncioTestCase):
    """Reentrancy guard and queued rescans."""

    async def test_triggers_during_scan_queue_one_rescan(self) -> None:
        """N triggers while scanning cause exactly one more scan."""
        orchestrator = _GatedOrchestrator(Product(title="Desk", description="Oak"))
        scheduler = _scheduler(_Page(_page("Desk")), _BackgroundChannel(), orchestrator)

        task = scheduler.trigger()
        await asyncio.sleep(0)
        self.assertEqual(scheduler.state, ScanState.SCANNING)
        for _ in range(5):
            self.assertIs(scheduler.trigger(), task)
        self.assertEqual(scheduler.state, ScanState.SCANNING_QUEUED)

        orchestrator.gate.set()
        await task
        self.assertEqual(orchestrator.calls, 2)
        self.assertEqual(scheduler.scans_completed, 2)
        self.assertEqual(scheduler.state, ScanState.IDLE)

    async def test_change_notifications_are_debounced(self) -> None:
        """A burst of changes produces a single scan."""
        page = _Page(_page("Desk"))
        scheduler = _scheduler(page, _BackgroundChannel())
        for _ in range(4):
            scheduler.notify_change()
        await scheduler.wait_idle()
        self.assertEqual(scheduler.scans_completed, 1)
        self.assertEqual(page.reads, 1)

    async def test_page_read_failure_is_absorbed(self) -> None:
        """A failing page source ends the scan quietly."""
        async def broken() -> PageDocument:
            raise ConnectionError("tab gone")

        channel = _BackgroundChannel()
        scheduler = _scheduler(_Page(_page("Desk")), channel)
        scheduler._page_source = broken
        await scheduler.start()
        self.assertIsNone(scheduler.product)
        self.assertEqual(channel.messages, [])


class TestDetectionFlow(unittest.IsolatedAsyncioTestCase):
    """Announcements, dedup and deal mounting."""

    async def test_new_product_is_announced_and_deal_mounted(self) -> None:
        """PRODUCT_DETECTED then LOOKUP_AFFILIATE, then the deal mounts."""
        channel = _BackgroundChannel()
        scheduler = _scheduler(_Page(_page("Oak Desk")), channel)
        await scheduler.start()

        self.assertEqual(
            channel.kinds(),
            [messaging.PRODUCT_DETECTED, messaging.LOOKUP_AFFILIATE],
        )
        assert scheduler.product is not None
        self.assertEqual(scheduler.product.title, "Oak Desk")
        self.assertEqual(scheduler.product.description, "Solid oak desk")
        assert scheduler.deal is not None
        self.assertEqual(scheduler.deal.merchant, "Acme")
        assert scheduler.presenter is not None
        self.assertTrue(scheduler.presenter.mounted)

    async def test_unchanged_identity_is_not_reannounced(self) -> None:
        """Cosmetic title changes do not trigger a second lookup."""
        page = _Page(_page("Oak Desk"))
        channel = _BackgroundChannel()
        scheduler = _scheduler(page, channel)
        await scheduler.start()

        page.document = _page("  oak   DESK ")
        await scheduler.trigger()
        self.assertEqual(len(channel.messages), 2)
        assert scheduler.product is not None
        self.assertEqual(scheduler.product.title, "oak DESK")

    async def test_changed_identity_is_announced(self) -> None:
        """A different product on the same page is looked up again."""
        page = _Page(_page("Oak Desk"))
        channel = _BackgroundChannel()
        scheduler = _scheduler(page, channel)
        await scheduler.start()

        page.document = _page("Pine Desk")
        await scheduler.trigger()
        self.assertEqual(channel.kinds().count(messaging.LOOKUP_AFFILIATE), 2)

    async def test_changed_identity_without_offer_unmounts_old_deal(self) -> None:
        """The previous product's deal is not left on screen."""
        page = _Page(_page("Oak Desk"))
        channel = _BackgroundChannel()
        scheduler = _scheduler(page, channel)
        await scheduler.start()
        assert scheduler.presenter is not None
        self.assertTrue(scheduler.presenter.mounted)

        channel.deal_response = {"match": None, "affiliate": None}
        page.document = _page("Pine Desk")
        await scheduler.trigger()
        assert scheduler.deal is not None
        self.assertFalse(scheduler.deal.has_offer)
        self.assertFalse(scheduler.presenter.mounted)
        self.assertIsNone(scheduler.presenter.deal)

    async def test_auto_inject_disabled(self) -> None:
        """With autoInject off the deal is kept but not mounted."""
        config = ConfigStore(MemoryKeyValueStore(ephemeral=False))
        await config.set({"autoInject": False})
        scheduler = _scheduler(
            _Page(_page("Oak Desk")), _BackgroundChannel(), config_store=config,
        )
        await scheduler.start()
        self.assertIsNotNone(scheduler.deal)
        assert scheduler.presenter is not None
        self.assertFalse(scheduler.presenter.mounted)

    async def test_unmatched_affiliate_is_not_mounted(self) -> None:
        """A reply with an affiliate link but no match mounts nothing."""
        channel = _BackgroundChannel({
            "match": None,
            "affiliate": {"url": "https://aff.example.com/r/7"},
        })
        scheduler = _scheduler(_Page(_page("Oak Desk")), channel)
        await scheduler.start()
        assert scheduler.presenter is not None
        self.assertFalse(scheduler.presenter.mounted)

    async def test_deal_lookup_error_leaves_no_deal(self) -> None:
        """An {error} reply means no deal and nothing mounted."""
        channel = _BackgroundChannel({"error": "API 500"})
        scheduler = _scheduler(_Page(_page("Oak Desk")), channel)
        await scheduler.start()
        self.assertIsNone(scheduler.deal)
        assert scheduler.presenter is not None
        self.assertFalse(scheduler.presenter.mounted)


class TestNavigation(unittest.IsolatedAsyncioTestCase):
    """Navigation resets and stale-result handling."""

    async def test_navigation_resets_and_rescans(self) -> None:
        """Learned locators, last key and mounted deal are dropped."""
        page = _Page(_page("Oak Desk"))
        channel = _BackgroundChannel()
        scheduler = _scheduler(page, channel)
        await scheduler.start()
        scheduler.store.register({"sku": [".sku"]})

        page.document = _page("Oak Desk", url="https://shop.example.com/p/8")
        scheduler.notify_navigation(page.document.url)
        await scheduler.wait_idle()

        self.assertEqual(scheduler.generation, 1)
        self.assertEqual(scheduler.store.learned_for("sku"), ())
        self.assertEqual(channel.kinds().count(messaging.PRODUCT_DETECTED), 2)
        assert scheduler.presenter is not None
        self.assertTrue(scheduler.presenter.mounted)

    async def test_result_from_previous_navigation_discarded(self) -> None:
        """A scan overtaken by navigation does not announce anything."""
        orchestrator = _GatedOrchestrator(Product(title="Old", description="Page"))
        channel = _BackgroundChannel()
        scheduler = _scheduler(_Page(_page("Old")), channel, orchestrator)

        task = scheduler.trigger()
        await asyncio.sleep(0)
        scheduler.reset_for_navigation("https://shop.example.com/p/9")
        orchestrator.gate.set()
        await task

        self.assertIsNone(scheduler.product)
        self.assertEqual(channel.messages, [])


class TestContentMessages(unittest.IsolatedAsyncioTestCase):
    """Background notifications and deal application."""

    async def test_deal_applied_flashes_presenter(self) -> None:
        """AFFILIFIND_DEAL_APPLIED is acknowledged."""
        scheduler = _scheduler(_Page(_page("Desk")), _BackgroundChannel())
        reply = await scheduler.handle_message({"type": messaging.DEAL_APPLIED})
        self.assertEqual(reply, {"ok": True})
        assert scheduler.presenter is not None
        self.assertEqual(scheduler.presenter.flashes, 1)

    async def test_page_context(self) -> None:
        """Product, DOM snippet and locator hints are returned."""
        scheduler = _scheduler(_Page(_page("Oak Desk")), _BackgroundChannel())
        context = await scheduler.handle_message({"type": messaging.PAGE_CONTEXT})
        self.assertEqual(context["product"]["title"], "Oak Desk")
        self.assertIn("<title>Oak Desk</title>", context["domSnippet"])
        self.assertIn("title", context["selectors"])

    async def test_unknown_message(self) -> None:
        """Unknown kinds are answered with an error."""
        scheduler = _scheduler(_Page(_page("Desk")), _BackgroundChannel())
        reply = await scheduler.handle_message({"type": "NOPE"})
        self.assertIn("error", reply)

    async def test_apply_deal_sends_record(self) -> None:
        """The ledger record carries product, deal and source."""
        channel = _BackgroundChannel()
        scheduler = _scheduler(_Page(_page("Oak Desk")), channel)
        await scheduler.start()

        reply = await scheduler.apply_deal()
        self.assertTrue(reply["ok"])
        message = channel.messages[-1]
        self.assertEqual(message["type"], messaging.APPLY_AFFILIATE)
        self.assertEqual(message["affiliateUrl"], "https://aff.example.com/r/7")
        record = message["dealRecord"]
        self.assertEqual(record["source"], "content")
        self.assertEqual(record["product"]["title"], "Oak Desk")
        self.assertEqual(record["product"]["price"], 120.0)
        self.assertEqual(record["deal"]["merchant"], "Acme")
        self.assertEqual(record["deal"]["discountPercent"], 10.0)

    async def test_apply_without_deal(self) -> None:
        """Nothing to apply before a deal is known."""
        scheduler = _scheduler(_Page(_page("Desk")), _BackgroundChannel())
        self.assertIn("error", await scheduler.apply_deal())
        self.assertIsNone(scheduler.build_deal_record())


if __name__ == "__main__":
    unittest.main()
