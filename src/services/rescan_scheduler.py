# src/services/rescan_scheduler.py

"""Rescan Scheduler: content-side scan loop, dedup and navigation resets."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from src.config.settings import Settings
from src.extractors.dom_reader import PageDocument
from src.extractors.dom_snapshot import snapshot_dom
from src.extractors.locators import SelectorLearningStore
from src.filters.product_identity import product_key
from src.models.deal import DealMatch
from src.models.product import Product
from src.services import messaging
from src.services.deal_presenter import DealPresenter
from src.services.detection_orchestrator import DetectionOrchestrator
from src.services.messaging import TabChannel
from src.services.remote_fallback import RemoteFallbackClient
from src.storage.config_store import ConfigStore

logger = logging.getLogger("affilifind.scheduler")

PageSource = Callable[[], Awaitable[PageDocument]]


class ScanState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    SCANNING_QUEUED = "scanning+queued"


class RescanScheduler:
    """Runs detection for one tab and reacts to page changes.

    At most one scan runs at a time.  Triggers arriving during a scan
    collapse into a single follow-up scan.  Each navigation bumps
    ``generation``; a scan that started under an older generation
    drops its result.
    """

    def __init__(
        self,
        page_source: PageSource,
        orchestrator: DetectionOrchestrator,
        channel: TabChannel,
        store: SelectorLearningStore,
        remote: RemoteFallbackClient,
        config_store: ConfigStore | None = None,
        presenter: DealPresenter | None = None,
        mutation_debounce: float = Settings.MUTATION_DEBOUNCE,
        navigation_debounce: float = Settings.NAVIGATION_DEBOUNCE,
    ) -> None:
        self._page_source = page_source
        self.orchestrator = orchestrator
        self.channel = channel
        self.store = store
        self.remote = remote
        self.config_store = config_store
        self.presenter = presenter
        self.mutation_debounce = mutation_debounce
        self.navigation_debounce = navigation_debounce

        self.product: Product | None = None
        self.deal: DealMatch | None = None
        self.last_key: str | None = None
        self.generation = 0
        self.scans_completed = 0

        self._scanning = False
        self._queued = False
        self._scan_task: asyncio.Future[None] | None = None
        self._change_timer: asyncio.TimerHandle | None = None
        self._navigation_timer: asyncio.TimerHandle | None = None

    @property
    def state(self) -> ScanState:
        if not self._scanning:
            return ScanState.IDLE
        return ScanState.SCANNING_QUEUED if self._queued else ScanState.SCANNING

    # ── Triggers ─────────────────────────────────────────

    def start(self) -> asyncio.Future[None]:
        """Initial scan on page load."""
        return self.trigger()

    def trigger(self) -> asyncio.Future[None]:
        """Start a scan now, or queue one behind the running scan."""
        if self._scanning and self._scan_task is not None:
            self._queued = True
            return self._scan_task
        self._scan_task = asyncio.ensure_future(self.run_scan())
        return self._scan_task

    def notify_change(self) -> None:
        """Page content changed; rescan once changes settle."""
        if self._change_timer is not None:
            self._change_timer.cancel()
        loop = asyncio.get_running_loop()
        self._change_timer = loop.call_later(
            self.mutation_debounce, self._on_change_settled,
        )

    def notify_navigation(self, url: str | None = None) -> None:
        """The page URL changed without a reload."""
        if self._navigation_timer is not None:
            self._navigation_timer.cancel()
        loop = asyncio.get_running_loop()
        self._navigation_timer = loop.call_later(
            self.navigation_debounce, self._on_navigation_settled, url,
        )

    def _on_change_settled(self) -> None:
        self._change_timer = None
        self.trigger()

    def _on_navigation_settled(self, url: str | None) -> None:
        self._navigation_timer = None
        self.reset_for_navigation(url)
        self.trigger()

    def reset_for_navigation(self, url: str | None = None) -> None:
        """Drop everything tied to the previous page."""
        self.generation += 1
        self.store.clear()
        self.remote.reset()
        self.last_key = None
        self.product = None
        self.deal = None
        if self.presenter is not None:
            self.presenter.unmount()
        logger.info(
            "Navigation to %s (generation %d)", url or "?", self.generation,
        )

    # ── Scan loop ────────────────────────────────────────

    async def run_scan(self) -> None:
        """Scan, then rescan once if anything was queued meanwhile."""
        if self._scanning:
            self._queued = True
            return
        self._scanning = True
        try:
            while True:
                self._queued = False
                try:
                    await self._scan_once()
                except Exception as exc:
                    logger.error("Scan failed: %s", exc, exc_info=True)
                self.scans_completed += 1
                if not self._queued:
                    break
                logger.debug("Running queued rescan")
        finally:
            self._scanning = False
            self._queued = False

    async def _scan_once(self) -> None:
        generation = self.generation
        try:
            document = await self._page_source()
        except Exception as exc:
            logger.warning("Could not read the page: %s", exc)
            return
        product = await self.orchestrator.detect(document)
        if generation != self.generation:
            logger.debug("Discarding scan of %s after navigation", document.url)
            return
        if product is None:
            return

        key = product_key(product)
        self.product = product
        if key == self.last_key:
            return
        self.last_key = key
        self.deal = None
        if self.presenter is not None:
            self.presenter.unmount()
        logger.info("Product detected: %r", product.title)
        await self._announce(product, document, generation)

    async def _announce(
        self,
        product: Product,
        document: PageDocument,
        generation: int,
    ) -> None:
        payload = product.to_dict()
        await self.channel.send(
            {"type": messaging.PRODUCT_DETECTED, "product": payload}
        )
        response = await self.channel.send(
            {"type": messaging.LOOKUP_AFFILIATE, "product": payload}
        )
        if generation != self.generation:
            return
        if not isinstance(response, dict) or response.get("error"):
            logger.warning(
                "No deal for %r: %s",
                product.title,
                response.get("error") if isinstance(response, dict) else response,
            )
            return

        deal = DealMatch.from_response(response, product, document.url)
        self.deal = deal
        if not deal.has_offer or self.presenter is None:
            return
        if await self._auto_inject():
            self.presenter.mount(deal)

    async def _auto_inject(self) -> bool:
        if self.config_store is None:
            return Settings.DEFAULT_AUTO_INJECT
        config = await self.config_store.get()
        return config.auto_inject

    async def wait_idle(self) -> None:
        """Wait for pending debounce timers and scans to finish."""
        while True:
            if self._change_timer is not None or self._navigation_timer is not None:
                await asyncio.sleep(
                    min(self.mutation_debounce, self.navigation_debounce) or 0.01
                )
                continue
            task = self._scan_task
            if task is not None and not task.done():
                await task
                continue
            return

    def close(self) -> None:
        for timer in (self._change_timer, self._navigation_timer):
            if timer is not None:
                timer.cancel()
        self._change_timer = None
        self._navigation_timer = None

    # ── Messages from the background ─────────────────────

    async def handle_message(self, message: dict[str, Any]) -> dict[str, Any]:
        kind = message.get("type")
        if kind == messaging.DEAL_APPLIED:
            if self.presenter is not None:
                self.presenter.flash()
            return {"ok": True}
        if kind == messaging.PAGE_CONTEXT:
            return await self.page_context()
        return {"error": f"Unknown message type: {kind}"}

    async def page_context(self) -> dict[str, Any]:
        """Current product, a DOM snippet and the locator hints."""
        document = await self._page_source()
        product = self.product or self.orchestrator.detect_locally(document)
        hints = self.store.serialize_hints()
        return {
            "product": product.to_dict() if product else None,
            "domSnippet": snapshot_dom(
                document, Settings.PAGE_CONTEXT_SNAPSHOT_LIMIT,
            ),
            "selectors": hints or None,
        }

    # ── Applying a deal ──────────────────────────────────

    def build_deal_record(self) -> dict[str, Any] | None:
        """Ledger record for the current product and deal."""
        if self.product is None or self.deal is None:
            return None
        product = self.product
        return {
            "product": {
                "title": product.title,
                "image": product.image,
                "url": product.url,
                "price": product.price,
                "currency": product.currency,
                "description": product.description,
            },
            "deal": self.deal.to_record(),
            "source": "content",
        }

    async def apply_deal(self) -> dict[str, Any]:
        """Ask the background to apply the current affiliate link."""
        if self.deal is None or self.deal.affiliate is None:
            return {"error": "No deal to apply"}
        return await self.channel.send({
            "type": messaging.APPLY_AFFILIATE,
            "affiliateUrl": self.deal.affiliate.url,
            "dealRecord": self.build_deal_record(),
        })
