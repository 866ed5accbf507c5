# src/services/page_observer.py

"""Polls a page and turns what it sees into scheduler notifications."""

import asyncio
import hashlib
import logging

from src.config.settings import Settings
from src.extractors.dom_reader import PageDocument
from src.services.rescan_scheduler import PageSource, RescanScheduler

logger = logging.getLogger("affilifind.observer")


def markup_digest(document: PageDocument) -> str:
    return hashlib.sha256(str(document.soup).encode("utf-8")).hexdigest()


class PollingPageObserver:
    """Re-reads the page on a timer.

    A different URL is reported as a navigation, identical URL with
    different markup as a content change.
    """

    def __init__(
        self,
        page_source: PageSource,
        scheduler: RescanScheduler,
        interval: float = Settings.POLL_INTERVAL,
    ) -> None:
        self._page_source = page_source
        self.scheduler = scheduler
        self.interval = interval
        self._url: str | None = None
        self._digest: str | None = None

    def prime(self, document: PageDocument) -> None:
        """Remember the page as initially loaded."""
        self._url = document.url
        self._digest = markup_digest(document)

    async def poll_once(self) -> str | None:
        """Check the page once; returns ``"navigation"``, ``"change"`` or ``None``."""
        try:
            document = await self._page_source()
        except Exception as exc:
            logger.warning("Page poll failed: %s", exc)
            return None
        digest = markup_digest(document)
        if self._url is None:
            self.prime(document)
            return None
        if document.url != self._url:
            logger.debug("URL changed %s -> %s", self._url, document.url)
            self._url, self._digest = document.url, digest
            self.scheduler.notify_navigation(document.url)
            return "navigation"
        if digest != self._digest:
            self._digest = digest
            self.scheduler.notify_change()
            return "change"
        return None

    async def run(self, cycles: int | None = None) -> None:
        """Poll until cancelled, or for ``cycles`` polls."""
        done = 0
        while cycles is None or done < cycles:
            await asyncio.sleep(self.interval)
            await self.poll_once()
            done += 1
