# src/services/remote_fallback.py

"""Remote Fallback Client: asks the product-intel service about a page."""

import asyncio
import logging
from typing import Any, Protocol

from src.config.settings import Settings
from src.extractors.dom_reader import PageDocument
from src.extractors.dom_snapshot import snapshot_dom
from src.extractors.locators import SelectorLearningStore
from src.filters.product_identity import page_key
from src.models.deal import RemoteIntel
from src.services import messaging

logger = logging.getLogger("affilifind.remote_fallback")


class MessageSender(Protocol):
    async def send(self, message: dict[str, Any]) -> Any: ...


class RemoteFallbackClient:
    """Per-navigation cache and request coalescing for remote intel.

    A second request for a page whose first request is still in
    flight awaits the same task.  Failures are logged and reported as
    ``None`` so callers can keep their local result.  Reported
    locators are registered in the learning store on success.
    """

    def __init__(
        self,
        sender: MessageSender,
        store: SelectorLearningStore,
        snapshot_limit: int = Settings.DOM_SNAPSHOT_LIMIT,
    ) -> None:
        self._sender = sender
        self._store = store
        self._snapshot_limit = snapshot_limit
        self._cache: dict[str, RemoteIntel] = {}
        self._inflight: dict[str, asyncio.Task[RemoteIntel | None]] = {}
        self._generation = 0
        self.requests_sent = 0

    async def fetch(
        self,
        document: PageDocument,
        missing: list[str],
    ) -> RemoteIntel | None:
        """Remote intel for ``document``, or ``None`` on any failure."""
        key = page_key(document.url)
        generation = self._generation
        intel = self._cache.get(key)
        if intel is None:
            task = self._inflight.get(key)
            if task is None:
                task = asyncio.ensure_future(
                    self._request(document, missing, key, generation)
                )
                self._inflight[key] = task
                task.add_done_callback(
                    lambda done, k=key: self._forget(k, done)
                )
            else:
                logger.debug("Joining in-flight remote request for %s", key)
            intel = await task
        # A reset while waiting means the store now belongs to another page
        if intel is not None and generation == self._generation:
            self._store.register(intel.locators)
        return intel

    def _forget(
        self, key: str, task: "asyncio.Task[RemoteIntel | None]",
    ) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _request(
        self,
        document: PageDocument,
        missing: list[str],
        key: str,
        generation: int,
    ) -> RemoteIntel | None:
        payload = {
            "url": document.url,
            "dom": snapshot_dom(document, self._snapshot_limit),
            "missingFields": list(missing),
        }
        self.requests_sent += 1
        logger.info("Requesting remote intel for %s (missing=%s)", key, missing)
        try:
            response = await self._sender.send({
                "type": messaging.REMOTE_PRODUCT_INTEL,
                "payload": payload,
            })
            if not isinstance(response, dict):
                raise ValueError(f"unexpected response {type(response).__name__}")
            if response.get("error"):
                raise ValueError(str(response["error"]))
            intel = RemoteIntel.from_response(response)
        except Exception as exc:
            logger.warning("Remote detection failed for %s: %s", key, exc)
            return None
        if generation == self._generation:
            self._cache[key] = intel
        else:
            logger.debug("Dropping remote intel for %s from a past navigation", key)
        return intel

    def reset(self) -> None:
        """Forget cached and in-flight results (navigation reset).

        In-flight requests are not cancelled; their results are simply
        no longer cached or shared.
        """
        self._generation += 1
        self._cache.clear()
        self._inflight.clear()
