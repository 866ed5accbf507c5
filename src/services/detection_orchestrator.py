# src/services/detection_orchestrator.py

"""Detection Orchestrator: structured, heuristic, then remote extraction."""

import logging
from dataclasses import replace

from src.extractors.dom_reader import PageDocument
from src.extractors.heuristic_extractor import HeuristicExtractor
from src.extractors.structured_extractor import StructuredExtractor
from src.filters.product_merger import (
    has_any_core_field,
    is_sufficient,
    merge_products,
    missing_fields,
)
from src.models.product import Product
from src.services.remote_fallback import RemoteFallbackClient

logger = logging.getLogger("affilifind.detection")


class DetectionOrchestrator:
    """Produces the best available Product for a page.

    The remote fallback is only consulted when the local result lacks
    a title or a description.
    """

    def __init__(
        self,
        structured: StructuredExtractor,
        heuristic: HeuristicExtractor,
        remote: RemoteFallbackClient | None = None,
    ) -> None:
        self.structured = structured
        self.heuristic = heuristic
        self.remote = remote

    # ── Local extraction ─────────────────────────────────

    def detect_locally(self, document: PageDocument) -> Product | None:
        """Merge structured data over heuristics, without any remote call."""
        structured = self.structured.extract(document)
        heuristic = self.heuristic.extract(document)
        if structured is None and heuristic is None:
            return None
        return merge_products(structured, heuristic)

    # ── Full detection ───────────────────────────────────

    async def detect(self, document: PageDocument) -> Product | None:
        """Return the detected Product, or ``None`` when nothing usable."""
        try:
            product = await self._detect(document)
        except Exception as exc:
            logger.error(
                "Detection failed on %s: %s", document.url, exc, exc_info=True,
            )
            return None
        if product is None or not has_any_core_field(product):
            logger.debug("No product detected on %s", document.url)
            return None
        if not product.url:
            product = replace(product, url=document.url)
        return product

    async def _detect(self, document: PageDocument) -> Product | None:
        local = self.detect_locally(document)
        if is_sufficient(local):
            return local
        if self.remote is None:
            return local

        missing = missing_fields(local)
        intel = await self.remote.fetch(document, missing)
        if intel is None:
            return local

        # Learned locators are registered by now; re-read the gaps with them.
        remote_product = self.heuristic.fill_missing(intel.product, document)
        merged = merge_products(local, remote_product)
        logger.info(
            "Remote fallback on %s filled %s",
            document.url,
            [f for f in missing if f not in missing_fields(merged)],
        )
        return merged
