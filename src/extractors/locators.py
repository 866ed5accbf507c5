# src/extractors/locators.py

"""Base locator table and the per-navigation selector learning store."""

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType

logger = logging.getLogger("affilifind.locators")

BASE_LOCATORS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "title": (
        "[itemprop='name']",
        "meta[property='og:title']",
        "meta[name='twitter:title']",
        "#productTitle",
        "h1[data-automation='product-title']",
        "h1[data-test='product-title']",
        "h1",
    ),
    "price": (
        "[itemprop='price']",
        "[property='product:price:amount']",
        "meta[itemprop='price']",
        "#priceblock_ourprice",
        "#priceblock_dealprice",
        "#priceblock_saleprice",
        ".a-price .a-offscreen",
        "[data-test*='price']",
        ".price",
        ".product-price",
    ),
    "description": (
        "#feature-bullets",
        "#productDescription",
        "#bookDescription_feature_div",
        ".product-description",
        "[data-feature-name='productDescription']",
        "[itemprop='description']",
        ".a-row.stack-container",
        ".productOverview",
        "meta[name='description']",
    ),
    "brand": (
        "[itemprop='brand']",
        "#bylineInfo",
        ".brand",
        "meta[name='brand']",
    ),
    "sku": (
        "[itemprop='sku']",
        "meta[name='sku']",
        "meta[property='og:sku']",
        "meta[name='product:retailer_item_id']",
    ),
    "image": (
        "meta[property='og:image']",
        "#landingImage",
        "#imgTagWrapperId img",
        ".product-image img",
    ),
})


class SelectorLearningStore:
    """Locators learned during the current navigation.

    Learned locators are appended after the base ones when a field is
    read, so they never change base priority.  The whole store is
    dropped on navigation; nothing survives a restart.
    """

    def __init__(
        self,
        base: Mapping[str, tuple[str, ...]] = BASE_LOCATORS,
    ) -> None:
        self._base = base
        # dict keys keep insertion order and act as an ordered set
        self._learned: dict[str, dict[str, None]] = {}

    def register(self, locator_map: Mapping[str, Iterable[str] | str]) -> int:
        """Merge newly discovered locators; returns how many were new."""
        added = 0
        for field_name, locators in locator_map.items():
            if not locators:
                continue
            items = [locators] if isinstance(locators, str) else list(locators)
            bucket = self._learned.setdefault(field_name, {})
            for locator in items:
                locator = (locator or "").strip()
                if locator and locator not in bucket:
                    bucket[locator] = None
                    added += 1
        if added:
            logger.debug("Learned %d new locators", added)
        return added

    def locators_for(self, field_name: str) -> tuple[str, ...]:
        """Base locators for ``field_name`` followed by learned ones."""
        merged = [*self._base.get(field_name, ()), *self._learned.get(field_name, {})]
        return tuple(dict.fromkeys(s for s in merged if s))

    def learned_for(self, field_name: str) -> tuple[str, ...]:
        return tuple(self._learned.get(field_name, {}))

    def fields(self) -> list[str]:
        """Every field with base or learned locators, base order first."""
        names = list(self._base)
        names.extend(n for n in self._learned if n not in self._base)
        return names

    def serialize_hints(self) -> dict[str, list[str]]:
        """Merged locator table for every known field, as plain lists."""
        hints: dict[str, list[str]] = {}
        for name in self.fields():
            locators = self.locators_for(name)
            if locators:
                hints[name] = list(locators)
        return hints

    def clear(self) -> None:
        """Forget everything learned (navigation reset)."""
        if self._learned:
            logger.debug(
                "Clearing learned locators for %d fields", len(self._learned)
            )
        self._learned = {}
