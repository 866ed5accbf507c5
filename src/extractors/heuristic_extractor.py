# src/extractors/heuristic_extractor.py

"""Heuristic Extractor: product fields read through the locator table."""

import logging
from collections.abc import Iterable
from dataclasses import replace

from src.extractors.dom_reader import (
    PageDocument,
    canonical_url,
    collapse_whitespace,
    html_to_text,
    meta_content,
    read_field,
)
from src.extractors.locators import SelectorLearningStore
from src.filters.price_normalizer import normalize_price
from src.models.product import Product

logger = logging.getLogger("affilifind.extractors.heuristic")

# Attribute preferred over text content for a matched element
_ACCESSOR_ATTRIBUTES: dict[str, str] = {
    "image": "src",
}

_CURRENCY_LOCATORS: tuple[str, ...] = (
    "meta[property='product:price:currency']",
    "meta[itemprop='priceCurrency']",
)

# Fields that can be filled from the locator table
LOCATED_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "price",
    "sku",
    "brand",
    "image",
)


class HeuristicExtractor:
    """Derives a Product from the base + learned locator table."""

    def __init__(self, store: SelectorLearningStore) -> None:
        self.store = store

    def read(
        self, document: PageDocument, field_name: str
    ) -> str | float | None:
        """Read one field through the merged locators, normalised.

        Prices come back as floats (or ``None``), descriptions as
        single-spaced text, everything else as trimmed strings.
        """
        locators = self.store.locators_for(field_name)
        return self._read_with(document, field_name, locators)

    @staticmethod
    def _read_with(
        document: PageDocument,
        field_name: str,
        locators: Iterable[str],
    ) -> str | float | None:
        if field_name == "description":
            return html_to_text(read_field(document, locators, html=True)) or None
        raw = read_field(
            document,
            locators,
            attribute=_ACCESSOR_ATTRIBUTES.get(field_name),
        )
        if field_name == "price":
            return normalize_price(raw)
        return collapse_whitespace(raw) or None

    def read_text(
        self, document: PageDocument, field_name: str
    ) -> str | None:
        value = self.read(document, field_name)
        return value if isinstance(value, str) else None

    def read_price(self, document: PageDocument) -> float | None:
        value = self.read(document, "price")
        return value if isinstance(value, float) else None

    def extract(self, document: PageDocument) -> Product | None:
        """Return the heuristic Product, or ``None`` without title/description."""
        title = (
            self.read_text(document, "title")
            or meta_content(document, "meta[property='og:title']")
            or document.title
            or None
        )
        description = (
            self.read_text(document, "description")
            or meta_content(document, "meta[name='description']")
            or meta_content(document, "meta[property='og:description']")
        )
        image = self.read_text(document, "image") or meta_content(
            document, "meta[property='og:image']"
        )
        currency = read_field(
            document, _CURRENCY_LOCATORS, attribute="content"
        )

        product = Product(
            title=title,
            description=collapse_whitespace(description) or None,
            price=self.read_price(document),
            currency=currency.upper() if currency else None,
            sku=self.read_text(document, "sku"),
            brand=self.read_text(document, "brand"),
            image=image,
            url=canonical_url(document) or document.url,
        )
        if not (product.title or product.description):
            logger.debug("Heuristics found nothing on %s", document.url)
            return None
        return product

    def fill_missing(
        self,
        product: Product,
        document: PageDocument,
        fields: Iterable[str] = LOCATED_FIELDS,
    ) -> Product:
        """Fill empty fields of ``product`` from the current locator table.

        Present values are left alone; returns a new Product.
        """
        updates: dict[str, object] = {}
        for name in fields:
            if getattr(product, name, None) not in (None, ""):
                continue
            value = self.read(document, name)
            if value not in (None, ""):
                updates[name] = value
        if updates:
            logger.debug(
                "Filled %s from learned locators on %s",
                sorted(updates),
                document.url,
            )
        return replace(product, **updates)  # type: ignore[arg-type]
