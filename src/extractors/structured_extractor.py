# src/extractors/structured_extractor.py

"""Structured Extractor: schema.org Product nodes from JSON-LD blocks."""

import json
import logging
from typing import Any

from src.extractors.dom_reader import PageDocument, canonical_url
from src.filters.price_normalizer import normalize_price
from src.models.product import Product

logger = logging.getLogger("affilifind.extractors.structured")

_GTIN_KEYS: tuple[str, ...] = ("gtin", "gtin13", "gtin12", "gtin14", "gtin8")


def _first(value: Any) -> Any:
    """First element of a list, or the value itself."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _flatten(data: Any) -> list[dict[str, Any]]:
    """Expand a JSON-LD payload into its candidate nodes.

    Covers a bare node, a top-level array, and ``@graph`` wrappers
    at either level.
    """
    roots = data if isinstance(data, list) else [data]
    nodes: list[dict[str, Any]] = []
    for root in roots:
        if not isinstance(root, dict):
            continue
        nodes.append(root)
        graph = root.get("@graph")
        if isinstance(graph, list):
            nodes.extend(n for n in graph if isinstance(n, dict))
        elif isinstance(graph, dict):
            nodes.append(graph)
    return nodes


def _is_product(node: dict[str, Any]) -> bool:
    declared = node.get("@type")
    if not declared:
        return False
    types = declared if isinstance(declared, list) else [declared]
    return "Product" in types


def _brand(raw: Any) -> str | None:
    raw = _first(raw)
    if isinstance(raw, dict):
        return _text(raw.get("name"))
    return _text(raw)


def _image(raw: Any) -> str | None:
    raw = _first(raw)
    if isinstance(raw, dict):
        return _text(raw.get("url") or raw.get("contentUrl"))
    return _text(raw)


class StructuredExtractor:
    """Reads the first schema.org ``Product`` embedded as JSON-LD."""

    def extract(self, document: PageDocument) -> Product | None:
        """Return the structured Product, or ``None`` if none is declared.

        Malformed blocks are skipped; this never raises on bad JSON.
        """
        scripts = document.soup.select("script[type='application/ld+json']")
        for index, script in enumerate(scripts):
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                data = json.loads(raw)
            except ValueError:
                logger.debug("Skipping malformed JSON-LD block #%d", index)
                continue
            for node in _flatten(data):
                if _is_product(node):
                    return self._to_product(node, document)
        return None

    @staticmethod
    def _to_product(
        node: dict[str, Any], document: PageDocument
    ) -> Product:
        offers = _first(node.get("offers"))
        if not isinstance(offers, dict):
            offers = {}
        gtin = next(
            (_text(node.get(k)) for k in _GTIN_KEYS if _text(node.get(k))),
            None,
        )
        price_raw = (
            offers.get("price")
            or offers.get("lowPrice")
            or offers.get("highPrice")
        )
        currency = _text(
            offers.get("priceCurrency") or offers.get("priceCurrencyCode")
        )
        return Product(
            title=_text(node.get("name")) or _text(node.get("title")),
            description=_text(node.get("description")),
            price=normalize_price(price_raw),
            currency=currency.upper() if currency else None,
            sku=_text(node.get("sku")),
            mpn=_text(node.get("mpn")),
            gtin=gtin,
            brand=_brand(node.get("brand")),
            image=_image(node.get("image")),
            url=(
                _text(node.get("url"))
                or canonical_url(document)
                or document.url
            ),
        )
