# src/filters/product_identity.py

"""Stable identity keys for products and pages."""

import json
import re
from urllib.parse import urlparse

from src.models.product import Product

_TRAILING_SLASHES_RE = re.compile(r"/+$")


def normalise_title(title: str | None) -> str:
    """Collapse whitespace and casefold so cosmetic edits keep the key."""
    if not title:
        return ""
    return " ".join(title.split()).casefold()


def strip_fragment(url: str | None) -> str:
    """Drop the ``#fragment`` part of a URL."""
    if not url:
        return ""
    return url.split("#", 1)[0]


def product_key(product: Product | None) -> str | None:
    """Derive the identity key of a product.

    Built from url, sku/gtin and title, in that order of preference,
    as a canonical JSON string.  Two scans of the same page whose
    titles differ only in whitespace or case share a key.
    """
    if product is None:
        return None
    return canonical_json({
        "url": strip_fragment(product.url),
        "sku": product.sku or "",
        "gtin": product.gtin or "",
        "title": normalise_title(product.title),
    })


def page_key(url: str) -> str:
    """Key a page by ``hostname + path``, ignoring query and fragment.

    Trailing slashes are dropped so ``/item/`` and ``/item`` match.
    Anything that does not parse as an absolute URL is used verbatim.
    """
    parsed = urlparse(url)
    if not parsed.hostname:
        return url
    return f"{parsed.hostname}{_TRAILING_SLASHES_RE.sub('', parsed.path)}"


def canonical_json(data: dict[str, object]) -> str:
    """Deterministic JSON used as a cache key."""
    return json.dumps(
        data, sort_keys=True, separators=(",", ":"), default=str
    )
