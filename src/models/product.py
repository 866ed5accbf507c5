# src/models/product.py

"""Product data model for inter-module data flow."""

from dataclasses import asdict, dataclass, fields
from typing import Any

from src.filters.price_normalizer import normalize_price

PRODUCT_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "price",
    "currency",
    "sku",
    "mpn",
    "gtin",
    "brand",
    "image",
    "url",
)


@dataclass
class Product:
    """A product detected on a page.

    Every field is best-effort; ``None`` means the field was not found.
    """

    title: str | None = None
    description: str | None = None
    price: float | None = None
    currency: str | None = None
    sku: str | None = None
    mpn: str | None = None
    gtin: str | None = None
    brand: str | None = None
    image: str | None = None
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a wire dict, omitting absent fields."""
        return {
            k: v for k, v in asdict(self).items() if v not in (None, "")
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Product":
        """Build a Product from a loosely-typed wire dict.

        Unknown keys are ignored, strings are stripped, and prices
        in string form go through the locale-aware normaliser.
        """
        if not data:
            return cls()
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = data.get(f.name)
            if raw is None:
                continue
            if f.name == "price":
                values["price"] = normalize_price(raw)
                continue
            text = str(raw).strip()
            if text:
                values[f.name] = text
        if values.get("currency"):
            values["currency"] = values["currency"].upper()
        return cls(**values)
