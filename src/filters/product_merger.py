# src/filters/product_merger.py

"""Explicit field-precedence rules for combining partial products."""

from dataclasses import replace

from src.config.settings import Settings
from src.models.product import PRODUCT_FIELDS, Product


def _present(value: object) -> bool:
    """A field counts as present when it is neither None nor blank."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def merge_products(
    base: Product | None,
    override: Product | None,
) -> Product:
    """Combine two partial products.

    ``base`` wins for every field it carries; ``override`` only fills
    the gaps.  An absent value on either side never erases a present
    one.  Neither input is mutated.
    """
    if base is None and override is None:
        return Product()
    if base is None:
        return replace(override)  # type: ignore[arg-type]
    if override is None:
        return replace(base)

    values: dict[str, object] = {}
    for name in PRODUCT_FIELDS:
        mine = getattr(base, name)
        theirs = getattr(override, name)
        values[name] = mine if _present(mine) else (
            theirs if _present(theirs) else None
        )
    return Product(**values)  # type: ignore[arg-type]


def missing_fields(product: Product | None) -> list[str]:
    """Return the core fields (title, description) still absent."""
    return [
        name
        for name in Settings.CORE_FIELDS
        if product is None or not _present(getattr(product, name))
    ]


def is_sufficient(product: Product | None) -> bool:
    """True once both title and description are present."""
    return not missing_fields(product)


def has_any_core_field(product: Product | None) -> bool:
    """True when at least the title or the description is present."""
    return len(missing_fields(product)) < len(Settings.CORE_FIELDS)
