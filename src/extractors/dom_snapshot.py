# src/extractors/dom_snapshot.py

"""Bounded DOM snapshot sent to the product-intel service."""

from html import escape

from src.config.settings import Settings
from src.extractors.dom_reader import PageDocument, canonical_url

TRUNCATION_MARKER = "<!-- AFFILIFIND_DOM_TRUNCATED -->"

# Likely "main content" containers, most specific first
CONTENT_CONTAINERS: tuple[str, ...] = (
    "#dp",
    "#centerCol",
    "#ppd",
    "#dp-container",
    "main",
    "body",
)


def _head_info(document: PageDocument) -> str:
    canonical = canonical_url(document)
    lines = [f"<title>{escape(document.title)}</title>"]
    if canonical:
        lines.append(f'<link rel="canonical" href="{escape(canonical)}" />')
    return "\n".join(lines)


def truncate_middle(markup: str, limit: int) -> str:
    """Keep the head and tail of ``markup`` within ``limit`` UTF-8 bytes.

    The elided middle is replaced by :data:`TRUNCATION_MARKER`.
    """
    encoded = markup.encode("utf-8")
    if len(encoded) <= limit:
        return markup
    half = limit // 2
    head = encoded[:half].decode("utf-8", errors="ignore")
    tail = encoded[-half:].decode("utf-8", errors="ignore") if half else ""
    return f"{head}\n{TRUNCATION_MARKER}\n{tail}"


def snapshot_dom(
    document: PageDocument,
    limit: int = Settings.DOM_SNAPSHOT_LIMIT,
) -> str:
    """Concatenate the content containers found on the page, bounded."""
    parts = [_head_info(document)]
    for locator in CONTENT_CONTAINERS:
        node = document.select_one(locator)
        if node is not None:
            parts.append(str(node))
    return truncate_middle("\n".join(parts), limit)
