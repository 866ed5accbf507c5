# src/extractors/dom_reader.py

"""Field Reader: first non-empty value for a field from a live document."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

logger = logging.getLogger("affilifind.extractors")

# Attributes consulted on a matched element before its text content
FALLBACK_ATTRIBUTES: tuple[str, ...] = (
    "content",
    "src",
    "data-src",
    "href",
    "value",
)


@dataclass
class PageDocument:
    """Snapshot of a page: the location it was read from and its tree."""

    url: str
    soup: BeautifulSoup

    @classmethod
    def from_html(cls, url: str, html: str) -> "PageDocument":
        """Parse raw markup into a document."""
        return cls(url=url, soup=BeautifulSoup(html, "lxml"))

    @property
    def title(self) -> str:
        """The document ``<title>`` text, or an empty string."""
        node = self.soup.title
        return node.get_text(strip=True) if node else ""

    def select_one(self, locator: str) -> Tag | None:
        """``select_one`` that treats an invalid locator as no match."""
        try:
            return self.soup.select_one(locator)
        except (SelectorSyntaxError, NotImplementedError, ValueError):
            logger.debug("Skipping invalid locator %r", locator)
            return None


def collapse_whitespace(text: str | None) -> str:
    """Squash runs of whitespace into single spaces and trim."""
    if not text:
        return ""
    return " ".join(text.split())


def html_to_text(markup: str | None) -> str:
    """Flatten an HTML fragment to single-spaced plain text."""
    if not markup:
        return ""
    if "<" not in markup:
        return collapse_whitespace(markup)
    fragment = BeautifulSoup(markup, "lxml")
    return collapse_whitespace(fragment.get_text(" "))


def _attr(node: Tag, name: str) -> str:
    value = node.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return (value or "").strip()


def read_field(
    document: PageDocument,
    locators: Iterable[str],
    attribute: str | None = None,
    html: bool = False,
) -> str | None:
    """Return the first non-empty value found through ``locators``.

    For each matching element the value is taken from, in order:
    the explicit ``attribute``; the inner HTML when ``html`` is set;
    the generic fallback attributes; the trimmed text content.
    Locators that match nothing, or yield nothing, are passed over.
    """
    for locator in locators:
        if not locator:
            continue
        node = document.select_one(locator)
        if node is None:
            continue
        if attribute:
            value = _attr(node, attribute)
            if value:
                return value
        if html:
            inner = node.decode_contents().strip()
            if inner:
                return inner
        for name in FALLBACK_ATTRIBUTES:
            value = _attr(node, name)
            if value:
                return value
        text = node.get_text().strip()
        if text:
            return text
    return None


def meta_content(document: PageDocument, locator: str) -> str | None:
    """Read the ``content`` attribute of a single meta element."""
    node = document.select_one(locator)
    if node is None:
        return None
    return _attr(node, "content") or None


def canonical_url(document: PageDocument) -> str | None:
    """Resolve the page's canonical URL from link/meta hints."""
    for locator, attribute in (
        ("link[rel='canonical']", "href"),
        ("link[rel='alternate'][hreflang='x-default']", "href"),
        ("meta[property='og:url']", "content"),
    ):
        node = document.select_one(locator)
        if node is None:
            continue
        value = _attr(node, attribute)
        if value:
            return urljoin(document.url, value)
    return None
