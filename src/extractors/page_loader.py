# src/extractors/page_loader.py

"""Fetches a product page and wraps it as a PageDocument."""

import logging
import time
from typing import Any

import cloudscraper  # type: ignore[import-untyped]
from curl_cffi import requests as curl_requests

from src.config.settings import Settings
from src.extractors.dom_reader import PageDocument

logger = logging.getLogger("affilifind.page_loader")


class PageLoadError(Exception):
    """The page could not be fetched by any transport."""


class PageLoader:
    """curl_cffi first, cloudscraper when that is blocked or exhausted."""

    def __init__(
        self,
        session: curl_requests.Session | None = None,
    ) -> None:
        self.settings = Settings()
        self.session = session or curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self._request_timeout: int = self.settings.REQUEST_TIMEOUT

    def _is_challenge(self, text: str) -> bool:
        """True for bot-challenge interstitials instead of the real page."""
        lower = text.lower()
        for marker in self.settings.CHALLENGE_MARKERS:
            if marker in lower:
                logger.warning("Challenge page detected (marker: '%s')", marker)
                return True
        return False

    def _fetch(self, url: str) -> str | None:
        headers = dict(self.settings.DEFAULT_HEADERS)
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = self.session.get(
                    url,
                    headers=headers,
                    timeout=self._request_timeout,
                )
                if resp.status_code == 200:
                    if self._is_challenge(resp.text):
                        return None
                    return resp.text
                logger.warning(
                    "HTTP %d for %s on attempt %d",
                    resp.status_code,
                    url,
                    attempt + 1,
                )
                if resp.status_code not in self.settings.RETRY_STATUS_CODES:
                    return None
            except Exception as exc:
                logger.warning(
                    "Request error for %s on attempt %d: %s",
                    url,
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
            time.sleep(self.settings.REQUEST_DELAY * (attempt + 1))
        return None

    def load(self, url: str) -> PageDocument:
        """Fetch ``url``; raises :class:`PageLoadError` when all transports fail."""
        text = self._fetch(url)
        if text is not None:
            return PageDocument.from_html(url, text)

        logger.info("curl_cffi gave up on %s, falling back to cloudscraper", url)
        try:
            _cs: Any = cloudscraper
            scraper: Any = _cs.create_scraper()
            resp: Any = scraper.get(
                url,
                headers=self.settings.DEFAULT_HEADERS,
                timeout=self._request_timeout,
            )
        except Exception as exc:
            logger.error(
                "cloudscraper fallback failed for %s: %s", url, exc,
                exc_info=True,
            )
            raise PageLoadError(f"Could not load {url}: {exc}") from exc
        if resp.status_code != 200:
            raise PageLoadError(f"Could not load {url}: HTTP {resp.status_code}")
        return PageDocument.from_html(url, str(resp.text))
