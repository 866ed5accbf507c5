# src/services/api_client.py

"""HTTP client for the affiliate, product-intel and search services."""

import asyncio
import json
import logging
import time
from typing import Any
from urllib.parse import urljoin

from curl_cffi import requests as curl_requests

from src.config.settings import Settings
from src.storage.config_store import ConfigStore

logger = logging.getLogger("affilifind.api")


class ApiError(Exception):
    """Transport or HTTP failure talking to a remote service."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _error_message(resp: curl_requests.Response) -> str:
    """Prefer the service's ``{error}`` body over raw text."""
    text = resp.text or ""
    try:
        body = json.loads(text)
    except ValueError:
        return text[:200]
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return text[:200]


def _clean_params(params: dict[str, Any]) -> dict[str, str]:
    """Drop empty parameters and stringify the rest."""
    return {
        k: str(v)
        for k, v in params.items()
        if v is not None and v != ""
    }


class ApiClient:
    """Blocking curl_cffi session exposed through async methods.

    The base URL and API key are read from the config store on every
    call so ``SET_CONFIG`` takes effect immediately.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        session: curl_requests.Session | None = None,
    ) -> None:
        self.settings = Settings()
        self._config_store = config_store
        self.session = session or curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self._request_timeout: int = self.settings.REQUEST_TIMEOUT

    async def get_json(
        self, path: str, params: dict[str, Any] | None = None,
    ) -> Any:
        """GET ``path`` with query ``params`` and decode the JSON body."""
        url, headers = await self._prepare(path)
        return await asyncio.to_thread(
            self._request, "GET", url, headers, _clean_params(params or {}), None,
        )

    async def post_json(self, path: str, payload: dict[str, Any]) -> Any:
        """POST a JSON ``payload`` to ``path`` and decode the JSON body."""
        url, headers = await self._prepare(path)
        return await asyncio.to_thread(
            self._request, "POST", url, headers, None, payload,
        )

    async def _prepare(self, path: str) -> tuple[str, dict[str, str]]:
        config = await self._config_store.get()
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        return urljoin(config.api_base, path), headers

    def _request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        params: dict[str, str] | None,
        payload: dict[str, Any] | None,
    ) -> Any:
        """Send with retries on transport errors, 429 and 5xx."""
        last_error = "no attempt made"
        last_status: int | None = None
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = self.session.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=payload,
                    timeout=self._request_timeout,
                )
            except Exception as exc:
                last_error = str(exc)
                logger.warning(
                    "%s %s failed on attempt %d: %s",
                    method,
                    url,
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
                time.sleep(self.settings.REQUEST_DELAY * (attempt + 1))
                continue

            if 200 <= resp.status_code < 300:
                try:
                    return json.loads(resp.text)
                except ValueError as exc:
                    raise ApiError(
                        f"Invalid JSON from {url}", resp.status_code
                    ) from exc

            last_status = resp.status_code
            last_error = f"API {resp.status_code}: {_error_message(resp)}"
            if resp.status_code not in self.settings.RETRY_STATUS_CODES:
                break
            logger.warning(
                "%s %s returned HTTP %d on attempt %d",
                method,
                url,
                resp.status_code,
                attempt + 1,
            )
            time.sleep(self.settings.REQUEST_DELAY * (attempt + 1))

        logger.error("%s %s gave up: %s", method, url, last_error)
        raise ApiError(last_error, last_status)
