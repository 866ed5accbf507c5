# src/config/settings.py

"""Central configuration for the affilifind engine."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the affilifind engine."""

    # --- Remote services ---
    DEFAULT_API_BASE: str = os.getenv(
        "AFFILIFIND_API_BASE", "http://localhost:8787"
    )
    DEFAULT_API_KEY: str = os.getenv("AFFILIFIND_API_KEY", "")
    DEFAULT_AUTO_INJECT: bool = True

    # --- HTTP ---
    REQUEST_DELAY: float = 0.5          # Base backoff between retries
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    MAX_RETRIES: int = 3                # Retry count on transient failures
    RETRY_STATUS_CODES: frozenset[int] = frozenset(
        {429, 500, 502, 503, 504}
    )

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "en-US,en;q=0.9",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "Upgrade-Insecure-Requests": "1",
    }
    CHALLENGE_MARKERS: list[str] = [
        "challenges.cloudflare.com",
        "cdn-cgi/challenge-platform",
        "cf-turnstile",
        "verify you are human",
    ]

    # --- Detection ---
    CORE_FIELDS: tuple[str, ...] = ("title", "description")
    MUTATION_DEBOUNCE: float = 0.5      # Trailing debounce for DOM changes
    NAVIGATION_DEBOUNCE: float = 0.25   # Trailing debounce for URL changes
    DOM_SNAPSHOT_LIMIT: int = 160_000   # Bytes sent to product-intel
    PAGE_CONTEXT_SNAPSHOT_LIMIT: int = 120_000
    POLL_INTERVAL: float = 2.0          # Seconds between page polls (watch)

    # --- Caching ---
    STORAGE_PREFIX: str = "affilifind:"
    SIMILAR_DEFAULT_LIMIT: int = 6
    SUGGESTION_LIMIT: int = 3

    # --- Deal history ---
    DEAL_HISTORY_LIMIT: int = 100

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    LOGS_DIR: Path = BASE_DIR / "logs"
    HISTORY_DB_PATH: Path = DATA_DIR / "deal_history.db"
    CONFIG_PATH: Path = DATA_DIR / "config.json"
    SESSION_STORE_PATH: Path = DATA_DIR / "session.json"
