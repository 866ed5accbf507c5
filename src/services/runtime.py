# src/services/runtime.py

"""Wires the background context and per-tab content contexts together."""

import logging

from curl_cffi import requests as curl_requests

from src.config.settings import Settings
from src.extractors.heuristic_extractor import HeuristicExtractor
from src.extractors.locators import SelectorLearningStore
from src.extractors.structured_extractor import StructuredExtractor
from src.services.api_client import ApiClient
from src.services.background import BackgroundService
from src.services.deal_presenter import DealPresenter
from src.services.deal_resolver import DealResolver
from src.services.detection_orchestrator import DetectionOrchestrator
from src.services.messaging import LocalMessageBus
from src.services.product_intel import ProductIntelService, SearchSuggestionsClient
from src.services.remote_fallback import RemoteFallbackClient
from src.services.rescan_scheduler import PageSource, RescanScheduler
from src.storage.config_store import ConfigStore
from src.storage.deal_history_db import DealHistoryDB
from src.storage.kv_store import JsonFileKeyValueStore, KeyValueStore
from src.storage.session_cache import SessionCache

logger = logging.getLogger("affilifind.runtime")


class Runtime:
    """One background context plus any number of tabs on a shared bus."""

    def __init__(
        self,
        config_kv: KeyValueStore | None = None,
        session_kv: KeyValueStore | None = None,
        history_db: DealHistoryDB | None = None,
        api_session: curl_requests.Session | None = None,
    ) -> None:
        self.bus = LocalMessageBus()
        self.config_kv = config_kv or JsonFileKeyValueStore(Settings.CONFIG_PATH)
        # Cleared at every session start, so it may hold deal entries.
        self.session_kv = session_kv or JsonFileKeyValueStore(
            Settings.SESSION_STORE_PATH, ephemeral=True,
        )
        self.config_store = ConfigStore(self.config_kv)
        self.history_db = history_db or DealHistoryDB()

        api = ApiClient(self.config_store, session=api_session)
        session = SessionCache(self.session_kv)
        self.deal_resolver = DealResolver(api, session)
        self.background = BackgroundService(
            config_store=self.config_store,
            session=session,
            deal_resolver=self.deal_resolver,
            intel_service=ProductIntelService(api),
            suggestions=SearchSuggestionsClient(api),
            history_db=self.history_db,
            notify_tab=self.bus.send_to_tab,
        )
        self.bus.bind_background(self.background.handle)
        self.tabs: dict[int, RescanScheduler] = {}

    async def start_session(self) -> None:
        """Clear session data and make sure the config has its defaults."""
        await self.session_kv.clear()
        await self.background.on_installed()

    def open_tab(self, tab_id: int, page_source: PageSource) -> RescanScheduler:
        """Build the content context for one tab and make it active."""
        store = SelectorLearningStore()
        channel = self.bus.sender_for(tab_id)
        remote = RemoteFallbackClient(channel, store)
        orchestrator = DetectionOrchestrator(
            StructuredExtractor(), HeuristicExtractor(store), remote,
        )
        scheduler = RescanScheduler(
            page_source,
            orchestrator,
            channel,
            store,
            remote,
            config_store=self.config_store,
            presenter=DealPresenter(),
        )
        self.bus.attach_tab(tab_id, scheduler.handle_message)
        self.tabs[tab_id] = scheduler
        self.background.active_tab_id = tab_id
        logger.debug("Tab %d opened", tab_id)
        return scheduler

    async def close_tab(self, tab_id: int) -> None:
        scheduler = self.tabs.pop(tab_id, None)
        if scheduler is not None:
            scheduler.close()
        self.bus.detach_tab(tab_id)
        if self.background.active_tab_id == tab_id:
            self.background.active_tab_id = None
        await self.background.on_tab_removed(tab_id)

    def close(self) -> None:
        for scheduler in self.tabs.values():
            scheduler.close()
        self.deal_resolver.clear()
        self.history_db.close()
