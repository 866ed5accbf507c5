# src/services/messaging.py

"""Message kinds and the in-process bus between content and background."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger("affilifind.messaging")

# content -> background
PRODUCT_DETECTED = "PRODUCT_DETECTED"
LOOKUP_AFFILIATE = "LOOKUP_AFFILIATE"
SIMILAR_PRODUCTS = "SIMILAR_PRODUCTS"
REMOTE_PRODUCT_INTEL = "REMOTE_PRODUCT_INTEL"
SEARCH_PRODUCT_SUGGESTIONS = "SEARCH_PRODUCT_SUGGESTIONS"
APPLY_AFFILIATE = "APPLY_AFFILIATE"
SET_CONFIG = "SET_CONFIG"
GET_DEAL_HISTORY = "GET_DEAL_HISTORY"
GET_POPUP_DATA = "GET_POPUP_DATA"

# background -> content
DEAL_APPLIED = "AFFILIFIND_DEAL_APPLIED"
PAGE_CONTEXT = "AFFILIFIND_PAGE_CONTEXT"

Message = dict[str, Any]
BackgroundHandler = Callable[[Message, int | None], Awaitable[Any]]
ContentHandler = Callable[[Message], Awaitable[Any]]


class MessageDeliveryError(Exception):
    """No receiver is attached for a message."""


class LocalMessageBus:
    """Routes messages between the two contexts inside one process.

    Each content context is bound to a tab id; messages it sends reach
    the background handler tagged with that tab id.  The background
    can push notifications to any attached tab.
    """

    def __init__(self) -> None:
        self._background: BackgroundHandler | None = None
        self._tabs: dict[int, ContentHandler] = {}

    def bind_background(self, handler: BackgroundHandler) -> None:
        self._background = handler

    def attach_tab(self, tab_id: int, handler: ContentHandler) -> None:
        self._tabs[tab_id] = handler

    def detach_tab(self, tab_id: int) -> None:
        self._tabs.pop(tab_id, None)

    def sender_for(self, tab_id: int | None) -> "TabChannel":
        """The channel a content context uses to reach the background."""
        return TabChannel(self, tab_id)

    async def send(self, message: Message, tab_id: int | None = None) -> Any:
        """Deliver ``message`` to the background and return its response."""
        if self._background is None:
            raise MessageDeliveryError("No background handler bound")
        logger.debug("-> %s (tab=%s)", message.get("type"), tab_id)
        return await self._background(message, tab_id)

    async def send_to_tab(self, tab_id: int, message: Message) -> Any:
        """Deliver a background notification to a content context."""
        handler = self._tabs.get(tab_id)
        if handler is None:
            raise MessageDeliveryError(f"No content context for tab {tab_id}")
        logger.debug("<- %s (tab=%s)", message.get("type"), tab_id)
        return await handler(message)


class TabChannel:
    """Content-side view of the bus, bound to one tab."""

    def __init__(self, bus: LocalMessageBus, tab_id: int | None) -> None:
        self._bus = bus
        self.tab_id = tab_id

    async def send(self, message: Message) -> Any:
        return await self._bus.send(message, self.tab_id)
