# src/services/deal_presenter.py

"""Deal UI hook: records what would be shown to the shopper."""

import logging

from src.models.deal import DealMatch

logger = logging.getLogger("affilifind.presenter")


class DealPresenter:
    """Tracks the mounted deal for one page.

    The rendering itself belongs to the host; this object holds the
    state the scheduler and the CLI need.
    """

    def __init__(self) -> None:
        self.deal: DealMatch | None = None
        self.flashes = 0

    @property
    def mounted(self) -> bool:
        return self.deal is not None

    def mount(self, deal: DealMatch) -> None:
        self.deal = deal
        logger.info(
            "Deal mounted: %s -> %s",
            deal.merchant,
            deal.affiliate.url if deal.affiliate else None,
        )

    def unmount(self) -> None:
        if self.deal is not None:
            logger.debug("Deal unmounted (%s)", self.deal.merchant)
        self.deal = None

    def flash(self) -> None:
        """Acknowledge an applied deal."""
        self.flashes += 1
        logger.info("Deal applied acknowledgement #%d", self.flashes)
