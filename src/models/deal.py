# src/models/deal.py

"""Deal, remote-intel and history records exchanged between contexts."""

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from src.models.product import Product


@dataclass
class Affiliate:
    """Affiliate offer attached to a matched product."""

    url: str
    discount_percent: float | None = None
    coupon_code: str | None = None
    expires_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Affiliate | None":
        """Parse the ``affiliate`` object of an affiliate-links response."""
        if not data or not data.get("url"):
            return None
        discount = data.get("discountPercent")
        return cls(
            url=str(data["url"]),
            discount_percent=(
                float(discount)
                if isinstance(discount, (int, float))
                and not isinstance(discount, bool)
                else None
            ),
            coupon_code=data.get("couponCode") or None,
            expires_at=data.get("expiresAt") or None,
        )


@dataclass
class DealMatch:
    """Result of an affiliate lookup for one product."""

    merchant: str | None
    affiliate: Affiliate | None = None
    raw: dict[str, Any] = field(default_factory=lambda: dict[str, Any]())

    @property
    def has_offer(self) -> bool:
        """True when the service matched the product and gave an affiliate URL."""
        if not self.raw.get("match"):
            return False
        return self.affiliate is not None and bool(self.affiliate.url)

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        product: Product | None = None,
        page_url: str | None = None,
    ) -> "DealMatch":
        """Parse ``{match, affiliate}`` from the affiliate service.

        When the service names no merchant, the product URL's host
        (or the page host) stands in.
        """
        match = data.get("match") or {}
        merchant = match.get("merchant") if isinstance(match, dict) else None
        if not merchant:
            merchant = _hostname(product.url if product else None) or (
                _hostname(page_url)
            )
        return cls(
            merchant=merchant,
            affiliate=Affiliate.from_dict(data.get("affiliate")),
            raw=data,
        )

    def to_record(self) -> dict[str, Any]:
        """Deal snapshot as stored in the history ledger."""
        affiliate = self.affiliate
        return {
            "merchant": self.merchant,
            "discountPercent": affiliate.discount_percent if affiliate else None,
            "couponCode": affiliate.coupon_code if affiliate else None,
            "affiliateUrl": affiliate.url if affiliate else None,
        }


@dataclass
class LookupFailure:
    """Structured error value for a failed remote lookup."""

    error: str

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error}


@dataclass
class RemoteIntel:
    """Product values and locators reported by the product-intel service."""

    product: Product
    locators: dict[str, list[str]]
    cached_at: int | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "RemoteIntel":
        """Parse ``{product, selectors, cachedAt}``.

        Selector values may be a single string or a list; blanks and
        duplicates are dropped while keeping the reported order.
        """
        raw_selectors = data.get("selectors") or {}
        locators: dict[str, list[str]] = {}
        if isinstance(raw_selectors, dict):
            for name, value in raw_selectors.items():
                items = value if isinstance(value, list) else [value]
                cleaned = [str(s).strip() for s in items if s]
                deduped = list(dict.fromkeys(s for s in cleaned if s))
                if deduped:
                    locators[str(name)] = deduped
        product_data = data.get("product")
        cached_at = data.get("cachedAt")
        return cls(
            product=Product.from_dict(
                product_data if isinstance(product_data, dict) else None
            ),
            locators=locators,
            cached_at=int(cached_at) if isinstance(cached_at, (int, float)) else None,
        )


@dataclass
class DealHistoryEntry:
    """One applied deal, as stored in the history ledger."""

    id: str
    added_at: int
    savings_value: float | None
    product: dict[str, Any]
    deal: dict[str, Any]
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire form used by ``GET_DEAL_HISTORY``."""
        return {
            "id": self.id,
            "addedAt": self.added_at,
            "savingsValue": self.savings_value,
            "product": self.product,
            "deal": self.deal,
            "source": self.source,
        }


def _hostname(url: str | None) -> str | None:
    if not url:
        return None
    return urlparse(url).hostname
