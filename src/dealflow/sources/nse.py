"""NSE data source implementation."""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, List, Optional

import requests

from ..models import Deal, DealType, DeliveryRecord, Exchange
from ..normalizer import build_delivery_record, normalize_deal
from ..parsing import parse_int
from .base import DealSource

LOGGER = logging.getLogger(__name__)

BASE_URL = "https://www.nseindia.com"

DEFAULT_HEADERS = {
    "user-agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "accept": "application/json, text/javascript, */*; q=0.01",
    "accept-language": "en-US,en;q=0.9",
    "accept-encoding": "gzip, deflate, br",
    "connection": "keep-alive",
    "x-requested-with": "XMLHttpRequest",
}

DEAL_ENDPOINTS = {
    DealType.BLOCK: "/api/block-deal",
    DealType.BULK: "/api/bulk-deal",
}


class NseSource(DealSource):
    """Client for the NSE JSON endpoints.

    NSE rejects API calls without the cookies set by its home page, so
    :meth:`prepare` must succeed before deals or delivery data can be fetched.
    """

    exchange = Exchange.NSE

    def __init__(self, session: requests.Session | None = None, timeout: float = 30.0) -> None:
        super().__init__(session, timeout)
        # Browser-like defaults; the exchange rejects bare clients.
        self.session.headers.update(DEFAULT_HEADERS)

    def prepare(self) -> bool:
        LOGGER.info("Initializing NSE session")
        try:
            response = self.session.get(BASE_URL, headers={"referer": BASE_URL}, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            LOGGER.error("Failed to initialize NSE session: %s", exc)
            return False
        return True

    def _get_json(self, path: str, referer: str, **params: Any) -> Any:
        response = self.session.get(
            f"{BASE_URL}{path}",
            params=params,
            headers={"referer": referer},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def fetch_deals(self, deal_type: DealType) -> List[Deal]:
        LOGGER.debug("Requesting NSE %s deals", deal_type.value.lower())
        payload = self._get_json(
            DEAL_ENDPOINTS[deal_type],
            referer=f"{BASE_URL}/report-detail/eq_security",
            index="equities",
        )
        rows = payload.get("data", []) if isinstance(payload, dict) else payload
        if not isinstance(rows, list):
            LOGGER.warning("Unexpected NSE %s payload shape: %s", deal_type.value, type(rows).__name__)
            return []
        deals = [deal for deal in (normalize_deal(row, self.exchange, deal_type) for row in rows) if deal]
        LOGGER.info("Found %d NSE %s deals (%d raw rows)", len(deals), deal_type.value.lower(), len(rows))
        return deals

    def fetch_delivery(self, symbol: str, trade_date: date) -> Optional[DeliveryRecord]:
        """Return the delivery statistics for ``symbol``, or ``None`` when NSE has none."""

        symbol = symbol.strip().upper()
        payload = self._get_json(
            "/api/quote-equity",
            referer=f"{BASE_URL}/get-quotes/equity?symbol={symbol}",
            symbol=symbol,
        )
        position = payload.get("securityWiseDP") if isinstance(payload, dict) else None
        if not position:
            LOGGER.debug("No delivery data for %s", symbol)
            return None
        traded = parse_int(position.get("quantityTraded")) or 0
        delivered = parse_int(position.get("deliveryQuantity")) or 0
        return build_delivery_record(symbol, trade_date, self.exchange, traded, delivered)


__all__ = ["NseSource"]
