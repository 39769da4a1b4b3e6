"""BSE data source implementation."""
from __future__ import annotations

import logging
from typing import List

import requests
from bs4 import BeautifulSoup

from ..models import Deal, DealType, Exchange
from ..normalizer import normalize_deal
from .base import DealSource

LOGGER = logging.getLogger(__name__)

BASE_URL = "https://www.bseindia.com"

DEFAULT_HEADERS = {
    "user-agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "accept-language": "en-US,en;q=0.9",
}

REPORT_PAGES = {
    DealType.BULK: ("/markets/equity/EQReports/bulk_deals.aspx", "ContentPlaceHolder1_gvbulk_deals"),
    DealType.BLOCK: ("/markets/equity/EQReports/block_deals.aspx", "ContentPlaceHolder1_gvblock_deals"),
}

# Date, security code, security name, client, B/S, quantity, price.
MIN_COLUMNS = 7


class BseSource(DealSource):
    """Scraper for the BSE bulk/block deal report pages."""

    exchange = Exchange.BSE
    deal_types = (DealType.BULK, DealType.BLOCK)

    def __init__(self, session: requests.Session | None = None, timeout: float = 30.0) -> None:
        super().__init__(session, timeout)
        self.session.headers.update(DEFAULT_HEADERS)

    def _get_soup(self, path: str) -> BeautifulSoup:
        LOGGER.debug("Requesting BSE page %s", path)
        response = self.session.get(f"{BASE_URL}{path}", timeout=self.timeout)
        response.raise_for_status()
        return BeautifulSoup(response.text, "html.parser")

    def fetch_deals(self, deal_type: DealType) -> List[Deal]:
        path, table_id = REPORT_PAGES[deal_type]
        soup = self._get_soup(path)
        table = soup.find("table", id=table_id)
        if table is None:
            LOGGER.warning("BSE %s table %s not found", deal_type.value.lower(), table_id)
            return []

        deals: List[Deal] = []
        for row in table.find_all("tr"):
            cells = [cell.get_text(strip=True) for cell in row.find_all("td")]
            if len(cells) < MIN_COLUMNS:
                continue
            deal = normalize_deal(
                {
                    "date": cells[0],
                    "symbol": cells[2],
                    "clientName": cells[3],
                    "buyOrSell": cells[4],
                    "quantityTraded": cells[5],
                    "tradePrice": cells[6],
                },
                self.exchange,
                deal_type,
            )
            if deal is not None:
                deals.append(deal)
        LOGGER.info("Found %d BSE %s deals", len(deals), deal_type.value.lower())
        return deals


__all__ = ["BseSource"]
