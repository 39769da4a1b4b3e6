"""Base classes for exchange deal sources."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Tuple

import requests

from ..models import Deal, DealType, Exchange


class DealSource(ABC):
    """Abstract exchange feed that yields normalized deals."""

    exchange: Exchange
    deal_types: Tuple[DealType, ...] = (DealType.BLOCK, DealType.BULK)

    def __init__(self, session: requests.Session | None = None, timeout: float = 30.0) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    def prepare(self) -> bool:
        """Bootstrap cookies or sessions; ``False`` means the source is unusable."""

        return True

    @abstractmethod
    def fetch_deals(self, deal_type: DealType) -> List[Deal]:
        """Return today's disclosed deals of ``deal_type``.

        Network and HTTP errors propagate; malformed rows are dropped.
        """


__all__ = ["DealSource"]
