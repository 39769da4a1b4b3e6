"""Source factory for exchange deal feeds."""
from __future__ import annotations

import logging
from typing import List

import requests

from .base import DealSource
from .bse import BseSource
from .nse import NseSource

LOGGER = logging.getLogger(__name__)


def create_sources(timeout: float = 30.0) -> List[DealSource]:
    """Instantiate every exchange source, each with its own HTTP session."""

    sources: List[DealSource] = [
        NseSource(requests.Session(), timeout=timeout),
        BseSource(requests.Session(), timeout=timeout),
    ]
    LOGGER.debug("Configured sources: %s", ", ".join(type(source).__name__ for source in sources))
    return sources


__all__ = ["create_sources", "BseSource", "DealSource", "NseSource"]
