"""Domain models representing exchange deal data."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional


class Exchange(str, Enum):
    NSE = "NSE"
    BSE = "BSE"


class DealType(str, Enum):
    BLOCK = "BLOCK"
    BULK = "BULK"


class Action(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class HoldingType(str, Enum):
    """Holding horizon inferred from delivery and holding period."""

    STRONG_LONGTERM = "STRONG_LONGTERM"
    MODERATE_LONGTERM = "MODERATE_LONGTERM"
    SHORTTERM_POTENTIAL = "SHORTTERM_POTENTIAL"
    SPECULATION = "SPECULATION"


class SignalType(str, Enum):
    ACCUMULATION = "ACCUMULATION"
    INSTITUTIONAL = "INSTITUTIONAL"
    BREAKOUT = "BREAKOUT"
    INSIDER = "INSIDER"


class Urgency(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RecommendedAction(str, Enum):
    BUY_NOW = "BUY_NOW"
    BUY_ON_DIP = "BUY_ON_DIP"
    MONITOR = "MONITOR"
    WAIT = "WAIT"


class FetchStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"


@dataclass(slots=True, frozen=True)
class Deal:
    """Represents a single block or bulk deal disclosure."""

    deal_date: date
    exchange: Exchange
    deal_type: DealType
    symbol: str
    company_name: str
    client_name: str
    action: Action
    quantity: int
    price: Decimal

    @property
    def deal_value(self) -> Decimal:
        return self.quantity * self.price


@dataclass(slots=True, frozen=True)
class DeliveryRecord:
    """Daily delivery statistics for one symbol on one exchange."""

    symbol: str
    trade_date: date
    exchange: Exchange
    traded_quantity: int
    delivered_quantity: int
    delivery_percent: float


@dataclass(slots=True)
class Pagination:
    """Page metadata shared by every paginated response."""

    current_page: int
    page_size: int
    total_records: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def from_offset(cls, total_records: int, page_size: int, offset: int) -> "Pagination":
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        total_pages = math.ceil(total_records / page_size)
        current_page = offset // page_size + 1
        return cls(
            current_page=current_page,
            page_size=page_size,
            total_records=total_records,
            total_pages=total_pages,
            has_next=current_page < total_pages,
            has_prev=current_page > 1,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentPage": self.current_page,
            "pageSize": self.page_size,
            "totalRecords": self.total_records,
            "totalPages": self.total_pages,
            "hasNext": self.has_next,
            "hasPrev": self.has_prev,
        }


@dataclass(slots=True)
class Page:
    """A page of plain records with its pagination metadata."""

    data: List[dict[str, Any]]
    pagination: Pagination


@dataclass(slots=True)
class BuySignal:
    """A ranked buy recommendation derived from recent accumulation."""

    symbol: str
    company_name: Optional[str]
    signal_type: SignalType
    signal_strength: int
    reasons: List[str]
    primary_buyer: str
    buyer_track_record: float
    buyer_total_picks: int
    total_buys: int
    total_quantity: int
    total_value: float
    avg_buy_price: float
    latest_buy_date: date
    first_buy_date: date
    max_consecutive: int
    avg_delivery: float
    unique_buyers: int
    accumulation_days: int
    entry_price: float
    target_price: float
    stop_loss: float
    potential_return: float
    risk_reward_ratio: float
    recommended_action: RecommendedAction
    urgency: Urgency
    rank: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.rank,
            "symbol": self.symbol,
            "company_name": self.company_name,
            "signal_type": self.signal_type.value,
            "signal_strength": self.signal_strength,
            "reasons": list(self.reasons),
            "primary_buyer": self.primary_buyer,
            "buyer_track_record": self.buyer_track_record,
            "total_bought_2m": self.total_buys,
            "total_value": self.total_value,
            "unique_buyers": self.unique_buyers,
            "avg_buy_price": self.avg_buy_price,
            "latest_buy_date": self.latest_buy_date.isoformat(),
            "consecutive_buys": self.max_consecutive,
            "avg_delivery": self.avg_delivery,
            "entry_price": self.entry_price,
            "target_price": self.target_price,
            "stop_loss": self.stop_loss,
            "potential_return": self.potential_return,
            "risk_reward_ratio": self.risk_reward_ratio,
            "days_in_accumulation": self.accumulation_days,
            "recommended_action": self.recommended_action.value,
            "urgency": self.urgency.value,
        }


@dataclass(slots=True)
class SignalPage:
    signals: List[BuySignal]
    pagination: Pagination


@dataclass(slots=True)
class IngestionReport:
    """Summary of one ingestion run."""

    status: FetchStatus = FetchStatus.SUCCESS
    counts: dict[str, int] = field(default_factory=dict)
    inserted: int = 0
    delivery_records: int = 0
    unique_symbols: int = 0
    errors: int = 0
    cancelled: bool = False


__all__ = [
    "Action",
    "BuySignal",
    "Deal",
    "DealType",
    "DeliveryRecord",
    "Exchange",
    "FetchStatus",
    "HoldingType",
    "IngestionReport",
    "Page",
    "Pagination",
    "RecommendedAction",
    "SignalPage",
    "SignalType",
    "Urgency",
]
