"""Buy signal derivation from recent accumulation.

Signals are recomputed on every call from a single read of the enriched deals in
the trailing track-record window. Everything after that read is a pure function of
the rows and the ``as_of`` date, so identical data always yields identical output.

Several outputs are fixed constants rather than derived values: the buyer track
record is 70% for any buyer active in the last 180 days, and the potential return
(25%) and risk/reward ratio (3.12) do not follow from the entry, target and stop
levels. These are kept as-is because the dashboard consumes them verbatim.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.engine import Engine

from .enrichment import enriched_deals_subquery
from .models import (
    Action,
    BuySignal,
    Pagination,
    RecommendedAction,
    SignalPage,
    SignalType,
    Urgency,
)

LOGGER = logging.getLogger(__name__)

SIGNAL_WINDOW_DAYS = 60
TRACK_RECORD_WINDOW_DAYS = 180

MIN_DEAL_VALUE = 10_000_000
MIN_DEAL_DELIVERY = 75.0
MIN_GROUP_BUYS = 3
MIN_GROUP_DELIVERY = 80.0
LARGE_POSITION_VALUE = 100_000_000
CRORE = 10_000_000

PROVEN_BUYER_SUCCESS_RATE = 70.0
UNKNOWN_BUYER_SUCCESS_RATE = 50.0

TARGET_MULTIPLIER = 1.25
STOP_LOSS_MULTIPLIER = 0.92
POTENTIAL_RETURN = 25.0
RISK_REWARD_RATIO = 3.12

MAX_SIGNAL_STRENGTH = 100
DEFAULT_MIN_STRENGTH = 70
DEFAULT_PAGE_SIZE = 20


@dataclass(slots=True, frozen=True)
class WindowDeal:
    """The slice of an enriched deal the signal engine needs."""

    deal_date: date
    symbol: str
    company_name: Optional[str]
    client_name: str
    action: str
    quantity: int
    price: float
    deal_value: float
    delivery_percent: float
    consecutive_buys: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "WindowDeal":
        return cls(
            deal_date=row["deal_date"],
            symbol=row["symbol"],
            company_name=row.get("company_name"),
            client_name=row["client_name"],
            action=row["action"],
            quantity=int(row["quantity"]),
            price=float(row["price"]),
            deal_value=float(row["deal_value"]),
            delivery_percent=float(row.get("delivery_percent") or 0),
            consecutive_buys=int(row.get("consecutive_buys") or 0),
        )


@dataclass(slots=True)
class SymbolAggregate:
    symbol: str
    company_name: Optional[str]
    total_buys: int
    total_quantity: int
    total_value: float
    avg_buy_price: float
    latest_buy_date: date
    first_buy_date: date
    avg_delivery: float
    unique_buyers: int
    max_consecutive: int
    primary_buyer: str

    @property
    def accumulation_days(self) -> int:
        return (self.latest_buy_date - self.first_buy_date).days


def is_eligible(deal: WindowDeal, as_of: date) -> bool:
    return (
        deal.action == Action.BUY.value
        and deal.deal_date >= as_of - timedelta(days=SIGNAL_WINDOW_DAYS)
        and deal.deal_value >= MIN_DEAL_VALUE
        and deal.delivery_percent >= MIN_DEAL_DELIVERY
    )


def pick_primary_buyer(group: Iterable[WindowDeal]) -> str:
    """Client behind the single largest deal; equal values go to the smallest name."""

    best = min(group, key=lambda deal: (-deal.deal_value, deal.client_name))
    return best.client_name


def aggregate_symbol(symbol: str, group: List[WindowDeal]) -> SymbolAggregate:
    total_buys = len(group)
    company_names = [deal.company_name for deal in group if deal.company_name]
    return SymbolAggregate(
        symbol=symbol,
        company_name=max(company_names) if company_names else None,
        total_buys=total_buys,
        total_quantity=sum(deal.quantity for deal in group),
        total_value=sum(deal.deal_value for deal in group),
        avg_buy_price=sum(deal.price for deal in group) / total_buys,
        latest_buy_date=max(deal.deal_date for deal in group),
        first_buy_date=min(deal.deal_date for deal in group),
        avg_delivery=sum(deal.delivery_percent for deal in group) / total_buys,
        unique_buyers=len({deal.client_name for deal in group}),
        max_consecutive=max(deal.consecutive_buys for deal in group),
        primary_buyer=pick_primary_buyer(group),
    )


def qualifies(aggregate: SymbolAggregate) -> bool:
    return aggregate.total_buys >= MIN_GROUP_BUYS and aggregate.avg_delivery >= MIN_GROUP_DELIVERY


def signal_strength(aggregate: SymbolAggregate) -> int:
    score = (
        8 * min(aggregate.total_buys, 10)
        + 0.15 * min(aggregate.avg_delivery, 100.0)
        + (15 if aggregate.unique_buyers >= 3 else 0)
        + 5 * min(aggregate.max_consecutive, 5)
        + (10 if aggregate.total_value >= LARGE_POSITION_VALUE else 5)
    )
    # Round before truncating: 11.999999 counts as 12.
    return min(int(round(score, 6)), MAX_SIGNAL_STRENGTH)


def classify_signal_type(aggregate: SymbolAggregate) -> SignalType:
    if aggregate.total_buys >= 5 and aggregate.max_consecutive >= 3:
        return SignalType.ACCUMULATION
    if aggregate.unique_buyers >= 3 and aggregate.total_value >= LARGE_POSITION_VALUE:
        return SignalType.INSTITUTIONAL
    if aggregate.avg_delivery >= 95:
        return SignalType.BREAKOUT
    return SignalType.INSIDER


def _within(day: date, as_of: date, days: int) -> bool:
    return day >= as_of - timedelta(days=days)


def classify_urgency(aggregate: SymbolAggregate, as_of: date) -> Urgency:
    if _within(aggregate.latest_buy_date, as_of, 3) and aggregate.total_buys >= 4:
        return Urgency.HIGH
    if _within(aggregate.latest_buy_date, as_of, 7):
        return Urgency.MEDIUM
    return Urgency.LOW


def recommend_action(aggregate: SymbolAggregate, as_of: date) -> RecommendedAction:
    if _within(aggregate.latest_buy_date, as_of, 2) and aggregate.avg_delivery >= 90:
        return RecommendedAction.BUY_NOW
    if aggregate.total_buys >= 5:
        return RecommendedAction.BUY_ON_DIP
    if aggregate.accumulation_days <= 14:
        return RecommendedAction.MONITOR
    return RecommendedAction.WAIT


def _half_up(value: float, places: str) -> Decimal:
    return Decimal(str(value)).quantize(Decimal(places), rounding=ROUND_HALF_UP)


def build_reasons(aggregate: SymbolAggregate, buyer_track_record: float) -> List[str]:
    reasons: List[str] = []
    if aggregate.total_buys >= 5:
        reasons.append(
            f"Strong accumulation: {aggregate.total_buys} buys in {aggregate.accumulation_days} days"
        )
    if aggregate.avg_delivery >= 90:
        reasons.append(f"Very high delivery: {_half_up(aggregate.avg_delivery, '0.1')}%")
    if aggregate.unique_buyers >= 3:
        reasons.append(f"Multiple institutions buying: {aggregate.unique_buyers} buyers")
    if aggregate.max_consecutive >= 3:
        reasons.append(f"Consecutive buying pattern: {aggregate.max_consecutive} times")
    if aggregate.total_value >= LARGE_POSITION_VALUE:
        reasons.append(f"Large institutional position: ₹{_half_up(aggregate.total_value / CRORE, '0.01')}Cr")
    if buyer_track_record >= PROVEN_BUYER_SUCCESS_RATE:
        reasons.append(f"Proven buyer: {buyer_track_record:.0f}% success rate")
    return reasons


def buyer_picks(deals: Iterable[WindowDeal], as_of: date) -> dict[str, int]:
    """Distinct symbols bought per client over the track-record window."""

    cutoff = as_of - timedelta(days=TRACK_RECORD_WINDOW_DAYS)
    picks: dict[str, set[str]] = defaultdict(set)
    for deal in deals:
        if deal.action == Action.BUY.value and deal.deal_date >= cutoff:
            picks[deal.client_name].add(deal.symbol)
    return {client: len(symbols) for client, symbols in picks.items()}


def build_signal(aggregate: SymbolAggregate, picks: Mapping[str, int], as_of: date) -> BuySignal:
    total_picks = picks.get(aggregate.primary_buyer, 0)
    # Flat success rate for any buyer with recent history; not derived from outcomes.
    track_record = PROVEN_BUYER_SUCCESS_RATE if total_picks else UNKNOWN_BUYER_SUCCESS_RATE
    entry = aggregate.avg_buy_price
    return BuySignal(
        symbol=aggregate.symbol,
        company_name=aggregate.company_name,
        signal_type=classify_signal_type(aggregate),
        signal_strength=signal_strength(aggregate),
        reasons=build_reasons(aggregate, track_record),
        primary_buyer=aggregate.primary_buyer,
        buyer_track_record=track_record,
        buyer_total_picks=total_picks,
        total_buys=aggregate.total_buys,
        total_quantity=aggregate.total_quantity,
        total_value=aggregate.total_value,
        avg_buy_price=round(entry, 2),
        latest_buy_date=aggregate.latest_buy_date,
        first_buy_date=aggregate.first_buy_date,
        max_consecutive=aggregate.max_consecutive,
        avg_delivery=round(aggregate.avg_delivery, 2),
        unique_buyers=aggregate.unique_buyers,
        accumulation_days=aggregate.accumulation_days,
        entry_price=round(entry, 2),
        target_price=round(entry * TARGET_MULTIPLIER, 2),
        stop_loss=round(entry * STOP_LOSS_MULTIPLIER, 2),
        potential_return=POTENTIAL_RETURN,
        risk_reward_ratio=RISK_REWARD_RATIO,
        recommended_action=recommend_action(aggregate, as_of),
        urgency=classify_urgency(aggregate, as_of),
    )


def derive_buy_signals(
    deals: Iterable[WindowDeal], as_of: date, min_strength: int = DEFAULT_MIN_STRENGTH
) -> List[BuySignal]:
    """Rank every qualifying symbol; the returned list is complete, not paginated."""

    deals = list(deals)
    picks = buyer_picks(deals, as_of)

    grouped: dict[str, List[WindowDeal]] = defaultdict(list)
    for deal in deals:
        if is_eligible(deal, as_of):
            grouped[deal.symbol].append(deal)

    signals: List[BuySignal] = []
    for symbol, group in grouped.items():
        aggregate = aggregate_symbol(symbol, group)
        if not qualifies(aggregate):
            continue
        signal = build_signal(aggregate, picks, as_of)
        if signal.signal_strength >= min_strength:
            signals.append(signal)

    signals.sort(key=lambda s: (-s.signal_strength, -s.total_value, s.symbol))
    for rank, signal in enumerate(signals, start=1):
        signal.rank = rank
    return signals


def load_window_deals(engine: Engine, as_of: date) -> List[WindowDeal]:
    """Read all BUY deals in the track-record window with one query."""

    enriched = enriched_deals_subquery()
    cutoff = as_of - timedelta(days=TRACK_RECORD_WINDOW_DAYS)
    stmt = (
        select(
            enriched.c.deal_date,
            enriched.c.symbol,
            enriched.c.company_name,
            enriched.c.client_name,
            enriched.c.action,
            enriched.c.quantity,
            enriched.c.price,
            enriched.c.deal_value,
            enriched.c.delivery_percent,
            enriched.c.consecutive_buys,
        )
        .where(
            enriched.c.action == Action.BUY.value,
            enriched.c.deal_date >= cutoff,
        )
        .order_by(enriched.c.deal_date, enriched.c.id)
    )
    with engine.connect() as conn:
        rows = conn.execute(stmt).all()
    return [WindowDeal.from_row(row._mapping) for row in rows]


def generate_buy_signals(
    engine: Engine,
    min_strength: int = DEFAULT_MIN_STRENGTH,
    page_size: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    as_of: date | None = None,
) -> SignalPage:
    """Return one page of ranked buy signals with the total count.

    Database errors propagate unchanged; a partial signal list is never returned.
    """

    as_of = as_of or date.today()
    window = load_window_deals(engine, as_of)
    signals = derive_buy_signals(window, as_of, min_strength)
    LOGGER.info(
        "Derived %d buy signals from %d deals (min_strength=%d, as_of=%s)",
        len(signals),
        len(window),
        min_strength,
        as_of,
    )
    return SignalPage(
        signals=signals[offset : offset + page_size],
        pagination=Pagination.from_offset(len(signals), page_size, offset),
    )


__all__ = [
    "SymbolAggregate",
    "WindowDeal",
    "aggregate_symbol",
    "build_reasons",
    "classify_signal_type",
    "classify_urgency",
    "derive_buy_signals",
    "generate_buy_signals",
    "load_window_deals",
    "pick_primary_buyer",
    "recommend_action",
    "signal_strength",
]
