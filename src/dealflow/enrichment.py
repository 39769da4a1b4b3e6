"""Read-time enrichment of deals with delivery and accumulation data."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.sql import Select

from .db import client_patterns, deals, delivery_data
from .models import DealType, Exchange, HoldingType, Page, Pagination

LOGGER = logging.getLogger(__name__)

LARGE_DEAL_VALUE = 50_000_000
HOLDING_DAYS_CAP = 100


def enriched_deals_select() -> Select:
    """Deals left-joined with delivery and client pattern data.

    Missing delivery or pattern rows still yield a deal row; the derived columns
    treat the absent values as zero.
    """

    delivery = func.coalesce(delivery_data.c.delivery_percent, 0)
    holding_days = func.coalesce(client_patterns.c.avg_holding_days, 0)

    holding_type = case(
        (and_(delivery >= 90, holding_days >= 30), HoldingType.STRONG_LONGTERM.value),
        (and_(delivery >= 80, holding_days >= 15), HoldingType.MODERATE_LONGTERM.value),
        (delivery >= 70, HoldingType.SHORTTERM_POTENTIAL.value),
        else_=HoldingType.SPECULATION.value,
    )
    confidence_score = (
        delivery * 0.4
        + case((holding_days > HOLDING_DAYS_CAP, HOLDING_DAYS_CAP), else_=holding_days) * 0.3
        + case((deals.c.deal_value > LARGE_DEAL_VALUE, 20), else_=10)
        + case((client_patterns.c.is_accumulating.is_(True), 10), else_=0)
    )

    joined = deals.outerjoin(
        delivery_data,
        and_(
            deals.c.symbol == delivery_data.c.symbol,
            deals.c.deal_date == delivery_data.c.trade_date,
            deals.c.exchange == delivery_data.c.exchange,
        ),
    ).outerjoin(
        client_patterns,
        and_(
            deals.c.client_name == client_patterns.c.client_name,
            deals.c.symbol == client_patterns.c.symbol,
        ),
    )

    return select(
        deals.c.id,
        deals.c.deal_date,
        deals.c.exchange,
        deals.c.deal_type,
        deals.c.symbol,
        deals.c.company_name,
        deals.c.client_name,
        deals.c.action,
        deals.c.quantity,
        deals.c.price,
        deals.c.deal_value,
        delivery.label("delivery_percent"),
        delivery_data.c.traded_quantity,
        delivery_data.c.delivered_quantity,
        client_patterns.c.total_buy_deals,
        client_patterns.c.avg_holding_days,
        func.coalesce(client_patterns.c.is_accumulating, False).label("is_accumulating"),
        func.coalesce(client_patterns.c.consecutive_buys, 0).label("consecutive_buys"),
        holding_type.label("holding_type"),
        confidence_score.label("confidence_score"),
    ).select_from(joined)


def enriched_deals_subquery():
    return enriched_deals_select().subquery("enriched_deals")


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value) if isinstance(value, (Decimal, int, float)) else float(str(value))


def enriched_row_to_dict(row: Any) -> dict[str, Any]:
    data = dict(row._mapping)
    for key in ("price", "deal_value", "delivery_percent", "confidence_score"):
        data[key] = _as_float(data.get(key))
    data["confidence_score"] = round(data["confidence_score"] or 0.0, 2)
    data["delivery_percent"] = data["delivery_percent"] or 0.0
    data["is_accumulating"] = bool(data.get("is_accumulating"))
    data["holding_type"] = HoldingType(data["holding_type"]).value
    return data


@dataclass(slots=True)
class DealFilters:
    """Optional filters for the deals listing. ``None`` or ``"ALL"`` disables a filter."""

    exchange: Optional[str] = None
    deal_type: Optional[str] = None
    action: Optional[str] = None
    min_delivery: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "exchange": self.exchange or "ALL",
            "dealType": self.deal_type or "ALL",
            "minDelivery": self.min_delivery or 0,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "search": self.search,
        }


def _is_set(value: Optional[str]) -> bool:
    return bool(value) and value.upper() != "ALL"


def _filter_clauses(enriched, filters: DealFilters) -> list:
    clauses = []
    if _is_set(filters.exchange):
        clauses.append(enriched.c.exchange == Exchange(filters.exchange.upper()).value)
    if _is_set(filters.deal_type):
        clauses.append(enriched.c.deal_type == DealType(filters.deal_type.upper()).value)
    if _is_set(filters.action):
        clauses.append(enriched.c.action == filters.action.upper())
    if filters.min_delivery:
        clauses.append(enriched.c.delivery_percent >= filters.min_delivery)
    if filters.start_date:
        clauses.append(enriched.c.deal_date >= filters.start_date)
    if filters.end_date:
        clauses.append(enriched.c.deal_date <= filters.end_date)
    if filters.search and filters.search.strip():
        pattern = f"%{filters.search.strip()}%"
        clauses.append(
            or_(
                enriched.c.symbol.ilike(pattern),
                enriched.c.company_name.ilike(pattern),
                enriched.c.client_name.ilike(pattern),
            )
        )
    return clauses


def query_enriched_deals(
    engine: Engine,
    filters: DealFilters | None = None,
    page_size: int = 50,
    offset: int = 0,
) -> Page:
    """Return one page of enriched deals, newest and most confident first."""

    filters = filters or DealFilters()
    enriched = enriched_deals_subquery()
    clauses = _filter_clauses(enriched, filters)

    page_stmt = (
        select(enriched, func.count().over().label("total_records"))
        .where(*clauses)
        .order_by(enriched.c.deal_date.desc(), enriched.c.confidence_score.desc(), enriched.c.id.desc())
        .limit(page_size)
        .offset(offset)
    )
    LOGGER.debug("Loading enriched deals with %s", filters)
    with engine.connect() as conn:
        rows = conn.execute(page_stmt).all()
        if rows:
            total = rows[0].total_records
        else:
            # Past the last page the window count has no row to ride on.
            total = conn.execute(select(func.count()).select_from(enriched).where(*clauses)).scalar_one()
    data = []
    for row in rows:
        item = enriched_row_to_dict(row)
        item.pop("total_records")
        data.append(item)
    return Page(
        data=data,
        pagination=Pagination.from_offset(total, page_size, offset),
    )


def query_deals_by_symbol(engine: Engine, symbol: str, limit: int = 50) -> list[dict[str, Any]]:
    enriched = enriched_deals_subquery()
    stmt = (
        select(enriched)
        .where(enriched.c.symbol == symbol.strip().upper())
        .order_by(enriched.c.deal_date.desc(), enriched.c.id.desc())
        .limit(limit)
    )
    with engine.connect() as conn:
        rows = conn.execute(stmt).all()
    return [enriched_row_to_dict(row) for row in rows]


__all__ = [
    "DealFilters",
    "enriched_deals_select",
    "enriched_deals_subquery",
    "enriched_row_to_dict",
    "query_deals_by_symbol",
    "query_enriched_deals",
]
