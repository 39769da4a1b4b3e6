"""Dashboard aggregates over recent enriched deals."""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.engine import Engine

from .enrichment import enriched_deals_subquery
from .models import Action, HoldingType

LOGGER = logging.getLogger(__name__)

STATS_WINDOW_DAYS = 30


def _round(value: Any, digits: int = 2) -> float:
    return round(float(value), digits) if value is not None else 0.0


def get_stats(engine: Engine, as_of: date | None = None) -> dict[str, Any]:
    """Headline counts for the last 30 days."""

    as_of = as_of or date.today()
    enriched = enriched_deals_subquery()
    stmt = select(
        func.count().label("total_deals"),
        func.count(case((enriched.c.deal_date == as_of, 1))).label("today_deals"),
        func.count(case((enriched.c.holding_type == HoldingType.STRONG_LONGTERM.value, 1))).label(
            "strong_longterm"
        ),
        func.count(case((enriched.c.is_accumulating.is_(True), 1))).label("accumulation_patterns"),
        func.avg(enriched.c.delivery_percent).label("avg_delivery_percent"),
    ).where(enriched.c.deal_date >= as_of - timedelta(days=STATS_WINDOW_DAYS))
    with engine.connect() as conn:
        row = conn.execute(stmt).one()
    data = dict(row._mapping)
    data["avg_delivery_percent"] = _round(data["avg_delivery_percent"])
    return data


def get_top_clients(engine: Engine, limit: int = 10, as_of: date | None = None) -> list[dict[str, Any]]:
    """Clients ranked by total BUY value over the last 30 days."""

    as_of = as_of or date.today()
    enriched = enriched_deals_subquery()
    total_value = func.sum(enriched.c.deal_value).label("total_value")
    stmt = (
        select(
            enriched.c.client_name,
            func.count().label("total_deals"),
            total_value,
            func.avg(enriched.c.delivery_percent).label("avg_delivery"),
        )
        .where(
            enriched.c.deal_date >= as_of - timedelta(days=STATS_WINDOW_DAYS),
            enriched.c.action == Action.BUY.value,
        )
        .group_by(enriched.c.client_name)
        .order_by(total_value.desc(), enriched.c.client_name)
        .limit(limit)
    )
    with engine.connect() as conn:
        rows = conn.execute(stmt).all()
    return [
        {
            "client_name": row.client_name,
            "total_deals": row.total_deals,
            "total_value": _round(row.total_value),
            "avg_delivery": _round(row.avg_delivery),
        }
        for row in rows
    ]


def get_active_symbols(engine: Engine, limit: int = 10, as_of: date | None = None) -> list[dict[str, Any]]:
    """Symbols ranked by deal count over the last 30 days."""

    as_of = as_of or date.today()
    enriched = enriched_deals_subquery()
    deal_count = func.count().label("deal_count")
    stmt = (
        select(
            enriched.c.symbol,
            func.max(enriched.c.company_name).label("company_name"),
            deal_count,
            func.sum(enriched.c.deal_value).label("total_value"),
            func.avg(enriched.c.delivery_percent).label("avg_delivery"),
        )
        .where(enriched.c.deal_date >= as_of - timedelta(days=STATS_WINDOW_DAYS))
        .group_by(enriched.c.symbol)
        .order_by(deal_count.desc(), enriched.c.symbol)
        .limit(limit)
    )
    with engine.connect() as conn:
        rows = conn.execute(stmt).all()
    return [
        {
            "symbol": row.symbol,
            "company_name": row.company_name,
            "deal_count": row.deal_count,
            "total_value": _round(row.total_value),
            "avg_delivery": _round(row.avg_delivery),
        }
        for row in rows
    ]


__all__ = ["get_active_symbols", "get_stats", "get_top_clients"]
