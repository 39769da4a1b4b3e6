"""Per-client accumulation tracking.

Every BUY deal is folded into a single ``client_patterns`` row keyed by
``(client_name, symbol)``. The fold is one ``INSERT ... ON CONFLICT DO UPDATE``
statement whose update clause is expressed relative to the stored columns, so two
writers hitting the same key serialize on the row instead of overwriting each
other's read-modify-write.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import case, select, update
from sqlalchemy.engine import Connection, Engine

from .db import client_patterns, insert_deal, upsert_statement, utcnow
from .models import Action, Deal

LOGGER = logging.getLogger(__name__)


def record_buy(conn: Connection, deal: Deal) -> None:
    """Fold a BUY deal into the client's accumulation pattern."""

    if deal.action is not Action.BUY:
        raise ValueError(f"record_buy called with a {deal.action.value} deal")

    table = client_patterns
    stmt = upsert_statement(conn, table).values(
        client_name=deal.client_name,
        symbol=deal.symbol,
        total_buy_deals=1,
        total_buy_quantity=deal.quantity,
        total_buy_value=deal.deal_value,
        first_buy_date=deal.deal_date,
        last_buy_date=deal.deal_date,
        consecutive_buys=1,
        is_accumulating=True,
        last_updated=utcnow(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.client_name, table.c.symbol],
        set_={
            "total_buy_deals": table.c.total_buy_deals + 1,
            "total_buy_quantity": table.c.total_buy_quantity + stmt.excluded.total_buy_quantity,
            "total_buy_value": table.c.total_buy_value + stmt.excluded.total_buy_value,
            "last_buy_date": case(
                (table.c.last_buy_date.is_(None), stmt.excluded.last_buy_date),
                (stmt.excluded.last_buy_date > table.c.last_buy_date, stmt.excluded.last_buy_date),
                else_=table.c.last_buy_date,
            ),
            "consecutive_buys": table.c.consecutive_buys + 1,
            "is_accumulating": True,
            "last_updated": stmt.excluded.last_updated,
        },
    )
    conn.execute(stmt)
    LOGGER.debug("Recorded BUY for %s in %s", deal.client_name, deal.symbol)


def record_sell(conn: Connection, deal: Deal) -> bool:
    """Reset the consecutive-buy streak for an existing pattern.

    Only used when ``reset_consecutive_on_sell`` is enabled. Returns whether a
    pattern row existed for the pair.
    """

    if deal.action is not Action.SELL:
        raise ValueError(f"record_sell called with a {deal.action.value} deal")

    result = conn.execute(
        update(client_patterns)
        .where(
            client_patterns.c.client_name == deal.client_name,
            client_patterns.c.symbol == deal.symbol,
        )
        .values(consecutive_buys=0, last_updated=utcnow())
    )
    return result.rowcount > 0


def store_deal(conn: Connection, deal: Deal, reset_consecutive_on_sell: bool = False) -> int:
    """Insert a deal and apply its pattern side effect within the caller's transaction."""

    deal_id = insert_deal(conn, deal)
    if deal.action is Action.BUY:
        record_buy(conn, deal)
    elif reset_consecutive_on_sell:
        record_sell(conn, deal)
    return deal_id


def _pattern_dict(row: Any) -> dict[str, Any]:
    data = dict(row._mapping)
    data["total_buy_value"] = float(data["total_buy_value"])
    if data.get("avg_delivery_percent") is not None:
        data["avg_delivery_percent"] = float(data["avg_delivery_percent"])
    return data


def get_client_pattern(engine: Engine, client_name: str, symbol: str) -> dict[str, Any] | None:
    with engine.connect() as conn:
        row = conn.execute(
            select(client_patterns).where(
                client_patterns.c.client_name == client_name,
                client_patterns.c.symbol == symbol.upper(),
            )
        ).first()
    return _pattern_dict(row) if row is not None else None


def query_accumulation_patterns(engine: Engine, min_deals: int = 3, limit: int = 50) -> list[dict[str, Any]]:
    """Return accumulating client/symbol pairs with at least ``min_deals`` buys."""

    LOGGER.debug("Loading accumulation patterns with min_deals=%d", min_deals)
    table = client_patterns
    stmt = (
        select(
            table.c.client_name,
            table.c.symbol,
            table.c.total_buy_deals,
            table.c.total_buy_quantity,
            table.c.total_buy_value,
            table.c.avg_holding_days,
            table.c.avg_delivery_percent,
            table.c.consecutive_buys,
            table.c.first_buy_date,
            table.c.last_buy_date,
        )
        .where(table.c.is_accumulating.is_(True), table.c.total_buy_deals >= min_deals)
        .order_by(table.c.total_buy_value.desc(), table.c.client_name, table.c.symbol)
        .limit(limit)
    )
    with engine.connect() as conn:
        rows = conn.execute(stmt).all()
    return [_pattern_dict(row) for row in rows]


__all__ = [
    "get_client_pattern",
    "query_accumulation_patterns",
    "record_buy",
    "record_sell",
    "store_deal",
]
