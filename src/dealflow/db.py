"""Tables, sessions and write helpers for deal storage."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterator, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    insert,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine, make_url

from .models import Deal, DeliveryRecord, Exchange, FetchStatus


metadata = MetaData()

LOGGER = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


deals = Table(
    "deals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("deal_date", Date, nullable=False),
    Column("exchange", String(10), nullable=False),
    Column("deal_type", String(10), nullable=False),
    Column("symbol", String(50), nullable=False),
    Column("company_name", String(255), nullable=True),
    Column("client_name", String(255), nullable=False),
    Column("action", String(10), nullable=False),
    Column("quantity", BigInteger, nullable=False),
    Column("price", Numeric(12, 2), nullable=False),
    Column("deal_value", Numeric(18, 2), nullable=False),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    CheckConstraint("exchange IN ('NSE', 'BSE')", name="ck_deals_exchange"),
    CheckConstraint("deal_type IN ('BLOCK', 'BULK')", name="ck_deals_deal_type"),
    CheckConstraint("action IN ('BUY', 'SELL')", name="ck_deals_action"),
    CheckConstraint("quantity > 0", name="ck_deals_quantity"),
    CheckConstraint("price > 0", name="ck_deals_price"),
    Index("idx_deals_date", "deal_date"),
    Index("idx_deals_symbol", "symbol"),
    Index("idx_deals_client", "client_name"),
)

delivery_data = Table(
    "delivery_data",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("symbol", String(50), nullable=False),
    Column("trade_date", Date, nullable=False),
    Column("exchange", String(10), nullable=False),
    Column("traded_quantity", BigInteger, nullable=False),
    Column("delivered_quantity", BigInteger, nullable=False),
    Column("delivery_percent", Numeric(5, 2), nullable=False),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    UniqueConstraint("symbol", "trade_date", "exchange", name="uq_delivery_symbol_date_exchange"),
)

client_patterns = Table(
    "client_patterns",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("client_name", String(255), nullable=False),
    Column("symbol", String(50), nullable=False),
    Column("total_buy_deals", Integer, nullable=False, default=0),
    Column("total_buy_quantity", BigInteger, nullable=False, default=0),
    Column("total_buy_value", Numeric(18, 2), nullable=False, default=0),
    Column("first_buy_date", Date, nullable=True),
    Column("last_buy_date", Date, nullable=True),
    Column("avg_holding_days", Integer, nullable=True),
    Column("is_accumulating", Boolean, nullable=False, default=False),
    Column("consecutive_buys", Integer, nullable=False, default=0),
    Column("avg_delivery_percent", Numeric(5, 2), nullable=True),
    Column("last_updated", DateTime, nullable=False, default=utcnow),
    UniqueConstraint("client_name", "symbol", name="uq_client_patterns_client_symbol"),
)

data_fetch_log = Table(
    "data_fetch_log",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("fetch_date", Date, nullable=False),
    Column("data_type", String(50), nullable=False),
    Column("exchange", String(10), nullable=False),
    Column("status", String(20), nullable=False),
    Column("records_fetched", Integer, nullable=False, default=0),
    Column("error_message", Text, nullable=True),
    Column("fetch_timestamp", DateTime, nullable=False, default=utcnow),
    UniqueConstraint("fetch_date", "data_type", "exchange", name="uq_fetch_log"),
)

ingest_schedule = Table(
    "ingest_schedule",
    metadata,
    Column("id", Integer, primary_key=True, default=1),
    Column("hour", Integer, nullable=False),
    Column("minute", Integer, nullable=False),
    Column("day_of_week", String(32), nullable=False, default="mon-fri"),
    Column("timezone", String(64), nullable=False, default="Asia/Kolkata"),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, nullable=False, default=utcnow, onupdate=utcnow),
)


# Daily after market close, IST.
DEFAULT_SCHEDULE = {"hour": 18, "minute": 0, "day_of_week": "mon-fri", "timezone": "Asia/Kolkata"}


def create_db_engine(database_url: str) -> Engine:
    """Build the engine with pre-ping enabled."""

    LOGGER.debug("Creating engine for %s", make_url(database_url).render_as_string(hide_password=True))
    connect_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        # Concurrent writers wait on the file lock instead of failing fast.
        connect_args = {"timeout": 30, "check_same_thread": False}
    return create_engine(database_url, future=True, pool_pre_ping=True, connect_args=connect_args)


@contextmanager
def session(engine: Engine) -> Iterator[Connection]:
    """Provide a transactional scope around a series of operations."""

    with engine.begin() as conn:
        yield conn


def ensure_schema(engine: Engine) -> None:
    """Create any missing tables; existing ones are left untouched."""

    LOGGER.debug("Creating missing tables")
    metadata.create_all(engine)


def check_connection(engine: Engine) -> None:
    """Round-trip a trivial statement; raises when the database is unreachable."""

    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def upsert_statement(conn: Connection, table: Table):
    """Return a dialect specific ``INSERT`` supporting ``ON CONFLICT``."""

    if conn.dialect.name == "sqlite":
        return sqlite_insert(table)
    return pg_insert(table)


def insert_deal(conn: Connection, deal: Deal) -> int:
    """Append a deal and return its id. Deals are never updated."""

    stmt = insert(deals).values(
        deal_date=deal.deal_date,
        exchange=deal.exchange.value,
        deal_type=deal.deal_type.value,
        symbol=deal.symbol,
        company_name=deal.company_name or None,
        client_name=deal.client_name,
        action=deal.action.value,
        quantity=deal.quantity,
        price=deal.price,
        deal_value=deal.deal_value,
    )
    result = conn.execute(stmt)
    return int(result.inserted_primary_key[0])


def upsert_delivery_record(conn: Connection, record: DeliveryRecord) -> None:
    """Insert or overwrite the delivery record for (symbol, date, exchange)."""

    stmt = upsert_statement(conn, delivery_data).values(
        symbol=record.symbol,
        trade_date=record.trade_date,
        exchange=record.exchange.value,
        traded_quantity=record.traded_quantity,
        delivered_quantity=record.delivered_quantity,
        delivery_percent=record.delivery_percent,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[delivery_data.c.symbol, delivery_data.c.trade_date, delivery_data.c.exchange],
        set_={
            "traded_quantity": stmt.excluded.traded_quantity,
            "delivered_quantity": stmt.excluded.delivered_quantity,
            "delivery_percent": stmt.excluded.delivery_percent,
            "updated_at": utcnow(),
        },
    )
    conn.execute(stmt)


def get_delivery_record(
    engine: Engine, symbol: str, trade_date: date, exchange: Exchange | str = Exchange.NSE
) -> Optional[dict[str, Any]]:
    with engine.connect() as conn:
        row = conn.execute(
            select(
                delivery_data.c.symbol,
                delivery_data.c.trade_date,
                delivery_data.c.exchange,
                delivery_data.c.traded_quantity,
                delivery_data.c.delivered_quantity,
                delivery_data.c.delivery_percent,
            ).where(
                delivery_data.c.symbol == symbol.strip().upper(),
                delivery_data.c.trade_date == trade_date,
                delivery_data.c.exchange == Exchange(exchange).value,
            )
        ).first()
    if row is None:
        return None
    data = dict(row._mapping)
    data["delivery_percent"] = float(data["delivery_percent"])
    return data


def log_fetch(
    engine: Engine,
    data_type: str,
    exchange: str,
    status: FetchStatus,
    records_fetched: int,
    error_message: str | None = None,
    fetch_date: date | None = None,
) -> None:
    """Record the outcome of one fetch; failures here are logged, never raised."""

    try:
        with session(engine) as conn:
            stmt = upsert_statement(conn, data_fetch_log).values(
                fetch_date=fetch_date or date.today(),
                data_type=data_type,
                exchange=exchange,
                status=status.value,
                records_fetched=records_fetched,
                error_message=error_message,
                fetch_timestamp=utcnow(),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[
                    data_fetch_log.c.fetch_date,
                    data_fetch_log.c.data_type,
                    data_fetch_log.c.exchange,
                ],
                set_={
                    "status": stmt.excluded.status,
                    "records_fetched": stmt.excluded.records_fetched,
                    "error_message": stmt.excluded.error_message,
                    "fetch_timestamp": stmt.excluded.fetch_timestamp,
                },
            )
            conn.execute(stmt)
    except Exception:  # pragma: no cover - defensive logging
        LOGGER.exception("Failed to record fetch log for %s/%s", data_type, exchange)


def get_fetch_logs(engine: Engine, days: int = 7, as_of: date | None = None, limit: int = 50) -> list[dict[str, Any]]:
    cutoff = (as_of or date.today()) - timedelta(days=days)
    with engine.connect() as conn:
        rows = conn.execute(
            select(data_fetch_log)
            .where(data_fetch_log.c.fetch_date >= cutoff)
            .order_by(data_fetch_log.c.fetch_timestamp.desc(), data_fetch_log.c.id.desc())
            .limit(limit)
        ).all()
    return [dict(row._mapping) for row in rows]


def _schedule_dict(data: Any) -> dict[str, int | str]:
    return {
        "hour": data["hour"],
        "minute": data["minute"],
        "day_of_week": data["day_of_week"],
        "timezone": data["timezone"],
    }


def get_or_create_schedule(engine: Engine) -> dict[str, int | str]:
    """Return the stored cron schedule, inserting the 18:00 mon-fri default on first use."""

    LOGGER.debug("Loading ingestion schedule")
    with session(engine) as conn:
        row = conn.execute(select(ingest_schedule)).first()
        if row is not None:
            return _schedule_dict(row._mapping)

        stmt = upsert_statement(conn, ingest_schedule).values(id=1, **DEFAULT_SCHEDULE)
        stmt = stmt.on_conflict_do_nothing()
        conn.execute(stmt)
        LOGGER.info(
            "Seeded default schedule %02d:%02d %s %s",
            DEFAULT_SCHEDULE["hour"],
            DEFAULT_SCHEDULE["minute"],
            DEFAULT_SCHEDULE["day_of_week"],
            DEFAULT_SCHEDULE["timezone"],
        )
        return dict(DEFAULT_SCHEDULE)


def update_schedule(
    engine: Engine,
    hour: int,
    minute: int,
    timezone_name: str = DEFAULT_SCHEDULE["timezone"],
    day_of_week: str = DEFAULT_SCHEDULE["day_of_week"],
) -> dict[str, int | str]:
    """Upsert the single schedule row."""

    LOGGER.debug("Persisting schedule change to %02d:%02d %s %s", hour, minute, day_of_week, timezone_name)
    with session(engine) as conn:
        stmt = upsert_statement(conn, ingest_schedule).values(
            id=1,
            hour=hour,
            minute=minute,
            day_of_week=day_of_week,
            timezone=timezone_name,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ingest_schedule.c.id],
            set_={
                "hour": stmt.excluded.hour,
                "minute": stmt.excluded.minute,
                "day_of_week": stmt.excluded.day_of_week,
                "timezone": stmt.excluded.timezone,
                "updated_at": utcnow(),
            },
        )
        conn.execute(stmt)

    return {"hour": hour, "minute": minute, "day_of_week": day_of_week, "timezone": timezone_name}


__all__ = [
    "DEFAULT_SCHEDULE",
    "check_connection",
    "client_patterns",
    "create_db_engine",
    "data_fetch_log",
    "deals",
    "delivery_data",
    "ensure_schema",
    "get_delivery_record",
    "get_fetch_logs",
    "get_or_create_schedule",
    "ingest_schedule",
    "insert_deal",
    "log_fetch",
    "metadata",
    "session",
    "update_schedule",
    "upsert_delivery_record",
    "upsert_statement",
    "utcnow",
]
