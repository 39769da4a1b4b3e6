# tests/conftest.py
from datetime import date
from decimal import Decimal

import pytest

from dealflow.config import Settings
from dealflow.db import create_db_engine, ensure_schema, session, upsert_delivery_record
from dealflow.models import Action, Deal, DealType, Exchange
from dealflow.normalizer import build_delivery_record


@pytest.fixture
def engine(tmp_path):
    # A file database so concurrent connections share the same data.
    db = create_db_engine(f"sqlite:///{tmp_path / 'dealflow.db'}")
    ensure_schema(db)
    yield db
    db.dispose()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'dealflow.db'}",
        request_delay=0.0,
        record_delay=0.0,
    )


def make_deal(
    symbol="RELIANCE",
    client_name="ALPHA FUND",
    deal_date=date(2024, 3, 1),
    action=Action.BUY,
    quantity=100_000,
    price="150.00",
    exchange=Exchange.NSE,
    deal_type=DealType.BULK,
    company_name="Reliance Industries Ltd",
):
    return Deal(
        deal_date=deal_date,
        exchange=exchange,
        deal_type=deal_type,
        symbol=symbol,
        company_name=company_name,
        client_name=client_name,
        action=action,
        quantity=quantity,
        price=Decimal(price),
    )


def add_delivery(engine, symbol, trade_date, percent, exchange=Exchange.NSE):
    traded = 10_000
    delivered = int(traded * percent / 100)
    with session(engine) as conn:
        upsert_delivery_record(conn, build_delivery_record(symbol, trade_date, exchange, traded, delivered))
