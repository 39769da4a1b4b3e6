# tests/test_analytics.py
from datetime import date, timedelta

import pytest

from dealflow.analytics import get_active_symbols, get_stats, get_top_clients
from dealflow.db import session
from dealflow.models import Action
from dealflow.patterns import store_deal

from conftest import add_delivery, make_deal

TODAY = date(2024, 3, 31)


@pytest.fixture
def seeded(engine):
    rows = [
        make_deal(symbol="TCS", client_name="ALPHA FUND", deal_date=TODAY, price="500.00"),
        make_deal(symbol="TCS", client_name="ALPHA FUND", deal_date=TODAY - timedelta(days=1), price="500.00"),
        make_deal(symbol="TCS", client_name="BETA CAPITAL", deal_date=TODAY - timedelta(days=2), price="100.00"),
        make_deal(symbol="INFY", client_name="BETA CAPITAL", deal_date=TODAY - timedelta(days=3), price="100.00"),
        make_deal(symbol="INFY", client_name="GAMMA", deal_date=TODAY, action=Action.SELL, price="900.00"),
        make_deal(symbol="OLD", client_name="GAMMA", deal_date=TODAY - timedelta(days=45), price="900.00"),
    ]
    with session(engine) as conn:
        for deal in rows:
            store_deal(conn, deal)
    add_delivery(engine, "TCS", TODAY, 95)
    add_delivery(engine, "TCS", TODAY - timedelta(days=1), 85)
    return engine


def test_stats(seeded):
    stats = get_stats(seeded, as_of=TODAY)

    assert stats["total_deals"] == 5
    assert stats["today_deals"] == 2
    assert stats["strong_longterm"] == 0
    assert stats["accumulation_patterns"] == 4
    # (95 + 85 + 0 + 0 + 0) / 5
    assert stats["avg_delivery_percent"] == 36.0


def test_top_clients_count_only_buys(seeded):
    clients = get_top_clients(seeded, limit=10, as_of=TODAY)

    assert [c["client_name"] for c in clients] == ["ALPHA FUND", "BETA CAPITAL"]
    assert clients[0]["total_value"] == 100_000_000.0
    assert clients[0]["total_deals"] == 2
    assert clients[0]["avg_delivery"] == 90.0


def test_active_symbols(seeded):
    symbols = get_active_symbols(seeded, limit=1, as_of=TODAY)

    assert symbols == [
        {
            "symbol": "TCS",
            "company_name": "Reliance Industries Ltd",
            "deal_count": 3,
            "total_value": 110_000_000.0,
            "avg_delivery": 60.0,
        }
    ]


def test_stats_on_empty_database(engine):
    stats = get_stats(engine, as_of=TODAY)

    assert stats["total_deals"] == 0
    assert stats["avg_delivery_percent"] == 0.0
