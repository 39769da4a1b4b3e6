# tests/test_signals.py
from datetime import date, timedelta

import pytest

from dealflow import signals
from dealflow.db import session
from dealflow.models import RecommendedAction, SignalType, Urgency
from dealflow.patterns import store_deal
from dealflow.signals import (
    SymbolAggregate,
    WindowDeal,
    build_reasons,
    classify_signal_type,
    classify_urgency,
    derive_buy_signals,
    generate_buy_signals,
    pick_primary_buyer,
    recommend_action,
    signal_strength,
)

from conftest import add_delivery, make_deal

AS_OF = date(2024, 6, 30)


def _window_deal(symbol="SYM", client="CLIENT X", days_ago=1, value=15_000_000.0, delivery=85.0, consecutive=1):
    quantity = 100_000
    return WindowDeal(
        deal_date=AS_OF - timedelta(days=days_ago),
        symbol=symbol,
        company_name=f"{symbol} Ltd",
        client_name=client,
        action="BUY",
        quantity=quantity,
        price=value / quantity,
        deal_value=value,
        delivery_percent=delivery,
        consecutive_buys=consecutive,
    )


def _aggregate(**overrides):
    values = dict(
        symbol="SYM",
        company_name="SYM Ltd",
        total_buys=5,
        total_quantity=500_000,
        total_value=120_000_000.0,
        avg_buy_price=240.0,
        latest_buy_date=AS_OF - timedelta(days=1),
        first_buy_date=AS_OF - timedelta(days=21),
        avg_delivery=90.0,
        unique_buyers=3,
        max_consecutive=3,
        primary_buyer="CLIENT X",
    )
    values.update(overrides)
    return SymbolAggregate(**values)


def test_signal_strength_truncates():
    # 8*5 + 0.15*90 + 15 + 5*3 + 10 = 93.5
    assert signal_strength(_aggregate()) == 93


def test_signal_strength_caps_components():
    aggregate = _aggregate(total_buys=40, avg_delivery=100.0, max_consecutive=12)

    # 80 + 15 + 15 + 25 + 10 = 145, reported on the 0-100 scale.
    assert signal_strength(aggregate) == 100


def test_two_buys_never_qualify():
    deals = [_window_deal(days_ago=d, delivery=100.0) for d in (1, 2)]

    assert derive_buy_signals(deals, AS_OF, min_strength=0) == []


def test_three_buys_at_85_percent_qualify():
    deals = [_window_deal(days_ago=d, delivery=85.0, consecutive=3) for d in (1, 2, 3)]

    [signal] = derive_buy_signals(deals, AS_OF, min_strength=0)

    assert signal.symbol == "SYM"
    assert signal.total_buys == 3
    assert signal.avg_delivery == 85.0


def test_ineligible_deals_are_ignored():
    deals = [
        _window_deal(days_ago=1),
        _window_deal(days_ago=2),
        _window_deal(days_ago=3, value=9_999_999.0),
        _window_deal(days_ago=4, delivery=74.9),
        _window_deal(days_ago=61),
    ]

    assert derive_buy_signals(deals, AS_OF, min_strength=0) == []


def test_group_average_delivery_threshold():
    deals = [_window_deal(days_ago=d, delivery=78.0) for d in (1, 2, 3)]

    assert derive_buy_signals(deals, AS_OF, min_strength=0) == []


def test_min_strength_filter():
    deals = [_window_deal(days_ago=d, consecutive=3) for d in (1, 2, 3)]

    # 24 + 12.75 + 0 + 15 + 5 = 56.75
    assert len(derive_buy_signals(deals, AS_OF, min_strength=56)) == 1
    assert derive_buy_signals(deals, AS_OF, min_strength=57) == []


def test_primary_buyer_is_largest_deal_with_name_tiebreak():
    group = [
        _window_deal(client="ZETA", value=20_000_000.0),
        _window_deal(client="BETA", value=20_000_000.0),
        _window_deal(client="ALPHA", value=15_000_000.0),
    ]

    assert pick_primary_buyer(group) == "BETA"


@pytest.mark.parametrize(
    "overrides, expected",
    [
        ({}, SignalType.ACCUMULATION),
        ({"total_buys": 4}, SignalType.INSTITUTIONAL),
        ({"total_buys": 4, "unique_buyers": 1, "avg_delivery": 96.0}, SignalType.BREAKOUT),
        ({"total_buys": 4, "unique_buyers": 1}, SignalType.INSIDER),
        ({"max_consecutive": 2, "total_value": 50_000_000.0}, SignalType.INSIDER),
    ],
)
def test_classify_signal_type(overrides, expected):
    assert classify_signal_type(_aggregate(**overrides)) is expected


def test_classify_urgency():
    recent = AS_OF - timedelta(days=3)
    assert classify_urgency(_aggregate(latest_buy_date=recent, total_buys=4), AS_OF) is Urgency.HIGH
    assert classify_urgency(_aggregate(latest_buy_date=recent, total_buys=3), AS_OF) is Urgency.MEDIUM
    assert classify_urgency(_aggregate(latest_buy_date=AS_OF - timedelta(days=7)), AS_OF) is Urgency.MEDIUM
    assert classify_urgency(_aggregate(latest_buy_date=AS_OF - timedelta(days=8)), AS_OF) is Urgency.LOW


def test_recommend_action():
    two_days = AS_OF - timedelta(days=2)
    old = AS_OF - timedelta(days=20)

    assert recommend_action(_aggregate(latest_buy_date=two_days), AS_OF) is RecommendedAction.BUY_NOW
    assert recommend_action(_aggregate(latest_buy_date=old, first_buy_date=old), AS_OF) is RecommendedAction.BUY_ON_DIP
    assert (
        recommend_action(_aggregate(latest_buy_date=old, first_buy_date=old - timedelta(days=14), total_buys=3), AS_OF)
        is RecommendedAction.MONITOR
    )
    assert (
        recommend_action(_aggregate(latest_buy_date=old, first_buy_date=old - timedelta(days=15), total_buys=3), AS_OF)
        is RecommendedAction.WAIT
    )


def test_reasons_are_ordered():
    reasons = build_reasons(_aggregate(avg_delivery=92.0), 70.0)

    assert reasons == [
        "Strong accumulation: 5 buys in 20 days",
        "Very high delivery: 92.0%",
        "Multiple institutions buying: 3 buyers",
        "Consecutive buying pattern: 3 times",
        "Large institutional position: ₹12.00Cr",
        "Proven buyer: 70% success rate",
    ]


def test_reasons_round_half_up():
    reasons = build_reasons(_aggregate(avg_delivery=92.25, total_value=123_450_000.0), 50.0)

    assert "Very high delivery: 92.3%" in reasons
    assert "Large institutional position: ₹12.35Cr" in reasons


def test_reasons_skip_unmet_conditions():
    aggregate = _aggregate(total_buys=3, avg_delivery=85.0, unique_buyers=1, max_consecutive=1, total_value=45_000_000.0)

    assert build_reasons(aggregate, 50.0) == []


def test_signals_are_ranked_by_strength_then_value():
    deals = []
    for symbol, buys in (("AAA", 3), ("BBB", 5), ("CCC", 3)):
        value = 20_000_000.0 if symbol == "CCC" else 15_000_000.0
        deals.extend(_window_deal(symbol=symbol, days_ago=d, value=value) for d in range(1, buys + 1))

    ranked = derive_buy_signals(deals, AS_OF, min_strength=0)

    assert [s.symbol for s in ranked] == ["BBB", "CCC", "AAA"]
    assert [s.rank for s in ranked] == [1, 2, 3]


def test_pricing_levels_and_constants():
    deals = [_window_deal(days_ago=d, value=24_000_000.0) for d in (1, 2, 3)]

    [signal] = derive_buy_signals(deals, AS_OF, min_strength=0)

    assert signal.entry_price == 240.0
    assert signal.target_price == 300.0
    assert signal.stop_loss == 220.8
    assert signal.potential_return == 25.0
    assert signal.risk_reward_ratio == 3.12
    assert signal.buyer_track_record == 70.0
    assert signal.buyer_total_picks == 1


def test_signals_are_deterministic():
    deals = [_window_deal(symbol=s, days_ago=d) for s in ("AAA", "BBB") for d in (1, 2, 3)]

    first = [s.to_dict() for s in derive_buy_signals(deals, AS_OF, min_strength=0)]
    second = [s.to_dict() for s in derive_buy_signals(list(reversed(deals)), AS_OF, min_strength=0)]

    assert first == second


def test_signal_pagination(monkeypatch):
    deals = [
        _window_deal(symbol=f"S{index:02d}", days_ago=d, consecutive=3)
        for index in range(25)
        for d in (1, 2, 3)
    ]
    monkeypatch.setattr(signals, "load_window_deals", lambda engine, as_of: deals)

    page = generate_buy_signals(None, min_strength=0, page_size=10, offset=10, as_of=AS_OF)

    assert len(page.signals) == 10
    assert page.pagination.has_next is True
    assert page.pagination.has_prev is True
    assert page.pagination.total_pages == 3
    assert page.pagination.total_records == 25
    assert page.signals[0].rank == 11


def test_end_to_end_accumulation(engine):
    for offset in (3, 2, 1):
        day = AS_OF - timedelta(days=offset)
        # 100,000 x 150 = 15,000,000
        with session(engine) as conn:
            store_deal(conn, make_deal(symbol="SYM", client_name="CLIENT X", deal_date=day))
        add_delivery(engine, "SYM", day, 85)

    page = generate_buy_signals(engine, min_strength=0, as_of=AS_OF)

    [signal] = page.signals
    assert signal.total_buys == 3
    assert signal.max_consecutive == 3
    assert signal.avg_delivery == 85.0
    assert signal.primary_buyer == "CLIENT X"
    # Fewer than 5 buys, one buyer, delivery under 95.
    assert signal.signal_type is SignalType.INSIDER
    assert signal.signal_strength == 56
    assert signal.to_dict()["latest_buy_date"] == (AS_OF - timedelta(days=1)).isoformat()
    assert page.pagination.total_records == 1


def test_end_to_end_default_threshold_excludes_weak_signal(engine):
    for offset in (3, 2, 1):
        day = AS_OF - timedelta(days=offset)
        with session(engine) as conn:
            store_deal(conn, make_deal(symbol="SYM", deal_date=day))
        add_delivery(engine, "SYM", day, 85)

    page = generate_buy_signals(engine, as_of=AS_OF)

    assert page.signals == []
    assert page.pagination.total_pages == 0
