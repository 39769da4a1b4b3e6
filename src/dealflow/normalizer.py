"""Validation and canonicalization of raw exchange records."""
from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Mapping, Optional

from .models import Action, Deal, DealType, DeliveryRecord, Exchange
from .parsing import parse_bse_date, parse_decimal, parse_int, parse_nse_date

LOGGER = logging.getLogger(__name__)

PRICE_QUANTUM = Decimal("0.01")

DATE_PARSERS: dict[Exchange, Callable[[Any], Optional[date]]] = {
    Exchange.NSE: parse_nse_date,
    Exchange.BSE: parse_bse_date,
}


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def normalize_action(value: Any) -> Action:
    """Map exchange buy/sell markers onto :class:`Action`."""

    return Action.BUY if _text(value).upper() in {"B", "BUY"} else Action.SELL


def normalize_deal(
    raw: Mapping[str, Any], exchange: Exchange | str, deal_type: DealType | str
) -> Optional[Deal]:
    """Build a :class:`Deal` from a raw exchange row.

    Returns ``None`` and logs a warning when the row is malformed; the caller is
    expected to skip it and carry on with the rest of the batch. ``deal_value`` is
    always derived from quantity and price, never read from the payload.
    """

    exchange = Exchange(exchange)
    deal_type = DealType(deal_type)

    symbol = _text(raw.get("symbol")).upper()
    if not symbol:
        LOGGER.warning("Dropping %s %s record without symbol: %r", exchange.value, deal_type.value, raw)
        return None

    client_name = _text(raw.get("clientName"))
    if not client_name:
        LOGGER.warning("Dropping %s record for %s without client name", exchange.value, symbol)
        return None

    quantity = parse_int(_first(raw, "quantityTraded", "quantity"))
    if quantity is None or quantity <= 0:
        LOGGER.warning("Dropping %s record for %s with invalid quantity", exchange.value, symbol)
        return None

    price = parse_decimal(_first(raw, "tradePrice", "price"))
    if price is None or price <= 0:
        LOGGER.warning("Dropping %s record for %s with invalid price", exchange.value, symbol)
        return None
    price = price.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)
    if price <= 0:
        LOGGER.warning("Dropping %s record for %s with sub-paisa price", exchange.value, symbol)
        return None

    raw_date = _first(raw, "date", "tradedDate")
    deal_date = DATE_PARSERS[exchange](raw_date)
    if deal_date is None:
        LOGGER.warning("Dropping %s record for %s with unparseable date %r", exchange.value, symbol, raw_date)
        return None

    return Deal(
        deal_date=deal_date,
        exchange=exchange,
        deal_type=deal_type,
        symbol=symbol,
        company_name=_text(_first(raw, "name", "companyName")),
        client_name=client_name,
        action=normalize_action(raw.get("buyOrSell")),
        quantity=quantity,
        price=price,
    )


def delivery_percent(traded_quantity: int, delivered_quantity: int) -> float:
    """Return delivered/traded as a percentage clamped to ``[0, 100]``."""

    if traded_quantity <= 0:
        return 0.0
    percent = delivered_quantity / traded_quantity * 100
    return round(min(max(percent, 0.0), 100.0), 2)


def build_delivery_record(
    symbol: str,
    trade_date: date,
    exchange: Exchange | str,
    traded_quantity: int,
    delivered_quantity: int,
) -> DeliveryRecord:
    return DeliveryRecord(
        symbol=symbol.strip().upper(),
        trade_date=trade_date,
        exchange=Exchange(exchange),
        traded_quantity=traded_quantity,
        delivered_quantity=delivered_quantity,
        delivery_percent=delivery_percent(traded_quantity, delivered_quantity),
    )


__all__ = ["build_delivery_record", "delivery_percent", "normalize_action", "normalize_deal"]
