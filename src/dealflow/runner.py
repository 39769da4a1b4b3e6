"""Command line entry point for the deal ingestion job."""
from __future__ import annotations

import argparse
import logging
import signal
import threading
from datetime import date, datetime
from typing import Iterable, List, Sequence
from zoneinfo import ZoneInfo

import requests
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .db import create_db_engine, ensure_schema, log_fetch, session, upsert_delivery_record
from .logging_utils import configure_logging
from .models import Deal, Exchange, FetchStatus, IngestionReport
from .patterns import store_deal
from .sources import DealSource, NseSource, create_sources

LOGGER = logging.getLogger(__name__)

# Errors a single source may raise without aborting the run.
SOURCE_ERRORS = (requests.RequestException, ValueError)


def market_today(settings: Settings) -> date:
    return datetime.now(ZoneInfo(settings.timezone)).date()


def _pause(cancel_event: threading.Event, seconds: float) -> None:
    """Courtesy delay between exchange requests; returns early on cancellation."""

    if seconds > 0:
        cancel_event.wait(seconds)


def gather_deals(
    engine: Engine,
    sources: Sequence[DealSource],
    settings: Settings,
    report: IngestionReport,
    cancel_event: threading.Event,
    fetch_date: date,
) -> List[Deal]:
    """Collect deals from every source; one failing feed does not stop the others."""

    deals: List[Deal] = []
    for source in sources:
        exchange = source.exchange.value
        if cancel_event.is_set():
            break
        if not source.prepare():
            LOGGER.warning("%s session unavailable, skipping its feeds", exchange)
            report.errors += 1
            for deal_type in source.deal_types:
                report.counts[f"{exchange}_{deal_type.value}"] = 0
                log_fetch(
                    engine,
                    f"{deal_type.value}_DEALS",
                    exchange,
                    FetchStatus.FAILED,
                    0,
                    error_message="session initialization failed",
                    fetch_date=fetch_date,
                )
            continue

        for deal_type in source.deal_types:
            if cancel_event.is_set():
                break
            _pause(cancel_event, settings.request_delay)
            key = f"{exchange}_{deal_type.value}"
            data_type = f"{deal_type.value}_DEALS"
            try:
                fetched = source.fetch_deals(deal_type)
            except SOURCE_ERRORS as exc:
                LOGGER.error("Failed to fetch %s %s deals: %s", exchange, deal_type.value.lower(), exc)
                report.counts[key] = 0
                report.errors += 1
                log_fetch(engine, data_type, exchange, FetchStatus.FAILED, 0, str(exc), fetch_date)
                continue
            report.counts[key] = len(fetched)
            status = FetchStatus.SUCCESS if fetched else FetchStatus.PARTIAL
            log_fetch(engine, data_type, exchange, status, len(fetched), None, fetch_date)
            deals.extend(fetched)
    return deals


def persist_deals(
    engine: Engine,
    deals: Iterable[Deal],
    settings: Settings,
    report: IngestionReport,
    cancel_event: threading.Event,
) -> None:
    """Insert deals one transaction at a time, folding BUYs into client patterns."""

    for deal in deals:
        if cancel_event.is_set():
            report.cancelled = True
            LOGGER.warning("Ingestion cancelled after %d inserted deals", report.inserted)
            return
        try:
            with session(engine) as conn:
                store_deal(conn, deal, settings.reset_consecutive_on_sell)
        except SQLAlchemyError as exc:
            report.errors += 1
            LOGGER.error("Failed to store %s deal for %s: %s", deal.exchange.value, deal.symbol, exc)
            continue
        report.inserted += 1
        LOGGER.debug(
            "[%s-%s] %s | %s %s %d @ %s",
            deal.exchange.value,
            deal.deal_type.value,
            deal.symbol,
            deal.client_name,
            deal.action.value,
            deal.quantity,
            deal.price,
        )
        _pause(cancel_event, settings.record_delay)


def refresh_delivery(
    engine: Engine,
    source: NseSource,
    symbols: Iterable[str],
    settings: Settings,
    report: IngestionReport,
    cancel_event: threading.Event,
    trade_date: date,
) -> None:
    for symbol in sorted(set(symbols)):
        if cancel_event.is_set():
            report.cancelled = True
            return
        _pause(cancel_event, settings.request_delay)
        try:
            record = source.fetch_delivery(symbol, trade_date)
            if record is None or record.delivery_percent <= 0:
                continue
            with session(engine) as conn:
                upsert_delivery_record(conn, record)
        except (*SOURCE_ERRORS, SQLAlchemyError) as exc:
            report.errors += 1
            LOGGER.warning("Delivery refresh failed for %s: %s", symbol, exc)
            continue
        report.delivery_records += 1
        LOGGER.debug("%s delivery %.2f%%", symbol, record.delivery_percent)

    status = FetchStatus.SUCCESS if report.delivery_records else FetchStatus.PARTIAL
    log_fetch(engine, "DELIVERY_DATA", Exchange.NSE.value, status, report.delivery_records, None, trade_date)


def run_ingestion(
    settings: Settings,
    engine: Engine | None = None,
    sources: Sequence[DealSource] | None = None,
    cancel_event: threading.Event | None = None,
    as_of: date | None = None,
) -> IngestionReport:
    """Run the ingestion process.

    Cancellation is honoured between records; rows already written stay in place
    and the run is reported as ``PARTIAL``.
    """

    engine = engine or create_db_engine(settings.database_url)
    ensure_schema(engine)
    sources = list(sources) if sources is not None else create_sources(settings.http_timeout)
    cancel_event = cancel_event or threading.Event()
    today = as_of or market_today(settings)
    report = IngestionReport()

    LOGGER.info("Starting ingestion for %s", today)
    deals = gather_deals(engine, sources, settings, report, cancel_event, today)
    LOGGER.info("Fetched %d deals: %s", len(deals), report.counts)

    persist_deals(engine, deals, settings, report, cancel_event)
    report.unique_symbols = len({deal.symbol for deal in deals})

    nse = next((source for source in sources if isinstance(source, NseSource)), None)
    nse_symbols = [deal.symbol for deal in deals if deal.exchange is Exchange.NSE]
    if nse is not None and nse_symbols and not report.cancelled:
        refresh_delivery(engine, nse, nse_symbols, settings, report, cancel_event, today)

    if cancel_event.is_set():
        report.cancelled = True

    if report.cancelled:
        report.status = FetchStatus.PARTIAL
        log_fetch(engine, "INGESTION", "ALL", FetchStatus.PARTIAL, report.inserted, "cancelled", today)
    elif report.errors and not report.inserted and not deals:
        report.status = FetchStatus.FAILED
    elif report.errors:
        report.status = FetchStatus.PARTIAL
    else:
        report.status = FetchStatus.SUCCESS

    LOGGER.info(
        "Ingestion finished with %s: %d deals stored, %d symbols, %d delivery records, %d errors",
        report.status.value,
        report.inserted,
        report.unique_symbols,
        report.delivery_records,
        report.errors,
    )
    return report


def parse_args(args: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging output",
    )
    return parser.parse_args(args=args)


def main(argv: Iterable[str] | None = None) -> int:
    options = parse_args(argv)
    configure_logging(logging.DEBUG if options.verbose else None)
    settings = Settings.load()

    cancel_event = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: cancel_event.set())
    signal.signal(signal.SIGTERM, lambda *_: cancel_event.set())

    report = run_ingestion(settings, cancel_event=cancel_event)
    return 0 if report.status is FetchStatus.SUCCESS else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
