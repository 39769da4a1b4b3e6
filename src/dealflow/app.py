"""FastAPI application exposing deals, analytics, buy signals and schedule controls."""
from __future__ import annotations

import logging
import threading
import time
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .analytics import get_active_symbols, get_stats, get_top_clients
from .config import Settings
from .db import (
    check_connection,
    create_db_engine,
    ensure_schema,
    get_delivery_record,
    get_fetch_logs,
    get_or_create_schedule,
    session,
    update_schedule,
)
from .enrichment import DealFilters, query_deals_by_symbol, query_enriched_deals
from .logging_utils import configure_logging
from .models import Action, DealType, Exchange
from .normalizer import normalize_deal
from .patterns import query_accumulation_patterns, store_deal
from .runner import market_today, run_ingestion
from .signals import DEFAULT_MIN_STRENGTH, DEFAULT_PAGE_SIZE, generate_buy_signals

LOGGER = logging.getLogger(__name__)

JOB_ID = "deal-ingestion"
MAX_PAGE_SIZE = 500


class DealIn(BaseModel):
    """Manually entered deal; field names follow the dashboard's JSON."""

    model_config = ConfigDict(populate_by_name=True)

    deal_date: date = Field(alias="date")
    exchange: Exchange
    deal_type: DealType = Field(alias="dealType")
    symbol: str
    company_name: Optional[str] = Field(default=None, alias="companyName")
    client_name: str = Field(alias="clientName")
    action: Action
    quantity: int
    price: Decimal


class ScheduleIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time: str
    day_of_week: Optional[str] = Field(default=None, alias="dayOfWeek")
    timezone: Optional[str] = None


def _format_schedule(schedule: dict[str, Any]) -> str:
    return f"{int(schedule['hour']):02d}:{int(schedule['minute']):02d}"


def _schedule_payload(schedule: dict[str, Any]) -> dict[str, Any]:
    return {
        "time": _format_schedule(schedule),
        "dayOfWeek": schedule["day_of_week"],
        "timezone": schedule["timezone"],
    }


def _parse_time(value: str) -> Tuple[int, int]:
    value = value.strip()
    if not value or ":" not in value:
        raise ValueError("Time must be in HH:MM format")
    hour_str, minute_str = value.split(":", 1)
    hour = int(hour_str)
    minute = int(minute_str)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError("Hours must be 0-23 and minutes 0-59")
    return hour, minute


def _build_trigger(schedule: dict[str, Any]) -> CronTrigger:
    return CronTrigger(
        hour=schedule["hour"],
        minute=schedule["minute"],
        day_of_week=schedule["day_of_week"],
        timezone=ZoneInfo(schedule["timezone"]),
    )


def _error(status_code: int, error: str, message: str | None = None) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "error": error}
    if message:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=body)


def _offset(page: int, page_size: int) -> int:
    return (page - 1) * page_size


def create_app(
    settings: Settings | None = None,
    engine: Engine | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Build the API application.

    Run with ``uvicorn dealflow.app:create_app --factory``.
    """

    configure_logging()
    settings = settings or Settings.load()
    engine = engine or create_db_engine(settings.database_url)
    scheduler = AsyncIOScheduler()
    cancel_event = threading.Event()

    app = FastAPI(title="Dealflow")
    app.state.settings = settings
    app.state.engine = engine
    app.state.scheduler = scheduler
    app.state.cancel_event = cancel_event

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _ingestion_job() -> None:
        """Run one ingestion pass from the scheduler thread."""

        LOGGER.info("Scheduled deal ingestion starting")
        try:
            report = run_ingestion(settings, engine=engine, cancel_event=cancel_event)
        except Exception:  # pragma: no cover - scheduler thread must survive a failed run
            LOGGER.exception("Scheduled ingestion run failed")
        else:
            LOGGER.info("Scheduled ingestion job completed with %s", report.status.value)

    def _configure_job(schedule: dict[str, Any]) -> None:
        """Add the cron job, or reschedule it if it already exists."""

        trigger = _build_trigger(schedule)
        if scheduler.get_job(JOB_ID):
            scheduler.reschedule_job(JOB_ID, trigger=trigger)
            action = "Rescheduled"
        else:
            scheduler.add_job(
                _ingestion_job,
                trigger=trigger,
                id=JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            action = "Scheduled"
        LOGGER.info(
            "%s daily ingestion job for %s %s %s",
            action,
            _format_schedule(schedule),
            schedule["day_of_week"],
            schedule["timezone"],
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        LOGGER.info(
            "%s %s -> %d (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        LOGGER.error("Database error on %s %s: %s", request.method, request.url.path, exc)
        return _error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Database unavailable",
            "The data store could not be reached, please retry shortly",
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return _error(exc.status_code, "Endpoint not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"field": ".".join(str(part) for part in err["loc"][1:]), "message": err["msg"]}
            for err in exc.errors()
        ]
        body = {"success": False, "error": "Invalid request", "details": details}
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error",
            "An unexpected error occurred",
        )

    @app.on_event("startup")
    async def startup_event() -> None:
        LOGGER.info("Starting dealflow API")
        try:
            check_connection(engine)
        except SQLAlchemyError as exc:
            LOGGER.critical("Database unreachable at startup: %s", exc)
            raise RuntimeError("Database unreachable") from exc
        ensure_schema(engine)
        if start_scheduler:
            _configure_job(get_or_create_schedule(engine))
            if not scheduler.running:
                scheduler.start()
                LOGGER.info("Scheduler started")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        cancel_event.set()
        if scheduler.running:
            scheduler.shutdown(wait=False)
            LOGGER.info("Scheduler shut down")

    @app.get("/api/deals")
    def list_deals(
        exchange: Optional[str] = Query(None),
        deal_type: Optional[str] = Query(None, alias="dealType"),
        action: Optional[str] = Query(None),
        min_delivery: Optional[float] = Query(None, alias="minDelivery", ge=0, le=100),
        start_date: Optional[date] = Query(None, alias="startDate"),
        end_date: Optional[date] = Query(None, alias="endDate"),
        search: Optional[str] = Query(None),
        page: int = Query(1, ge=1),
        page_size: int = Query(50, alias="pageSize", ge=1, le=MAX_PAGE_SIZE),
    ) -> Any:
        filters = DealFilters(
            exchange=exchange,
            deal_type=deal_type,
            action=action,
            min_delivery=min_delivery,
            start_date=start_date,
            end_date=end_date,
            search=search,
        )
        try:
            result = query_enriched_deals(engine, filters, page_size=page_size, offset=_offset(page, page_size))
        except ValueError as exc:
            return _error(status.HTTP_400_BAD_REQUEST, "Invalid filter", str(exc))
        return {
            "success": True,
            "data": result.data,
            "pagination": result.pagination.to_dict(),
            "filters": filters.to_dict(),
        }

    @app.get("/api/deals/{symbol}")
    def deals_for_symbol(symbol: str, limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE)) -> Any:
        data = query_deals_by_symbol(engine, symbol, limit=limit)
        return {"success": True, "symbol": symbol.strip().upper(), "count": len(data), "data": data}

    @app.post("/api/deals", status_code=status.HTTP_201_CREATED)
    def create_deal(payload: DealIn) -> Any:
        raw = {
            "date": payload.deal_date,
            "symbol": payload.symbol,
            "companyName": payload.company_name,
            "clientName": payload.client_name,
            "buyOrSell": payload.action.value,
            "quantity": payload.quantity,
            "price": payload.price,
        }
        deal = normalize_deal(raw, payload.exchange, payload.deal_type)
        if deal is None:
            return _error(
                status.HTTP_400_BAD_REQUEST,
                "Invalid deal",
                "Symbol, client name, positive quantity and positive price are required",
            )
        with session(engine) as conn:
            deal_id = store_deal(conn, deal, settings.reset_consecutive_on_sell)
        LOGGER.info("Stored manual %s deal %d for %s", deal.exchange.value, deal_id, deal.symbol)
        return {"success": True, "dealId": deal_id, "message": "Deal recorded"}

    @app.get("/api/analytics/accumulation")
    def accumulation(
        min_deals: int = Query(3, alias="minDeals", ge=1),
        limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    ) -> Any:
        data = query_accumulation_patterns(engine, min_deals=min_deals, limit=limit)
        return {"success": True, "count": len(data), "data": data}

    @app.get("/api/analytics/top-clients")
    def top_clients(limit: int = Query(10, ge=1, le=100)) -> Any:
        data = get_top_clients(engine, limit=limit, as_of=market_today(settings))
        return {"success": True, "data": data}

    @app.get("/api/analytics/active-symbols")
    def active_symbols(limit: int = Query(10, ge=1, le=100)) -> Any:
        data = get_active_symbols(engine, limit=limit, as_of=market_today(settings))
        return {"success": True, "data": data}

    @app.get("/api/stats")
    def stats() -> Any:
        today = market_today(settings)
        return {
            "success": True,
            "stats": get_stats(engine, as_of=today),
            "topClients": get_top_clients(engine, limit=5, as_of=today),
            "activeSymbols": get_active_symbols(engine, limit=5, as_of=today),
        }

    @app.get("/api/signals")
    def signals(
        min_strength: int = Query(DEFAULT_MIN_STRENGTH, alias="minStrength", ge=0, le=100),
        page: int = Query(1, ge=1),
        page_size: int = Query(DEFAULT_PAGE_SIZE, alias="pageSize", ge=1, le=MAX_PAGE_SIZE),
    ) -> Any:
        result = generate_buy_signals(
            engine,
            min_strength=min_strength,
            page_size=page_size,
            offset=_offset(page, page_size),
            as_of=market_today(settings),
        )
        return {
            "success": True,
            "data": [signal.to_dict() for signal in result.signals],
            "pagination": result.pagination.to_dict(),
        }

    @app.get("/api/delivery/{symbol}")
    def delivery(
        symbol: str,
        trade_date: Optional[date] = Query(None, alias="date"),
        exchange: Exchange = Query(Exchange.NSE),
    ) -> Any:
        trade_date = trade_date or market_today(settings)
        record = get_delivery_record(engine, symbol, trade_date, exchange)
        if record is None:
            return _error(
                status.HTTP_404_NOT_FOUND,
                "Delivery data not found",
                f"No delivery data for {symbol.strip().upper()} on {trade_date.isoformat()}",
            )
        return {"success": True, "data": record}

    @app.get("/api/logs")
    def fetch_logs(days: int = Query(7, ge=1, le=365)) -> Any:
        data = get_fetch_logs(engine, days=days, as_of=market_today(settings))
        return {"success": True, "data": data}

    @app.get("/api/schedule")
    def show_schedule() -> Any:
        return {"success": True, "data": _schedule_payload(get_or_create_schedule(engine))}

    @app.put("/api/schedule")
    def change_schedule(payload: ScheduleIn) -> Any:
        current = get_or_create_schedule(engine)
        try:
            hour, minute = _parse_time(payload.time)
            timezone_name = payload.timezone or str(current["timezone"])
            day_of_week = payload.day_of_week or str(current["day_of_week"])
            candidate = {"hour": hour, "minute": minute, "day_of_week": day_of_week, "timezone": timezone_name}
            _build_trigger(candidate)
        except (ValueError, ZoneInfoNotFoundError) as exc:
            LOGGER.warning("Invalid schedule submitted: %s", exc)
            return _error(status.HTTP_400_BAD_REQUEST, "Invalid schedule", str(exc))

        schedule = update_schedule(engine, hour, minute, timezone_name=timezone_name, day_of_week=day_of_week)
        if scheduler.running:
            _configure_job(schedule)
        LOGGER.info("Updated schedule to %s %s %s", _format_schedule(schedule), day_of_week, timezone_name)
        return {"success": True, "data": _schedule_payload(schedule)}

    @app.get("/api/health")
    def health() -> Any:
        try:
            check_connection(engine)
        except SQLAlchemyError as exc:
            LOGGER.error("Health check failed: %s", exc)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"success": False, "status": "unhealthy", "database": "unreachable"},
            )
        return {"success": True, "status": "healthy", "database": "connected"}

    return app


__all__ = ["create_app"]
