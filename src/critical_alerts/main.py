"""
Critical Alerts - Main Application
===================================

Critical alert generation and escalation ledger service.

Modules:
- Critical Alerts: Evaluate task/user facts into ranked alerts, log
  critical ones to the escalation ledger, record dismissals

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects, evaluator
- Infrastructure: Database, clocks, fact source, rules file, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

# Configuration and Core
from critical_alerts.config import get_settings
from critical_alerts.core import ApplicationException

# Infrastructure
from critical_alerts.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    get_session_maker,
    init_database,
)

# Alert Module
from critical_alerts.alerts.application import AlertMonitorService, EscalationLedgerService
from critical_alerts.alerts.infrastructure import (
    AlertRulesManager,
    AlertScheduler,
    InMemoryFactSource,
    SQLAlchemyEscalationRepository,
    SystemClock,
)
from critical_alerts.alerts.interfaces import alerts_router

# Shared
from critical_alerts.shared.api import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from critical_alerts.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load alert rules and watch the file
    4. Wire fact source, ledger and monitor
    5. Start the evaluation ticker

    SHUTDOWN:
    1. Stop ticker and monitor
    2. Stop rules watcher
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Critical Alerts service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    ledger: Optional[EscalationLedgerService] = None
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running without escalation ledger: {e}")
    else:
        ledger = EscalationLedgerService(
            SQLAlchemyEscalationRepository(get_session_maker()),
            SystemClock(),
            write_retries=settings.ledger_write_retries,
            retry_base_delay=settings.ledger_retry_base_delay,
        )

    logger.info("Loading alert rules")
    rules_manager = AlertRulesManager()
    rules_manager.load(settings.alert_rules_path)
    rules_manager.start_watching()

    fact_source = InMemoryFactSource()
    monitor = AlertMonitorService(
        fact_source,
        rules_manager,
        SystemClock(),
        ledger=ledger,
        persist_critical=settings.persist_critical_alerts,
    )
    await monitor.start()

    scheduler: Optional[AlertScheduler] = None
    if settings.evaluation_interval_seconds > 0:
        async def evaluation_tick():
            """Time-driven re-evaluation; runs on the event loop."""
            monitor.request_evaluation()

        scheduler = AlertScheduler(interval_seconds=settings.evaluation_interval_seconds)
        await scheduler.start(evaluation_tick)
    else:
        logger.info("Evaluation ticker disabled")

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.rules_manager = rules_manager
    app.state.fact_source = fact_source
    app.state.escalation_ledger = ledger
    app.state.alert_monitor = monitor
    app.state.alert_scheduler = scheduler

    logger.info("Critical Alerts service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Critical Alerts service")

    if scheduler:
        await scheduler.stop()

    await monitor.stop()
    fact_source.close()
    rules_manager.stop_watching()

    await close_database()

    logger.info("Critical Alerts service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Critical Alerts API",
    description="""
    ## Critical Alert Generation and Escalation Ledger

    Derives time-sensitive alerts from task and user facts, ranks them,
    and keeps a deduplicated audit log of critical escalations.

    ---

    ### Alert Rules

    | Alert | Severity | Condition |
    |-------|----------|-----------|
    | Overdue | critical | Past deadline by more than `critical_overdue_hours` |
    | Overdue | high | Past deadline by up to `critical_overdue_hours` |
    | Approaching deadline | medium | Deadline within `approaching_window_hours` |
    | End-of-day red flag | critical | Today's task incomplete at or after `red_flag_hour` |
    | End-of-day yellow flag | medium | Today's task still incomplete between `yellow_flag_hour` and `red_flag_hour` |
    | User red flag | critical | User carries a red performance flag |

    Completed tasks never alert.

    ---

    ### Endpoints

    - `GET /alerts` - Ranked alerts, dismissed conditions removed
    - `POST /alerts/evaluate` - Force recomputation
    - `POST /alerts/{id}/dismiss` - Dismiss an alert
    - `GET /alerts/dismissed-keys` - Dismissed condition keys
    - `GET /alerts/escalations` - Escalation ledger rows
    - `PUT /alerts/facts/tasks`, `PUT /alerts/facts/users` - Publish snapshots
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(alerts_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service health",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "alert_rules": "loaded",
                        "alert_monitor": "running",
                        "alert_scheduler": "running"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports degraded when the ledger database is unreachable; alerts are
    still computed in that state.
    """
    state = request.app.state
    monitor = getattr(state, "alert_monitor", None)
    scheduler = getattr(state, "alert_scheduler", None)

    checks = {
        "database": "connected",
        "alert_rules": "loaded" if getattr(state, "rules_manager", None) else "not_loaded",
        "alert_monitor": "running" if monitor and monitor.is_running else "stopped",
        "alert_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
    }

    try:
        async with get_session_context() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check database ping failed: {e}")
        checks["database"] = "unavailable"

    return {
        "status": "healthy" if checks["database"] == "connected" else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Critical Alerts",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "alerts": {
                "prefix": "/alerts",
                "endpoints": [
                    "GET /alerts - List active alerts",
                    "POST /alerts/evaluate - Evaluate now",
                    "POST /alerts/{id}/dismiss - Dismiss alert",
                    "GET /alerts/dismissed-keys - Dismissed keys",
                    "GET /alerts/escalations - Escalation ledger",
                    "PUT /alerts/facts/tasks - Publish tasks",
                    "PUT /alerts/facts/users - Publish users"
                ]
            }
        }
    }


# === Development Entry Point ===

def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "critical_alerts.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
