from contextlib import asynccontextmanager

from fastapi import FastAPI

from apps.api.core.config import Settings, get_settings
from apps.api.core.logging import configure_logging, init_tracer, shutdown_tracer
from apps.api.metrics import metrics_registry
from apps.api.middleware import RBACMiddleware
from apps.api.routes import analytics, metrics, ping, staff, tickets
from apps.api.services.database import PostgresConnectionTester, create_engine_and_sessions
from apps.api.services.service import TicketService


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings: Settings = app.state.settings
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    postgres_tester = PostgresConnectionTester(dsn=settings.postgres_dsn)
    app.state.postgres_tester = postgres_tester

    db_engine = None
    app.state.db_engine = None
    app.state.db_session_factory = None
    try:
        await postgres_tester.test_connection()
        db_engine, session_factory = create_engine_and_sessions(settings.postgres_dsn)
        service = TicketService.from_session_factory(
            session_factory,
            engine=db_engine,
            max_number_attempts=settings.ticket_number_max_attempts,
            max_update_retries=settings.ticket_update_max_retries,
            transition_policy=settings.transition_policy,
            resolved_at_policy=settings.resolved_at_policy,
            metrics=app.state.metrics_registry,
        )
        await service.ensure_schema()
        app.state.ticket_service = service
        app.state.db_engine = db_engine
        app.state.db_session_factory = session_factory
        logger.info("Ticket service ready (%s transitions)", settings.transition_policy.value)
    except Exception:  # pragma: no cover - service initialisation best effort
        logger.exception("Ticket service unavailable; ticket routes will answer 503")
        app.state.ticket_service = None
        if db_engine is not None:
            await db_engine.dispose()
            db_engine = None
    try:
        yield
    finally:
        if db_engine is not None:
            await db_engine.dispose()
        await postgres_tester.close()
        shutdown_tracer(tracer_provider)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.auth_tokens = settings.auth_tokens
    app.state.metrics_registry = metrics_registry
    app.state.ticket_service = None
    app.add_middleware(RBACMiddleware, tokens=settings.auth_tokens)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(staff.router)
    app.include_router(analytics.router)
    app.include_router(metrics.router)
    return app


app = create_app()
