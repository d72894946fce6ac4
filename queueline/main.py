from contextlib import asynccontextmanager

from fastapi import FastAPI

from queueline.api.routes import live, metrics, ping, queue, users
from queueline.core.config import get_settings
from queueline.core.logging import configure_logging, init_tracer, shutdown_tracer
from queueline.lines.engine import QueueEngine
from queueline.lines.fanout import EventFanout
from queueline.lines.memory import MemoryTicketStore
from queueline.lines.postgres import PostgresTicketStore
from queueline.lines.queries import LineQueryService
from queueline.lines.store import TicketStore
from queueline.middleware import RBACMiddleware
from queueline.services.postgres import PostgresPool


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider

    postgres: PostgresPool | None = None
    store: TicketStore
    if settings.store_backend == "postgres":
        postgres = PostgresPool(
            dsn=settings.postgres_dsn,
            min_size=settings.postgres_pool_min_size,
            max_size=settings.postgres_pool_max_size,
        )
        store = PostgresTicketStore(await postgres.get_pool())
    else:
        store = MemoryTicketStore()
    await store.ensure_schema()

    fanout = EventFanout()
    engine = QueueEngine.from_settings(store, fanout, settings)
    app.state.postgres = postgres
    app.state.ticket_store = store
    app.state.event_fanout = fanout
    app.state.queue_engine = engine
    app.state.line_queries = LineQueryService(store, today=engine.today)
    logger.info("Queue service ready with %s store", settings.store_backend)
    try:
        yield
    finally:
        await store.close()
        if postgres is not None:
            await postgres.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    app.include_router(ping.router)
    app.include_router(metrics.router)
    app.include_router(queue.router)
    app.include_router(users.router)
    app.include_router(live.router)
    return app


app = create_app()
