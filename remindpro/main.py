import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from remindpro.api.routers.channels import embedded_router as chat_connect_router
from remindpro.api.routers.channels import router as channels_router
from remindpro.api.routers.reminders import router as reminders_router
from remindpro.api.routers.stats import router as stats_router
from remindpro.db import describe_db
from remindpro.settings import settings


@asynccontextmanager
async def _embedded_worker(app: FastAPI):
    if not settings.EMBEDDED_WORKER:
        yield
        return
    from remindpro.worker import serve

    stop_event = asyncio.Event()
    task = asyncio.create_task(serve(stop_event))
    try:
        yield
    finally:
        stop_event.set()
        await task


def create_app() -> FastAPI:
    app = FastAPI(title="RemindPro Delivery API", lifespan=_embedded_worker)

    app.include_router(reminders_router)
    app.include_router(stats_router)
    app.include_router(channels_router)
    if settings.EMBEDDED_WORKER:
        app.include_router(chat_connect_router)

    @app.get("/health")
    def health():
        return {"ok": True, "db": describe_db()["dialect"]}

    return app
