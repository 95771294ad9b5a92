from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from app.core import (
    celery,
    config,
    database,
    exception_handlers,
    redis,
)
from app.core.container import Services, build_services
from app.domains.media import api as media_api
from app.domains.media import events as media_events
from app.domains.rooms import api as rooms_api
from app.domains.rooms import events as rooms_events
from app.domains.rooms import ws as rooms_ws

VERSION = "1.0.0"


def create_app(services_factory: Optional[Callable[[], Services]] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        celery.init_celery()
        services = (services_factory or build_services)()
        rooms_events.register_event_handlers(services)
        media_events.register_event_handlers(services)
        app.state.services = services
        await services.start()
        yield
        await services.shutdown()
        await redis.close()

    app = FastAPI(title="Voice Rooms Backend", version=VERSION, lifespan=lifespan)

    exception_handlers.setup_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rooms_api.router, prefix="/api/rooms", tags=["Rooms"])
    app.include_router(rooms_ws.ws_router, prefix="/api/rooms", tags=["Rooms WS"])
    app.include_router(media_api.router, prefix="/api/media", tags=["Media"])

    @app.get("/health")
    async def health():
        services = {
            "database": await database.check_connection(),
            "redis": await redis.check_connection(),
            "rabbitmq": await celery.check_connection(),
        }
        status = "healthy" if all(services.values()) else "degraded"
        gateway = app.state.services.gateway
        return {
            "status": status,
            "services": services,
            "version": VERSION,
            "connections": gateway.get_connection_stats(),
        }

    return app


app = create_app()
