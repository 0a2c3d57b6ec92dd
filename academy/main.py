import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from academy.api.v1.absences.router import router as absences_router
from academy.api.v1.feed_config.router import router as feed_config_router
from academy.api.v1.feeds.router import router as feeds_router
from academy.api.v1.makeup.router import router as makeup_router
from academy.core.config import settings


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Academy Feed Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(feeds_router)
    app.include_router(makeup_router)
    app.include_router(absences_router)
    app.include_router(feed_config_router)

    return app


app = create_app()
