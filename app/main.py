from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from tortoise.contrib.fastapi import register_tortoise
from tortoise.exceptions import DBConnectionError, OperationalError

from app import settings
from app.exceptions import DatastoreUnavailable
from app.routers import availability, checkout, holds


def create_app() -> FastAPI:
    app = FastAPI(title="booth-reservations-ms")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(DBConnectionError)
    @app.exception_handler(OperationalError)
    async def datastore_unavailable(request: Request, exc: Exception) -> JSONResponse:
        # fail closed: never answer "available" without the datastore
        logger.opt(exception=exc).error("Datastore error on {} {}", request.method, request.url.path)
        err = DatastoreUnavailable()
        return JSONResponse(status_code=err.status_code, content={"detail": err.detail})

    app.include_router(availability.router)
    app.include_router(holds.router)
    app.include_router(checkout.router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    register_tortoise(
        app,
        config=settings.TORTOISE_ORM,
        generate_schemas=settings.db_url.startswith("sqlite"),
        add_exception_handlers=False,
    )
    return app


app = create_app()
