from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.routes import router as api_router
from .core.config import validate_configuration
from .core.errors import handle_generic_error
from .core.logging_config import setup_logging
from .services.staging import StagingService


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    validate_configuration()
    staging: StagingService = app.state.staging
    staging.start()
    try:
        yield
    finally:
        await staging.close()


def create_app(staging: Optional[StagingService] = None) -> FastAPI:
    app = FastAPI(title="bulk-image-import", lifespan=lifespan)
    app.state.staging = staging or StagingService()

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        http_exc = handle_generic_error(exc)
        return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(api_router)
    return app


app = create_app()
