from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.builder import router as builder_router
from app.api.signing_documents import router as signing_documents_router
from app.config import settings
from app.errors import register_error_handlers
from app.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    Path(settings.storage_root).mkdir(parents=True, exist_ok=True)
    yield


app = FastAPI(title="DotMac eSign API", lifespan=lifespan)

configure_logging()
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(signing_documents_router)
_include_api_router(builder_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
