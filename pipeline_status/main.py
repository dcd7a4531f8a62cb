import sys
from typing import Any

import fastapi
import uvicorn

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pipeline_status import __version__
from pipeline_status.config import ConfigurationError, get_settings
from pipeline_status.dependencies import close_status_service
from pipeline_status.status import router as status_router


app = FastAPI(title="PR Pipeline Status", version=__version__)

app.include_router(status_router, tags=["status"])


@app.exception_handler(StarletteHTTPException)
async def _http_exception_as_error_body(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.get("/", response_class=PlainTextResponse)
def root() -> str:
    return "pong"


@app.get("/health")
def health() -> dict[str, Any]:
    try:
        repository: str | None = get_settings().repository
        status = "operational"
    except ConfigurationError:
        repository = None
        status = "degraded"
    return {
        "status": status,
        "message": "The PR pipeline status service is ready to report on pull requests.",
        "repository": repository,
        "environment": {
            "python version": sys.version,
            "fastapi version": fastapi.__version__,
            "uvicorn version": uvicorn.__version__,
        },
    }


@app.on_event("shutdown")
async def _close_github_client() -> None:
    await close_status_service()
