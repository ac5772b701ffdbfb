import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from lending.db import create_db_and_tables
from lending.errors import LendingError
from lending.log import setup_logging
from lending.routers import admin, borrowings, items

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    create_db_and_tables()
    logger.info("lending service started")
    yield
    logger.info("lending service stopped")


app = FastAPI(title="TKJ Lending", lifespan=lifespan)

app.include_router(admin.router)
app.include_router(items.router)
app.include_router(borrowings.router)


@app.get("/health")
def health():
    return {"ok": True}


@app.exception_handler(LendingError)
async def lending_error_handler(request: Request, exc: LendingError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %s %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"code": "VALIDATION_ERROR", "message": "Request validation failed", "errors": jsonable_encoder(exc.errors())},
    )
