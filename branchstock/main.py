from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidArgumentError,
    InvalidStateError,
    InventoryError,
    InvariantViolationError,
    NotFoundError,
)
from .core.logging import configure_logging, get_logger
from .db.database import create_db_and_tables
from .routers.inventory import router as inventory_router
from .routers.sales import router as sales_router
from .routers.transfers import router as transfers_router

logger = get_logger("api")

# Most specific first; the first matching class wins.
ERROR_STATUS = (
    (InsufficientStockError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (InvalidArgumentError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConcurrencyConflictError, status.HTTP_409_CONFLICT),
    (InvariantViolationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: InventoryError) -> int:
    for cls, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await create_db_and_tables()
    yield


app = FastAPI(
    title=settings.api_title,
    description="Multi-branch inventory ledger: batches, sales, adjustments and transfers",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    code = status_for(exc)
    if isinstance(exc, InvariantViolationError):
        logger.critical("%s %s: %s", request.method, request.url.path, exc)
    else:
        logger.warning("%s %s refused: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content=exc.to_dict())


app.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
app.include_router(sales_router, prefix="/sales", tags=["sales"])
app.include_router(transfers_router, prefix="/transfers", tags=["transfers"])

if __name__ == "__main__":
    uvicorn.run("branchstock.main:app", host="0.0.0.0", port=8000, reload=True)
