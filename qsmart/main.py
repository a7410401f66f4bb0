import logging
from contextlib import asynccontextmanager
from datetime import datetime

import pytz
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from qsmart import errors
from qsmart.api.endpoints import parent, queues, realtime, tickets, users
from qsmart.config import settings
from qsmart.database import Base, engine

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Q-Smart API started")
    yield


app = FastAPI(title="Q-Smart API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(errors.LedgerError)
async def ledger_error_handler(request: Request, exc: errors.LedgerError):
    if isinstance(exc, errors.StorageError):
        logger.error("Storage error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.message},
    )


@app.get("/health", tags=["Health"])
def health():
    return {
        "status": "OK",
        "message": "Queue Smart Backend is running!",
        "timestamp": datetime.now(pytz.utc).isoformat(),
        "websocket_channels": len(realtime.manager.channels),
    }


app.include_router(users.router, prefix="/auth", tags=["Authentication"])
app.include_router(queues.router, prefix="/queues", tags=["Queues"])
app.include_router(tickets.router, prefix="/tickets", tags=["Tickets"])
app.include_router(parent.router, prefix="/parent", tags=["Parent"])
app.include_router(realtime.router)
