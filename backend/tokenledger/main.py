from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tokenledger.api.v1.router import api_router
from tokenledger.core.config import settings
from tokenledger.core.errors import LedgerError
from tokenledger.core.logging import setup_logging
from tokenledger.core.middleware import CorrelationIdMiddleware

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    yield


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware (last added = outermost = runs first)
    # CorrelationId must be inner so CORS handles OPTIONS preflight first
    application.add_middleware(CorrelationIdMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        logger.info("ledger.request_rejected", error=exc.code, path=request.url.path)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Routes
    application.include_router(api_router)

    return application


app = create_app()
