import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter
from sqlalchemy import select, text

from tokenledger.core.config import settings
from tokenledger.core.database import engine
from tokenledger.models.transaction import TokenTransaction
from tokenledger.models.wallet import OrganizationWallet
from tokenledger.schemas.common import HealthResponse

logger = structlog.get_logger()

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Report whether the ledger tables and the Celery broker are reachable."""
    db_status = "ok"
    ledger_status = "ok"
    redis_status = "ok"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            try:
                await conn.execute(select(OrganizationWallet.id).limit(1))
                await conn.execute(select(TokenTransaction.id).limit(1))
            except Exception as exc:
                ledger_status = "error"
                logger.warning("health.ledger_unreachable", error=str(exc))
    except Exception:
        db_status = "error"
        ledger_status = "error"

    try:
        r = aioredis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
    except Exception:
        redis_status = "error"

    healthy = db_status == "ok" and ledger_status == "ok" and redis_status == "ok"
    return HealthResponse(
        status="ok" if healthy else "degraded",
        database=db_status,
        ledger=ledger_status,
        redis=redis_status,
    )
