"""Celery task that expires unallocated organization tokens."""

import asyncio

from tokenledger.core.database import worker_async_session
from tokenledger.workers.celery_app import celery_app


@celery_app.task(name="tasks.token_expiration", queue="ledger", soft_time_limit=300, time_limit=420)
def token_expiration_task():
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(_execute())
    finally:
        loop.close()


async def _execute() -> dict:
    from tokenledger.services.wallet_service import expire_wallets

    async with worker_async_session() as session:
        return await expire_wallets(session)
