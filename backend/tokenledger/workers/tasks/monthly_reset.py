"""Celery task that refills member balances on their monthly reset day.

Scheduled daily on the 'ledger' queue. Each allocation carries its own
``quota_reset_day``, so most runs only touch a slice of the members.
"""

import asyncio

from tokenledger.core.database import worker_async_session
from tokenledger.workers.celery_app import celery_app


@celery_app.task(name="tasks.monthly_reset", queue="ledger", soft_time_limit=600, time_limit=900)
def monthly_reset_task():
    """Reset every allocation whose reset boundary has passed."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(_execute())
    finally:
        loop.close()


async def _execute() -> dict:
    from tokenledger.services.quota_reset_service import run_monthly_resets

    async with worker_async_session() as session:
        return await run_monthly_resets(session)
