import ssl
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from tokenledger.core.config import settings


def _is_supabase(url: str) -> bool:
    """Check if the database URL points to Supabase."""
    return "supabase.com" in url or "supabase.co" in url


def _build_connect_args(url: str) -> dict:
    """Build connection args with SSL for Supabase, plain for local."""
    if _is_supabase(url):
        ssl_ctx = ssl.create_default_context()
        ssl_ctx.check_hostname = False
        ssl_ctx.verify_mode = ssl.CERT_NONE
        return {"ssl": ssl_ctx}
    return {}


def build_engine(url: str, **kwargs):
    """Create an async engine with pool sizing tuned for local vs. remote Postgres."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.APP_DEBUG, **kwargs)

    is_remote = _is_supabase(url)
    kwargs.setdefault("pool_size", 5 if is_remote else 20)
    kwargs.setdefault("max_overflow", 5 if is_remote else 10)
    return create_async_engine(
        url,
        echo=settings.APP_DEBUG,
        connect_args=_build_connect_args(url),
        pool_pre_ping=True,
        pool_recycle=300 if is_remote else -1,
        **kwargs,
    )


# Prefer direct connection (bypasses PgBouncer) when available
_db_url = settings.DATABASE_URL_DIRECT or settings.DATABASE_URL

engine = build_engine(_db_url)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def worker_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for Celery tasks, which run each job on a fresh event loop.

    Pooled asyncpg connections are bound to the loop that opened them, so
    workers get a throwaway engine without a pool.
    """
    worker_engine = create_async_engine(_db_url, poolclass=NullPool, connect_args=_build_connect_args(_db_url))
    try:
        async with async_sessionmaker(worker_engine, class_=AsyncSession, expire_on_commit=False)() as session:
            yield session
    finally:
        await worker_engine.dispose()
