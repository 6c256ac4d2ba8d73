from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from libs.common.config import get_settings

settings = get_settings()


def _engine_kwargs() -> dict:
    if not settings.is_postgres:
        return {}
    statement_timeout_ms = int(settings.DB_STATEMENT_TIMEOUT_SECONDS * 1000)
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "connect_args": {"options": f"-c statement_timeout={statement_timeout_ms}"},
    }


# Create async engine
# echo=True for local dev to see SQL queries
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=(settings.ENVIRONMENT == "local"),
    future=True,
    pool_pre_ping=True,  # Test connections before using
    **_engine_kwargs(),
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)

# Checkout runs at a stricter isolation level than the rest of the API
CheckoutSessionLocal = async_sessionmaker(
    bind=engine.execution_options(isolation_level=settings.CHECKOUT_ISOLATION_LEVEL),
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)
