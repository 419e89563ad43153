from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

settings = get_settings()

# Booking writes rely on InnoDB next-key locks taken by locking range reads,
# which only cover gaps at REPEATABLE READ or stricter.
engine = create_async_engine(
    settings.database_url,
    echo=settings.echo_sql,
    isolation_level="REPEATABLE READ",
    pool_pre_ping=True,
    pool_recycle=3600,
)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
