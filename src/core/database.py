from psycopg_pool import AsyncConnectionPool
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from core.config import settings

# Raw pool for atomic single-statement writes (quota ledger, turn appends).
# Opened and closed by the application lifespan.
pool = AsyncConnectionPool(conninfo=settings.database_url, open=False)

# SQLModel / SQLAlchemy async engine for read queries
engine = create_async_engine(settings.async_database_url, echo=False, future=True)

async_session_maker = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
