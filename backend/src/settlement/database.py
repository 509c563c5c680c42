"""Database session management with async SQLAlchemy."""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from settlement.config import settings

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug and settings.app_env != "production",
    pool_pre_ping=True,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


# Declarative base for all models
Base = declarative_base()
