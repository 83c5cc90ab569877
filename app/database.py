# app/database.py
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from app.config import settings

# Engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug  # log SQL
)

# Session factory
SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False
)

# Base class for all models
Base = declarative_base()

# DB session dependency (FastAPI)
async def get_db():
    """Open and close a DB session"""
    async with SessionLocal() as db:
        yield db
