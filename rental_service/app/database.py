from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
import os
from dotenv import load_dotenv

load_dotenv()


def _database_url() -> str:
    url = os.getenv("RENTAL_DB_URL")
    if not url:
        raise RuntimeError("Missing required environment variable: RENTAL_DB_URL")
    # Заменяем postgresql:// на postgresql+asyncpg://
    return url.replace("postgresql://", "postgresql+asyncpg://")


DATABASE_URL = _database_url()

# Один движок на процесс, создается при импорте
engine = create_async_engine(
    DATABASE_URL,
    echo=os.getenv("DB_ECHO", "false").lower() == "true",
)

# Асинхронная фабрика сессий
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()
