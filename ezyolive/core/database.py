from sqlalchemy import create_engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
from functools import wraps
import logging
import redis

from .config import settings
from .exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

_database_url = settings.get_database_url

# Connection pool settings only apply to server databases
if _database_url.startswith("sqlite"):
    engine = create_engine(
        _database_url,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        _database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Redis client (connects lazily on first command)
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client

def translate_store_errors(func):
    """Re-raise connectivity failures from the database as StoreUnavailableError."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            logger.error(f"Database unavailable in {func.__qualname__}: {exc}")
            raise StoreUnavailableError(
                "The data store is temporarily unavailable, please retry"
            ) from exc
    return wrapper

# Database initialization
def init_db():
    """Initialize database tables."""
    from .. import models  # noqa: F401  (register mappers)
    Base.metadata.create_all(bind=engine)
