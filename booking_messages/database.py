from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from booking_messages.config import settings
import os

# Tests must never run against a shared database
if os.getenv("TESTING") == "true" and not settings.DATABASE_URL.startswith("sqlite"):
    import warnings
    warnings.warn(
        f"Tests are configured but DATABASE_URL points to non-SQLite: {settings.DATABASE_URL[:50]}...\n"
        "Set DATABASE_URL=sqlite:///:memory: before importing booking_messages modules.",
        RuntimeWarning,
        stacklevel=2,
    )

if settings.DATABASE_URL.startswith("sqlite"):
    from sqlalchemy.pool import NullPool
    # SQLite doesn't support max_overflow, pool_timeout, pool_recycle or pool_pre_ping
    engine_kwargs = {
        "connect_args": {"check_same_thread": False},
        "poolclass": NullPool,
        "echo": False,
    }
else:
    engine_kwargs = {
        "connect_args": {"connect_timeout": 10},
        "pool_size": 20,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "pool_timeout": 30,
        "echo": False,  # Set to True for SQL query logging (debug only)
    }

engine = create_engine(settings.DATABASE_URL, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
