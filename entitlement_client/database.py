from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from entitlement_client.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _engine_for(url: str):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            # Share one connection so every session sees the same in-memory database
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url)


engine = _engine_for(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Database Models
class EntitlementRecordRow(Base):
    __tablename__ = "entitlement_records"

    product_id = Column(String(191), primary_key=True)

    # Cached verdict
    verified = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=False, default="")
    licensed_item_meta = Column(JSON)  # Terms of use from the last successful check

    # Selected provider and its resolved endpoint
    provider = Column(String(100), nullable=False)
    origin = Column(String(255), nullable=False, default="")
    endpoint = Column(String(255), nullable=False, default="")
    seller_site = Column(String(255), nullable=False, default="")

    last_checked_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

class ValidationAttemptRow(Base):
    __tablename__ = "entitlement_validation_attempts"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(String(191), nullable=False, index=True)
    provider = Column(String(100), nullable=False)

    # Attempt Result
    result = Column(String(20), nullable=False)  # success, failure, fail_open
    error_message = Column(Text)

    attempted_at = Column(DateTime(timezone=True), default=utcnow, index=True)


def init_db(bind=None):
    """Create tables on the given engine (the configured one by default)."""
    Base.metadata.create_all(bind=bind or engine)


def create_session_factory(url: str, create_tables: bool = True) -> sessionmaker:
    """Build a session factory for a database other than the configured one."""
    custom_engine = _engine_for(url)
    if create_tables:
        init_db(custom_engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=custom_engine)
