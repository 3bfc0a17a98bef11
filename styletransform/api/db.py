import logging
from datetime import datetime, timezone
from typing import Generator

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
    text,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from styletransform.config import settings

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


DB_URL = settings.resolved_db_url()


# ---------- SQLAlchemy base / engine / session ----------

Base = declarative_base()

_connect_args = {}
if DB_URL.startswith("sqlite"):
    _connect_args = {
        "check_same_thread": False,
        "timeout": 30,
    }

engine = create_engine(
    DB_URL,
    echo=False,
    future=True,
    connect_args=_connect_args,
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ---------- Models ----------

class Generation(Base):
    """
    One completed generation, as returned to the caller.
      - method: tier that produced the image (or 'mock-fallback')
      - cost: per-image price of that tier
      - meta_json: provider extras + tiers_tried / error_chain
    """
    __tablename__ = "generations"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    type = Column(String(32), nullable=False, default="text-to-image")
    prompt = Column(Text, nullable=False)
    style_preset = Column(String(64), nullable=True)
    settings_json = Column(Text, nullable=True, default="{}")
    input_image_url = Column(Text, nullable=True)

    image_url = Column(Text, nullable=False)
    thumbnail_url = Column(Text, nullable=True)
    method = Column(String(64), nullable=False)
    cost = Column(Numeric(10, 4), nullable=False, default=0)
    status = Column(String(16), nullable=False, default="completed")
    meta_json = Column(Text, nullable=True, default="{}")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class UserUsage(Base):
    __tablename__ = "user_usage"

    user_id = Column(String, primary_key=True)
    generations_used = Column(Integer, nullable=False, default=0)
    total_generations = Column(Integer, nullable=False, default=0)
    is_premium = Column(Boolean, nullable=False, default=False)
    last_generation_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=True)


class Event(Base):
    __tablename__ = "events"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=True)
    ts = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    kind = Column(String, nullable=False)     # e.g. image.generate.ok, generation.delete
    message = Column(String, nullable=False)  # short summary
    meta_json = Column(Text, nullable=True)   # JSON string payload


Index("idx_generations_user_created", Generation.user_id, Generation.created_at)
Index("idx_events_kind_ts", Event.kind, Event.ts)


# ---------- init ----------

def init_db() -> None:
    """Create all tables if they don't exist, and harden SQLite settings."""
    Base.metadata.create_all(bind=engine)
    if DB_URL.startswith("sqlite"):
        with engine.begin() as conn:
            conn.execute(text("PRAGMA journal_mode=WAL;"))
            conn.execute(text("PRAGMA synchronous=NORMAL;"))
    log.info("event=db.ready url=%s", DB_URL.split("@")[-1])
