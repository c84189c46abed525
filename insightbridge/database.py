import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime.datetime:
    # Stored naive; SQLite has no timezone support
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def async_url(raw_url: str) -> str:
    return raw_url.replace("sqlite:///", "sqlite+aiosqlite:///")


def make_engine(raw_url: str) -> AsyncEngine:
    return create_async_engine(async_url(raw_url), echo=False)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


class SessionRecord(Base):
    __tablename__ = "sessions"

    session_id: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow)
    last_accessed_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow, index=True)


class InsightRecord(Base):
    __tablename__ = "insights"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String, ForeignKey("sessions.session_id"), index=True)
    insight_id: Mapped[str] = mapped_column(String, index=True)
    # Filter columns mirrored from the payload
    tier: Mapped[str | None] = mapped_column(String, nullable=True)
    priority: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    completeness: Mapped[int] = mapped_column(Integer, default=0)
    payload: Mapped[dict] = mapped_column(JSON)
    submitted_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow)


class TechSpecRecord(Base):
    __tablename__ = "tech_specs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String, ForeignKey("sessions.session_id"), index=True)
    spec_id: Mapped[str] = mapped_column(String, index=True)
    feature_title: Mapped[str] = mapped_column(String, default="")
    payload: Mapped[dict] = mapped_column(JSON)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow)


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
