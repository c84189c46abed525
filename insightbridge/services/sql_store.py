"""
SQLAlchemy-backed InsightStore (INSIGHT_STORE_BACKEND=sql).
"""

import datetime
import logging
from collections.abc import Callable

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from insightbridge import settings
from insightbridge.database import (
    InsightRecord,
    SessionRecord,
    TechSpecRecord,
    create_tables,
    make_engine,
    make_sessionmaker,
    utcnow,
)
from insightbridge.graph.schema import to_number
from insightbridge.services.insights import InsightStore, enrich_insight, enrich_spec, require_session

logger = logging.getLogger(__name__)


def _column(value) -> str | None:
    return str(value) if value else None


class SqlInsightStore(InsightStore):
    def __init__(
        self,
        engine: AsyncEngine,
        ttl_seconds: float | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._engine = engine
        self._sessionmaker = make_sessionmaker(engine)
        self._ttl = settings.SESSION_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._ready = False

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "SqlInsightStore":
        return cls(make_engine(url), **kwargs)

    async def _ensure_tables(self) -> None:
        if not self._ready:
            await create_tables(self._engine)
            self._ready = True

    async def _touch(self, db: AsyncSession, session_id: str) -> None:
        require_session(session_id)
        now = self._clock()
        row = await db.get(SessionRecord, session_id)
        if row is None:
            db.add(SessionRecord(session_id=session_id, created_at=now, last_accessed_at=now))
        else:
            row.last_accessed_at = now
        await db.flush()

    # ── insights ──────────────────────────────────────────────────────────────

    async def submit_insight(self, session_id: str, record: dict) -> dict:
        if not record:
            raise ValueError("Insight data is required")
        await self._ensure_tables()
        insight = enrich_insight(record)
        customer = insight.get("customer") or {}
        request = insight.get("request") or {}

        async with self._sessionmaker() as db:
            await self._touch(db, session_id)
            db.add(InsightRecord(
                session_id=session_id,
                insight_id=insight["insightId"],
                tier=_column(customer.get("tier")),
                priority=_column(request.get("priority")),
                category=_column(request.get("category")),
                completeness=int(to_number((insight.get("meta") or {}).get("completeness"))),
                payload=insight,
                submitted_at=self._clock(),
            ))
            await db.commit()

        logger.info("Insight %s stored for session %s...", insight["insightId"], session_id[:8])
        return insight

    async def list_insights(self, session_id, tier=None, priority=None, category=None, min_completeness=None):
        await self._ensure_tables()
        query = select(InsightRecord).where(InsightRecord.session_id == session_id)
        if tier:
            query = query.where(InsightRecord.tier == tier)
        if priority:
            query = query.where(InsightRecord.priority == priority)
        if category:
            query = query.where(InsightRecord.category == category)
        if min_completeness is not None:
            query = query.where(InsightRecord.completeness >= min_completeness)

        async with self._sessionmaker() as db:
            await self._touch(db, session_id)
            result = await db.execute(query.order_by(InsightRecord.id))
            rows = result.scalars().all()
            await db.commit()
        return [row.payload for row in rows]

    async def count_insights(self, session_id: str) -> int:
        if not session_id:
            return 0
        await self._ensure_tables()
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(func.count()).select_from(InsightRecord).where(InsightRecord.session_id == session_id)
            )
            return result.scalar_one()

    async def clear_insights(self, session_id: str) -> int:
        await self._ensure_tables()
        async with self._sessionmaker() as db:
            await self._touch(db, session_id)
            result = await db.execute(delete(InsightRecord).where(InsightRecord.session_id == session_id))
            await db.commit()
        logger.info("Cleared insights for session %s... (had %d)", session_id[:8], result.rowcount)
        return result.rowcount

    # ── tech specs ────────────────────────────────────────────────────────────

    async def save_spec(self, session_id: str, spec: dict) -> dict:
        await self._ensure_tables()
        stored = enrich_spec(spec)
        async with self._sessionmaker() as db:
            await self._touch(db, session_id)
            db.add(TechSpecRecord(
                session_id=session_id,
                spec_id=stored["specId"],
                feature_title=stored.get("featureTitle") or "",
                payload=stored,
                created_at=self._clock(),
            ))
            await db.commit()
        return stored

    async def list_specs(self, session_id: str) -> list[dict]:
        await self._ensure_tables()
        async with self._sessionmaker() as db:
            await self._touch(db, session_id)
            result = await db.execute(
                select(TechSpecRecord)
                .where(TechSpecRecord.session_id == session_id)
                .order_by(TechSpecRecord.id)
            )
            rows = result.scalars().all()
            await db.commit()
        return [row.payload for row in rows]

    async def clear_specs(self, session_id: str) -> int:
        await self._ensure_tables()
        async with self._sessionmaker() as db:
            await self._touch(db, session_id)
            result = await db.execute(delete(TechSpecRecord).where(TechSpecRecord.session_id == session_id))
            await db.commit()
        return result.rowcount

    # ── lifecycle ─────────────────────────────────────────────────────────────

    async def _delete_sessions(self, db: AsyncSession, session_ids: list[str]) -> None:
        await db.execute(delete(InsightRecord).where(InsightRecord.session_id.in_(session_ids)))
        await db.execute(delete(TechSpecRecord).where(TechSpecRecord.session_id.in_(session_ids)))
        await db.execute(delete(SessionRecord).where(SessionRecord.session_id.in_(session_ids)))

    async def delete_session(self, session_id: str) -> bool:
        await self._ensure_tables()
        async with self._sessionmaker() as db:
            existed = await db.get(SessionRecord, session_id) is not None
            if existed:
                await self._delete_sessions(db, [session_id])
                await db.commit()
        return existed

    async def sweep_expired(self) -> int:
        await self._ensure_tables()
        cutoff = self._clock() - datetime.timedelta(seconds=self._ttl)
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(SessionRecord.session_id).where(SessionRecord.last_accessed_at < cutoff)
            )
            expired = list(result.scalars().all())
            if expired:
                await self._delete_sessions(db, expired)
                await db.commit()
        if expired:
            logger.info("Cleaned up %d expired insight session(s)", len(expired))
        return len(expired)

    async def close(self) -> None:
        await self._engine.dispose()
