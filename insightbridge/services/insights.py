"""
Session-scoped insight repository.

Stores the structured requests CSMs submit, plus the technical
specifications produced by autonomous analysis, keyed by session id.
Sessions idle for longer than the TTL are reclaimed by sweep_expired().
"""

import abc
import copy
import datetime
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from insightbridge import settings
from insightbridge.graph.schema import to_number

logger = logging.getLogger(__name__)

_HIGH_URGENCY = {"high", "critical"}


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _new_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def enrich_insight(record: dict) -> dict:
    """Copy of record with insightId, submittedAt and submittedBy filled in."""
    insight = copy.deepcopy(record)
    insight["insightId"] = insight.get("insightId") or _new_id("insight")
    insight["submittedAt"] = insight.get("submittedAt") or _now_iso()
    insight["submittedBy"] = insight.get("submittedBy") or "CSM"
    return insight


def enrich_spec(spec: dict) -> dict:
    stored = copy.deepcopy(spec)
    stored["specId"] = stored.get("specId") or _new_id("spec")
    stored["timestamp"] = stored.get("timestamp") or _now_iso()
    return stored


def filter_insights(
    insights: list[dict],
    tier: str | None = None,
    priority: str | None = None,
    category: str | None = None,
    min_completeness: int | None = None,
) -> list[dict]:
    """AND-combine the optional filters; None means no constraint."""
    result = insights
    if tier:
        result = [i for i in result if (i.get("customer") or {}).get("tier") == tier]
    if priority:
        result = [i for i in result if (i.get("request") or {}).get("priority") == priority]
    if category:
        result = [i for i in result if (i.get("request") or {}).get("category") == category]
    if min_completeness is not None:
        result = [
            i for i in result
            if to_number((i.get("meta") or {}).get("completeness")) >= min_completeness
        ]
    return result


def _label(value, default: str) -> str:
    return str(value) if value else default


def compute_stats(insights: list[dict]) -> dict:
    stats = {
        "totalInsights": len(insights),
        "totalARR": 0,
        "totalRevenueAtRisk": 0,
        "uniqueCustomers": 0,
        "byTier": {},
        "byPriority": {},
        "byCategory": {},
        "highUrgencyCount": 0,
    }
    customers: set[str] = set()

    for insight in insights:
        customer = insight.get("customer") or {}
        request = insight.get("request") or {}
        impact = insight.get("impact") or {}

        stats["totalARR"] += to_number(customer.get("arr"))
        stats["totalRevenueAtRisk"] += to_number(impact.get("revenueAtRisk"))
        if customer.get("companyName"):
            customers.add(str(customer["companyName"]))

        tier = _label(customer.get("tier"), "Unknown")
        stats["byTier"][tier] = stats["byTier"].get(tier, 0) + 1

        priority = _label(request.get("priority"), "Unknown")
        stats["byPriority"][priority] = stats["byPriority"].get(priority, 0) + 1

        category = _label(request.get("category"), "Uncategorized")
        stats["byCategory"][category] = stats["byCategory"].get(category, 0) + 1

        if priority in _HIGH_URGENCY:
            stats["highUrgencyCount"] += 1

    stats["uniqueCustomers"] = len(customers)
    return stats


# ---------------------------------------------------------------------------
# Storage interface
# ---------------------------------------------------------------------------

class InsightStore(abc.ABC):
    """Per-session storage for insights and technical specifications."""

    @abc.abstractmethod
    async def submit_insight(self, session_id: str, record: dict) -> dict: ...

    @abc.abstractmethod
    async def list_insights(
        self,
        session_id: str,
        tier: str | None = None,
        priority: str | None = None,
        category: str | None = None,
        min_completeness: int | None = None,
    ) -> list[dict]: ...

    @abc.abstractmethod
    async def count_insights(self, session_id: str) -> int: ...

    @abc.abstractmethod
    async def clear_insights(self, session_id: str) -> int: ...

    @abc.abstractmethod
    async def save_spec(self, session_id: str, spec: dict) -> dict: ...

    @abc.abstractmethod
    async def list_specs(self, session_id: str) -> list[dict]: ...

    @abc.abstractmethod
    async def clear_specs(self, session_id: str) -> int: ...

    @abc.abstractmethod
    async def delete_session(self, session_id: str) -> bool: ...

    @abc.abstractmethod
    async def sweep_expired(self) -> int:
        """Drop sessions idle longer than the TTL. Returns how many were removed."""

    async def insight_stats(self, session_id: str) -> dict:
        return compute_stats(await self.list_insights(session_id))

    async def latest_spec(self, session_id: str) -> dict | None:
        specs = await self.list_specs(session_id)
        return specs[-1] if specs else None

    async def close(self) -> None:
        pass


def require_session(session_id: str) -> None:
    if not session_id:
        raise ValueError("Session ID is required")


# ---------------------------------------------------------------------------
# In-process implementation
# ---------------------------------------------------------------------------

@dataclass
class _SessionBucket:
    created_at: float
    last_accessed_at: float
    insights: list[dict] = field(default_factory=list)
    specs: list[dict] = field(default_factory=list)


class InMemoryInsightStore(InsightStore):
    """Dict-backed store; lives as long as the process does."""

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = settings.SESSION_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._sessions: dict[str, _SessionBucket] = {}

    def _bucket(self, session_id: str) -> _SessionBucket:
        require_session(session_id)
        now = self._clock()
        bucket = self._sessions.get(session_id)
        if bucket is None:
            bucket = _SessionBucket(created_at=now, last_accessed_at=now)
            self._sessions[session_id] = bucket
        else:
            bucket.last_accessed_at = now
        return bucket

    async def submit_insight(self, session_id: str, record: dict) -> dict:
        if not record:
            raise ValueError("Insight data is required")
        insight = enrich_insight(record)
        bucket = self._bucket(session_id)
        bucket.insights.append(insight)
        logger.info(
            "Insight submitted to session %s...: %r from %s (%d total)",
            session_id[:8],
            (insight.get("request") or {}).get("title") or "Untitled",
            (insight.get("customer") or {}).get("companyName") or "Unknown Company",
            len(bucket.insights),
        )
        return copy.deepcopy(insight)

    async def list_insights(self, session_id, tier=None, priority=None, category=None, min_completeness=None):
        bucket = self._bucket(session_id)
        matched = filter_insights(bucket.insights, tier, priority, category, min_completeness)
        return copy.deepcopy(matched)

    async def count_insights(self, session_id: str) -> int:
        bucket = self._sessions.get(session_id) if session_id else None
        return len(bucket.insights) if bucket else 0

    async def clear_insights(self, session_id: str) -> int:
        bucket = self._bucket(session_id)
        previous = len(bucket.insights)
        bucket.insights = []
        logger.info("Cleared insights for session %s... (had %d)", session_id[:8], previous)
        return previous

    async def save_spec(self, session_id: str, spec: dict) -> dict:
        stored = enrich_spec(spec)
        self._bucket(session_id).specs.append(stored)
        return copy.deepcopy(stored)

    async def list_specs(self, session_id: str) -> list[dict]:
        return copy.deepcopy(self._bucket(session_id).specs)

    async def clear_specs(self, session_id: str) -> int:
        bucket = self._bucket(session_id)
        previous = len(bucket.specs)
        bucket.specs = []
        return previous

    async def delete_session(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def sweep_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, b in self._sessions.items() if now - b.last_accessed_at > self._ttl]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Cleaned up %d expired insight session(s)", len(expired))
        return len(expired)

    def session_count(self) -> int:
        return len(self._sessions)


def get_insight_store(backend: str | None = None) -> InsightStore:
    """Build the store selected by INSIGHT_STORE_BACKEND."""
    backend = backend or settings.INSIGHT_STORE_BACKEND
    if backend == "sql":
        from insightbridge.services.sql_store import SqlInsightStore

        return SqlInsightStore.from_url(settings.DATABASE_URL)
    if backend != "memory":
        logger.warning("Unknown insight store backend %r, using memory", backend)
    return InMemoryInsightStore()
