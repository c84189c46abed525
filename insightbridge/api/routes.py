import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from insightbridge.graph.agents import codebase_counts, stream_techspec_agent
from insightbridge.graph.graph import run_insights_turn, run_intake_turn, run_techspec_turn
from insightbridge.services.insights import InsightStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


class AgentMessageRequest(BaseModel):
    # Loosely typed so bad input gets a 400 "Validation Error", not a 422
    message: Any = None
    conversationHistory: Any = None
    structuredRequest: Any = None


class SubmitInsightRequest(BaseModel):
    insight: Any = None


def _store(request: Request) -> InsightStore:
    return request.app.state.insight_store


def _session_id(request: Request) -> str:
    return request.state.session_id


def _short(session_id: str) -> str:
    return session_id[:8] + "..."


def _error(status_code: int, error: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "message": message})


def _validate_agent_request(body: AgentMessageRequest) -> None:
    if not isinstance(body.message, str) or not body.message.strip():
        raise _error(400, "Validation Error", "Message is required and must be a non-empty string")
    if body.conversationHistory is not None and not isinstance(body.conversationHistory, list):
        raise _error(400, "Validation Error", "conversationHistory must be an array if provided")
    if body.structuredRequest is not None and not isinstance(body.structuredRequest, dict):
        raise _error(400, "Validation Error", "structuredRequest must be an object if provided")


# ===========================================================================
# AGENT ROUTES
# ===========================================================================

# ---------------------------------------------------------------------------
# POST /api/agents/intake  (CSM)
# ---------------------------------------------------------------------------

@router.post("/agents/intake")
async def intake(body: AgentMessageRequest, request: Request):
    _validate_agent_request(body)
    try:
        result = await run_intake_turn(body.message, body.conversationHistory, body.structuredRequest)
    except Exception as exc:
        logger.error("Intake agent error: %s", exc)
        raise _error(500, "Agent Error", str(exc) or "Failed to process request with intake agent")
    return {"success": True, **result, "sessionId": _short(_session_id(request))}


# ---------------------------------------------------------------------------
# POST /api/agents/insights  (PM)
# ---------------------------------------------------------------------------

@router.post("/agents/insights")
async def insights_chat(body: AgentMessageRequest, request: Request):
    _validate_agent_request(body)
    session_id = _session_id(request)
    try:
        result = await run_insights_turn(session_id, body.message, body.conversationHistory, _store(request))
    except Exception as exc:
        logger.error("Insights agent error: %s", exc)
        raise _error(500, "Agent Error", str(exc) or "Failed to process request with insights agent")
    return {"success": True, **result, "sessionId": _short(session_id)}


# ---------------------------------------------------------------------------
# POST /api/agents/techspec  (Engineering)
# ---------------------------------------------------------------------------

@router.post("/agents/techspec")
async def techspec(body: AgentMessageRequest, request: Request):
    _validate_agent_request(body)
    session_id = _session_id(request)
    try:
        result = await run_techspec_turn(session_id, body.message, body.conversationHistory, _store(request))
    except Exception as exc:
        logger.error("Tech spec agent error: %s", exc)
        raise _error(500, "Agent Error", str(exc) or "Failed to process request with tech spec agent")
    return {"success": True, **result, "sessionId": _short(session_id)}


@router.post("/agents/techspec/stream")
async def techspec_stream(body: AgentMessageRequest, request: Request):
    """
    Stream a conversational Tech Spec reply via SSE.

    SSE event sequence:
      start → delta (×N) → done   (or error)
    """
    _validate_agent_request(body)
    session_id = _session_id(request)
    spec = await _store(request).latest_spec(session_id)

    async def generate():
        yield {"event": "start", "data": json.dumps({"mode": "conversational"})}
        try:
            async for delta in stream_techspec_agent(body.message, body.conversationHistory, spec):
                yield {"event": "delta", "data": json.dumps({"text": delta})}
        except Exception as exc:
            logger.error("Tech spec stream failed: %s", exc)
            yield {"event": "error", "data": json.dumps({"error": "Agent Error", "message": str(exc)})}
            return
        yield {
            "event": "done",
            "data": json.dumps({"mode": "conversational", "codebaseContext": codebase_counts()}),
        }

    return EventSourceResponse(generate())


@router.get("/agents/techspec/specs")
async def techspec_specs(request: Request):
    session_id = _session_id(request)
    specs = await _store(request).list_specs(session_id)
    return {"success": True, "specs": specs, "count": len(specs), "sessionId": _short(session_id)}


# ===========================================================================
# INSIGHT REPOSITORY ROUTES
# ===========================================================================

@router.post("/insights/submit")
async def submit_insight(body: SubmitInsightRequest, request: Request):
    insight = body.insight
    if not insight or not isinstance(insight, dict):
        raise _error(400, "Validation Error", "Insight data is required")
    customer, feature = insight.get("customer"), insight.get("request")
    if not (isinstance(customer, dict) and customer and isinstance(feature, dict) and feature):
        raise _error(400, "Validation Error", "Insight must include customer and request data")

    session_id = _session_id(request)
    try:
        stored = await _store(request).submit_insight(session_id, insight)
    except Exception as exc:
        logger.error("Error submitting insight: %s", exc)
        raise _error(500, "Submission Error", str(exc) or "Failed to submit insight")
    return {
        "success": True,
        "insight": stored,
        "message": "Insight submitted successfully",
        "sessionId": _short(session_id),
    }


@router.get("/insights")
async def list_insights(
    request: Request,
    tier: str | None = None,
    priority: str | None = None,
    category: str | None = None,
    minCompleteness: int | None = None,
):
    session_id = _session_id(request)
    insights = await _store(request).list_insights(
        session_id,
        tier=tier,
        priority=priority,
        category=category,
        min_completeness=minCompleteness,
    )
    return {"success": True, "insights": insights, "count": len(insights), "sessionId": _short(session_id)}


@router.get("/insights/count")
async def count_insights(request: Request):
    session_id = _session_id(request)
    count = await _store(request).count_insights(session_id)
    return {"success": True, "count": count, "sessionId": _short(session_id)}


@router.get("/insights/stats")
async def insight_stats(request: Request):
    session_id = _session_id(request)
    stats = await _store(request).insight_stats(session_id)
    return {"success": True, "stats": stats, "sessionId": _short(session_id)}


@router.delete("/insights/clear")
async def clear_insights(request: Request):
    session_id = _session_id(request)
    cleared = await _store(request).clear_insights(session_id)
    return {
        "success": True,
        "message": "All insights cleared for this session",
        "cleared": cleared,
        "sessionId": _short(session_id),
    }


@router.post("/insights/reset")
async def reset_session(request: Request):
    session_id = _session_id(request)
    store = _store(request)
    cleared = await store.clear_insights(session_id)
    specs = await store.clear_specs(session_id)
    return {
        "success": True,
        "message": "All session data has been reset",
        "cleared": {"insights": cleared, "specs": specs},
        "sessionId": _short(session_id),
    }
