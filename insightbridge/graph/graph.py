import logging

from langgraph.graph import END, START, StateGraph

from insightbridge.graph.agents import (
    filter_history,
    insights_agent,
    intake_agent,
    perform_autonomous_analysis,
    techspec_agent,
)
from insightbridge.graph.extraction import extract_structured_request
from insightbridge.graph.schema import build_request_summary, validate_feature_request
from insightbridge.graph.state import InsightsState, IntakeState
from insightbridge.graph.trigger import Triggered, degraded_display, scan_for_trigger
from insightbridge.services.catalog import (
    find_customer_in_text,
    find_similar_requests,
    get_customer_by_name,
)
from insightbridge.services.insights import InsightStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Intake graph: lookup -> respond -> extract -> summarize
# ---------------------------------------------------------------------------

def _user_text(state: IntakeState) -> str:
    turns = [t["content"] for t in filter_history(state.get("history")) if t["role"] == "user"]
    turns.append(state["message"])
    return "\n".join(turns)


def lookup_node(state: IntakeState) -> dict:
    """Best-effort customer match and similar historical requests."""
    text = _user_text(state)
    customer = find_customer_in_text(text)
    if customer is None:
        known = ((state.get("base_request") or {}).get("customer") or {}).get("companyName")
        if known:
            customer = get_customer_by_name(known)
    similar = find_similar_requests(text)
    return {"context_found": {"customer": customer, "similarRequests": similar}}


async def respond_intake_node(state: IntakeState) -> dict:
    context = state.get("context_found") or {}
    result = await intake_agent(
        state["message"],
        state.get("history"),
        matched_customer=context.get("customer"),
        similar_requests=context.get("similarRequests"),
    )
    return {"response": result["text"], "usage": result["usage"]}


async def extract_node(state: IntakeState) -> dict:
    transcript = filter_history(state.get("history"))
    transcript.append({"role": "user", "content": state["message"]})
    transcript.append({"role": "assistant", "content": state["response"]})

    context = state.get("context_found") or {}
    structured = await extract_structured_request(
        transcript,
        seed_customer=context.get("customer"),
        seed_similar_requests=[r["id"] for r in context.get("similarRequests") or []],
        base_request=state.get("base_request"),
    )
    return {"structured_request": structured}


def _minimal_summary(record: dict, validation: dict) -> str:
    completeness = (record.get("meta") or {}).get("completeness", 0)
    lines = [f"**Feature Request Summary** ({completeness}% complete)"]
    if validation["missingFields"]:
        lines += ["", "**Still needed:** " + ", ".join(validation["missingFields"])]
    return "\n".join(lines)


def summarize_node(state: IntakeState) -> dict:
    record = state["structured_request"]
    try:
        validation = validate_feature_request(record)
    except Exception as exc:
        logger.error("Validating structured request failed: %s", exc)
        validation = {"isValid": False, "missingFields": []}

    try:
        summary = build_request_summary(record, validation)
    except Exception as exc:
        logger.error("Building request summary failed: %s", exc)
        summary = _minimal_summary(record, validation)

    return {"validation": validation, "request_summary": summary}


def compile_intake_graph():
    graph = StateGraph(IntakeState)

    graph.add_node("lookup", lookup_node)
    graph.add_node("respond", respond_intake_node)
    graph.add_node("extract", extract_node)
    graph.add_node("summarize", summarize_node)

    graph.add_edge(START, "lookup")
    graph.add_edge("lookup", "respond")
    graph.add_edge("respond", "extract")
    graph.add_edge("extract", "summarize")
    graph.add_edge("summarize", END)

    return graph.compile()


async def run_intake_turn(message: str, history=None, base_request: dict | None = None) -> dict:
    """One CSM turn. Only the primary agent call can make this raise."""
    final_state = await compile_intake_graph().ainvoke(
        {"message": message, "history": history or [], "base_request": base_request}
    )
    context = final_state.get("context_found") or {}
    return {
        "response": final_state["response"],
        "usage": final_state["usage"],
        "contextFound": {
            "customer": context.get("customer"),
            "similarRequests": context.get("similarRequests") or [],
        },
        "structuredRequest": final_state["structured_request"],
        "requestSummary": final_state["request_summary"],
        "validation": final_state["validation"],
    }


# ---------------------------------------------------------------------------
# Insights graph: load -> respond -> scan -> [dispatch] -> END
# ---------------------------------------------------------------------------

def scan_node(state: InsightsState) -> dict:
    scan = scan_for_trigger(state["response"])
    if scan.triggered:
        logger.info("Insights agent requested technical analysis: %s", scan.payload["title"])
    return {"scan": scan, "display_response": scan.display_text, "tech_analysis": None}


def _route_after_scan(state: InsightsState) -> str:
    return "dispatch" if isinstance(state.get("scan"), Triggered) else END


def compile_insights_graph(store: InsightStore):
    """Build the PM graph; nodes that touch the repository close over store."""

    async def load_node(state: InsightsState) -> dict:
        session_id = state["session_id"]
        insights = await store.list_insights(session_id)
        stats = await store.insight_stats(session_id)
        logger.info("Insights agent: session %s... has %d insight(s)", session_id[:8], len(insights))
        return {"insights": insights, "stats": stats}

    async def respond_node(state: InsightsState) -> dict:
        result = await insights_agent(state["message"], state.get("history"), state["insights"], state["stats"])
        return {"response": result["text"], "usage": result["usage"]}

    async def dispatch_node(state: InsightsState) -> dict:
        scan = state["scan"]
        try:
            analysis = await perform_autonomous_analysis(state["session_id"], scan.payload)
            title = analysis["featureRequirements"]["title"] or "Untitled Feature"
            saved = await store.save_spec(state["session_id"], {
                "featureTitle": title,
                "featureRequirements": analysis["featureRequirements"],
                "specification": analysis["text"],
                "usage": analysis["usage"],
                "timestamp": analysis["timestamp"],
            })
        except Exception as exc:
            logger.error("Technical analysis dispatch failed: %s", exc)
            return {"display_response": degraded_display(state["response"]), "tech_analysis": None}

        return {
            "display_response": scan.display_text,
            "tech_analysis": {
                "timestamp": saved["timestamp"],
                "featureTitle": title,
                "specification": saved["specification"],
                "specId": saved["specId"],
            },
        }

    graph = StateGraph(InsightsState)

    graph.add_node("load", load_node)
    graph.add_node("respond", respond_node)
    graph.add_node("scan", scan_node)
    graph.add_node("dispatch", dispatch_node)

    graph.add_edge(START, "load")
    graph.add_edge("load", "respond")
    graph.add_edge("respond", "scan")
    graph.add_conditional_edges("scan", _route_after_scan, {"dispatch": "dispatch", END: END})
    graph.add_edge("dispatch", END)

    return graph.compile()


async def run_insights_turn(session_id: str, message: str, history, store: InsightStore) -> dict:
    """One PM turn, including any autonomous technical analysis it triggers."""
    final_state = await compile_insights_graph(store).ainvoke(
        {"session_id": session_id, "message": message, "history": history or []}
    )
    tech_analysis = final_state.get("tech_analysis")
    return {
        "response": final_state["display_response"],
        "usage": final_state["usage"],
        "insightsContext": {
            "totalInsights": len(final_state["insights"]),
            "stats": final_state["stats"],
        },
        "techAnalysisTriggered": tech_analysis is not None,
        "techAnalysisResult": tech_analysis,
    }


# ---------------------------------------------------------------------------
# Tech Spec (conversational refinement)
# ---------------------------------------------------------------------------

async def run_techspec_turn(session_id: str, message: str, history, store: InsightStore) -> dict:
    spec = await store.latest_spec(session_id)
    result = await techspec_agent(message, history, mode="conversational", spec=spec)
    return {
        "response": result["text"],
        "usage": result["usage"],
        "mode": result["mode"],
        "codebaseContext": result["codebaseContext"],
    }
