import datetime
import logging
from collections.abc import AsyncIterator, Mapping
from pathlib import Path

from insightbridge.graph.formatters import (
    format_codebase_context,
    format_insights_context,
    format_intake_context,
    format_spec_context,
)
from insightbridge.graph.state import ConversationTurn, FeatureRequirements
from insightbridge.graph.trigger import normalize_feature_requirements
from insightbridge.services import llm
from insightbridge.services.catalog import load_codebase, load_customers, load_requests

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).parent.parent / "prompts"

_INTAKE_MAX_TOKENS = 1024
_INSIGHTS_MAX_TOKENS = 2048
_TECHSPEC_MAX_TOKENS = 4096

TECHSPEC_MODES = ("autonomous", "conversational")


def _load_prompt(name: str) -> str:
    return (_PROMPTS_DIR / name).read_text(encoding="utf-8")


def _render(template: str, **values: str) -> str:
    # str.format would trip over the JSON examples in the prompts
    for key, value in values.items():
        template = template.replace("{" + key + "}", value)
    return template


def filter_history(history) -> list[ConversationTurn]:
    """Keep only well-formed user/assistant turns; anything else is dropped."""
    turns: list[ConversationTurn] = []
    for entry in history or []:
        if not isinstance(entry, Mapping):
            continue
        role = entry.get("role")
        content = entry.get("content")
        if role not in ("user", "assistant") or not isinstance(content, str) or not content:
            continue
        turns.append({"role": role, "content": content})
    return turns


async def _call_agent(name: str, system_prompt: str, history, message: str, max_tokens: int) -> dict:
    """Generic agent runner. Returns {"text": str, "usage": {"inputTokens", "outputTokens"}}."""
    if not isinstance(message, str) or not message.strip():
        raise ValueError("Message is required and must be a non-empty string")

    messages = filter_history(history)
    messages.append(llm.build_message("user", message))

    response = await llm.send_message(messages, system=system_prompt, max_tokens=max_tokens)
    usage = response["usage"]
    logger.info(
        "Agent %s replied (%d in / %d out tokens)",
        name, usage["input_tokens"], usage["output_tokens"],
    )
    return {
        "text": llm.extract_text_content(response),
        "usage": {"inputTokens": usage["input_tokens"], "outputTokens": usage["output_tokens"]},
    }


# ---------------------------------------------------------------------------
# Intake (CSM)
# ---------------------------------------------------------------------------

def build_intake_prompt(matched_customer: dict | None = None, similar_requests: list[dict] | None = None) -> str:
    context = format_intake_context(load_customers(), load_requests(), matched_customer, similar_requests)
    return _render(_load_prompt("intake.txt"), intake_context=context)


async def intake_agent(
    message: str,
    history: list[ConversationTurn] | None = None,
    matched_customer: dict | None = None,
    similar_requests: list[dict] | None = None,
) -> dict:
    system_prompt = build_intake_prompt(matched_customer, similar_requests)
    return await _call_agent("intake", system_prompt, history, message, _INTAKE_MAX_TOKENS)


# ---------------------------------------------------------------------------
# Insights (PM)
# ---------------------------------------------------------------------------

def build_insights_prompt(insights: list[dict], stats: dict) -> str:
    return _render(_load_prompt("insights.txt"), insights_context=format_insights_context(insights, stats))


async def insights_agent(
    message: str,
    history: list[ConversationTurn] | None,
    insights: list[dict],
    stats: dict,
) -> dict:
    system_prompt = build_insights_prompt(insights, stats)
    return await _call_agent("insights", system_prompt, history, message, _INSIGHTS_MAX_TOKENS)


# ---------------------------------------------------------------------------
# Tech Spec (Engineering)
# ---------------------------------------------------------------------------

def codebase_counts() -> dict:
    codebase = load_codebase()
    return {
        "componentsCount": len(codebase.get("components", [])),
        "pastImplementationsCount": len(codebase.get("pastImplementations", [])),
    }


def build_techspec_prompt(mode: str = "conversational", spec: dict | None = None) -> str:
    if mode not in TECHSPEC_MODES:
        raise ValueError(f"Unknown tech spec mode: {mode}")
    base = _render(_load_prompt("techspec_base.txt"), codebase_context=format_codebase_context(load_codebase()))
    if mode == "autonomous":
        return base + _load_prompt("techspec_autonomous.txt")
    return base + _render(_load_prompt("techspec_conversational.txt"), spec_context=format_spec_context(spec))


async def techspec_agent(
    message: str,
    history: list[ConversationTurn] | None = None,
    mode: str = "conversational",
    spec: dict | None = None,
) -> dict:
    system_prompt = build_techspec_prompt(mode, spec)
    result = await _call_agent(f"techspec/{mode}", system_prompt, history, message, _TECHSPEC_MAX_TOKENS)
    return {**result, "mode": mode, "codebaseContext": codebase_counts()}


async def stream_techspec_agent(
    message: str,
    history: list[ConversationTurn] | None = None,
    spec: dict | None = None,
) -> AsyncIterator[str]:
    """Conversational Tech Spec reply, yielded as text deltas."""
    if not isinstance(message, str) or not message.strip():
        raise ValueError("Message is required and must be a non-empty string")

    messages = filter_history(history)
    messages.append(llm.build_message("user", message))
    system_prompt = build_techspec_prompt("conversational", spec)
    async for delta in llm.stream_message(messages, system=system_prompt, max_tokens=_TECHSPEC_MAX_TOKENS):
        yield delta


def build_autonomous_request(requirements: FeatureRequirements) -> str:
    """The user message handed to the Tech Spec agent in autonomous mode."""
    lines = ["Please analyze the following feature request and provide a complete technical specification:", ""]

    title = requirements["title"] or requirements["description"] or "Untitled Feature"
    lines += [f"**Feature:** {title}", ""]
    if requirements["description"] and requirements["description"] != title:
        lines += [f"**Description:** {requirements['description']}", ""]
    if requirements["businessContext"]:
        lines += ["**Business Context:**", requirements["businessContext"], ""]
    if requirements["technicalRequirements"]:
        lines += ["**Technical Requirements:**", requirements["technicalRequirements"], ""]

    customer_data = requirements["customerData"]
    if customer_data["count"] or customer_data["totalARR"]:
        lines += [
            "**Customer Impact:**",
            f"- Customer Count: {customer_data['count']}",
            f"- Total ARR: ${customer_data['totalARR']:,.0f}",
        ]
        if customer_data["urgency"]:
            lines.append(f"- Urgency: {customer_data['urgency']}")
        lines.append("")

    lines.append("Provide a comprehensive technical specification following the autonomous analysis format.")
    return "\n".join(lines)


async def perform_autonomous_analysis(session_id: str, feature_requirements: str | dict) -> dict:
    """
    Entry point for the trigger protocol: run the Tech Spec agent on a
    structured payload instead of free text.
    """
    requirements = normalize_feature_requirements(feature_requirements)
    logger.info(
        "Autonomous analysis for session %s...: %s",
        session_id[:8], requirements["title"] or "Untitled Feature",
    )
    result = await techspec_agent(build_autonomous_request(requirements), [], mode="autonomous")
    return {
        **result,
        "featureRequirements": requirements,
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }
