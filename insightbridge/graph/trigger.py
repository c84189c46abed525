"""
Inter-agent trigger protocol.

The Insights agent asks for a technical analysis by writing the marker
[TRIGGER_TECH_ANALYSIS] followed by a JSON object describing the feature.
scan_for_trigger() turns that text into a tagged result; nothing here calls
the LLM.
"""

import json
import logging
from dataclasses import dataclass, field

from insightbridge.graph.schema import to_number
from insightbridge.graph.state import FeatureRequirements

logger = logging.getLogger(__name__)

TRIGGER_MARKER = "[TRIGGER_TECH_ANALYSIS]"

ADVISORY_NOTE = (
    "\n\n⚠️ Note: There was an issue initiating technical analysis. "
    "Please try again or contact the Engineering Lead directly."
)

_TITLE_MAX_CHARS = 80


@dataclass(frozen=True)
class NoTrigger:
    display_text: str
    triggered: bool = field(default=False, init=False)
    payload: None = field(default=None, init=False)


@dataclass(frozen=True)
class MalformedTrigger:
    display_text: str
    reason: str
    triggered: bool = field(default=False, init=False)
    payload: None = field(default=None, init=False)


@dataclass(frozen=True)
class Triggered:
    display_text: str
    payload: FeatureRequirements
    triggered: bool = field(default=True, init=False)


TriggerScan = NoTrigger | MalformedTrigger | Triggered


def extract_balanced_json(text: str) -> str | None:
    """
    Return the first {...} block of text, matched by brace depth.

    Only counts braces; a lone brace inside a quoted string throws the
    count off.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    for i in range(start, len(text)):
        char = text[i]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def normalize_feature_requirements(raw: str | dict) -> FeatureRequirements:
    """Accept a free-text or object payload and return the canonical shape."""
    if isinstance(raw, str):
        text = raw.strip()
        first_line = text.splitlines()[0] if text else ""
        return {
            "title": first_line[:_TITLE_MAX_CHARS],
            "description": text,
            "businessContext": "",
            "technicalRequirements": "",
            "customerData": {"count": 0, "totalARR": 0, "urgency": ""},
        }

    if not isinstance(raw, dict):
        raise TypeError(f"Feature requirements must be a string or object, got {type(raw).__name__}")

    customer_data = raw.get("customerData") or {}
    if not isinstance(customer_data, dict):
        customer_data = {}

    try:
        count = int(to_number(customer_data.get("count")))
    except (OverflowError, ValueError):
        count = 0

    return {
        "title": str(raw.get("title") or ""),
        "description": str(raw.get("description") or ""),
        "businessContext": str(raw.get("businessContext") or ""),
        "technicalRequirements": str(raw.get("technicalRequirements") or ""),
        "customerData": {
            "count": count,
            "totalARR": to_number(customer_data.get("totalARR")),
            "urgency": str(customer_data.get("urgency") or ""),
        },
    }


def degraded_display(text: str) -> str:
    """Text before the marker plus the advisory note."""
    index = text.find(TRIGGER_MARKER)
    leading = text[:index] if index != -1 else text
    return leading.strip() + ADVISORY_NOTE


def scan_for_trigger(text: str) -> TriggerScan:
    index = text.find(TRIGGER_MARKER)
    if index == -1:
        return NoTrigger(display_text=text)

    after = text[index + len(TRIGGER_MARKER):]
    block = extract_balanced_json(after)
    if block is None:
        logger.warning("Trigger marker found but no balanced JSON object follows it")
        return MalformedTrigger(display_text=degraded_display(text), reason="no balanced JSON object")

    try:
        parsed = json.loads(block)
        payload = normalize_feature_requirements(parsed)
    except (ValueError, TypeError) as exc:
        logger.error("Trigger payload could not be parsed: %s", exc)
        return MalformedTrigger(display_text=degraded_display(text), reason=str(exc))

    return Triggered(display_text=text[:index].strip(), payload=payload)
