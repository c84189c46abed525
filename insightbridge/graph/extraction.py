"""
Structured extraction: a secondary Claude call that turns the intake
transcript into a StructuredRequest.
"""

import copy
import json
import logging
from pathlib import Path

from insightbridge.graph.schema import (
    calculate_completeness,
    create_empty_request,
    now_iso,
    to_number,
)
from insightbridge.services import llm
from insightbridge.services.catalog import customer_to_record

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).parent.parent / "prompts"
_MAX_TOKENS = 1024

# Sub-objects the extraction call is allowed to write
_MERGED_SECTIONS = ("request", "impact", "additional")

_COUNT_FIELDS = {("impact", "usersAffected")}
_AMOUNT_FIELDS = {("impact", "revenueAtRisk"), ("additional", "customBudget")}


def _load_prompt(name: str) -> str:
    return (_PROMPTS_DIR / name).read_text(encoding="utf-8")


def strip_code_fences(raw: str) -> str:
    raw = raw.strip()
    if "```" in raw:
        raw = raw.split("```")[1]
        if raw.startswith("json"):
            raw = raw[4:]
    return raw.strip()


def _seed(
    seed_customer: dict | None,
    seed_similar_requests: list[str] | None,
    base_request: dict | None,
) -> dict:
    template = copy.deepcopy(base_request) if base_request else create_empty_request()
    empty = create_empty_request()
    for section, defaults in empty.items():
        current = template.get(section)
        template[section] = {**defaults, **current} if isinstance(current, dict) else defaults

    if seed_customer:
        template["customer"].update(customer_to_record(seed_customer))
    if seed_similar_requests:
        template["additional"]["similarRequests"] = list(seed_similar_requests)
    return template


def _request_ids(value) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, (list, tuple)):
        return []
    ids = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("id")
        if isinstance(item, (str, int)) and not isinstance(item, bool) and str(item).strip():
            ids.append(str(item))
    return ids


def _coerce(section: str, key: str, value):
    """Give a model-supplied value the type the record uses for that field."""
    if (section, key) in _COUNT_FIELDS:
        return None if value is None else int(to_number(value))
    if (section, key) in _AMOUNT_FIELDS:
        return None if value is None else to_number(value)
    if key == "similarRequests":
        return _request_ids(value)
    if key == "betaTesting":
        if isinstance(value, str):
            return value.strip().lower() in ("true", "yes")
        return bool(value)
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def merge_extracted(template: dict, extracted: dict) -> dict:
    """
    Overwrite template keys with every key the extraction returned, empty
    values included. A sparser pass can therefore clear earlier answers.
    Values are coerced to the field's type on the way in.
    """
    for section in _MERGED_SECTIONS:
        values = extracted.get(section)
        if isinstance(values, dict):
            template[section].update(
                {key: _coerce(section, key, value) for key, value in values.items()}
            )
    return template


async def _run_extraction(transcript: list[dict]) -> dict:
    response = await llm.send_message(
        [{"role": "user", "content": json.dumps(transcript, indent=2)}],
        system=_load_prompt("extraction.txt"),
        max_tokens=_MAX_TOKENS,
    )
    raw = strip_code_fences(llm.extract_text_content(response))
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        logger.error("Could not parse extraction output: %s", exc)
        return {}
    if not isinstance(parsed, dict):
        logger.error("Extraction output is not a JSON object: %s", type(parsed).__name__)
        return {}
    return parsed


async def extract_structured_request(
    transcript: list[dict],
    seed_customer: dict | None = None,
    seed_similar_requests: list[str] | None = None,
    base_request: dict | None = None,
) -> dict:
    """
    Build a StructuredRequest from the full conversation.

    Never raises: on any failure the seeded template comes back with its
    completeness recomputed.
    """
    record = _seed(seed_customer, seed_similar_requests, base_request)

    try:
        extracted = await _run_extraction(transcript)
        record = merge_extracted(record, extracted)
    except Exception as exc:
        logger.error("Structured extraction failed: %s", exc)

    record["meta"]["completeness"] = calculate_completeness(record)
    record["meta"]["requestDate"] = now_iso()
    return record
