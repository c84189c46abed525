import json

import pytest

from insightbridge.graph.trigger import (
    ADVISORY_NOTE,
    TRIGGER_MARKER,
    MalformedTrigger,
    NoTrigger,
    Triggered,
    extract_balanced_json,
    normalize_feature_requirements,
    scan_for_trigger,
)

LEAD = "Acme Corp needs bulk export. I'm starting a technical analysis with Engineering."

PAYLOAD = {
    "title": "Bulk CSV Export for Reports",
    "description": "Export 200+ reports at once with {async} processing",
    "businessContext": "Enterprise customer ($150K ARR), renewal in 60 days",
    "technicalRequirements": "CSV format, notification on completion",
    "customerData": {"count": 1, "totalARR": 150000, "urgency": "High"},
}


def _agent_text(payload_json: str) -> str:
    return f"{LEAD}\n\n{TRIGGER_MARKER}\n{payload_json}\n\nThanks!"


def test_no_marker_returns_text_unchanged():
    result = scan_for_trigger("Three themes are emerging across Enterprise accounts.")

    assert isinstance(result, NoTrigger)
    assert result.triggered is False
    assert result.payload is None
    assert result.display_text == "Three themes are emerging across Enterprise accounts."


def test_valid_payload_with_nested_braces_triggers():
    result = scan_for_trigger(_agent_text(json.dumps(PAYLOAD, indent=2)))

    assert isinstance(result, Triggered)
    assert result.triggered is True
    assert result.payload == PAYLOAD
    assert result.display_text == LEAD
    assert TRIGGER_MARKER not in result.display_text


def test_deleted_closing_brace_is_malformed():
    broken = json.dumps(PAYLOAD, indent=2)
    broken = broken[: broken.rfind("}")]

    result = scan_for_trigger(_agent_text(broken))

    assert isinstance(result, MalformedTrigger)
    assert result.triggered is False
    assert result.payload is None
    assert result.display_text == LEAD + ADVISORY_NOTE
    assert TRIGGER_MARKER not in result.display_text
    assert "Bulk CSV Export" not in result.display_text


def test_balanced_but_invalid_json_is_malformed():
    result = scan_for_trigger(_agent_text("{title: 'not json'}"))

    assert isinstance(result, MalformedTrigger)
    assert result.display_text.startswith(LEAD)
    assert result.display_text.endswith(ADVISORY_NOTE)


def test_marker_without_object_is_malformed():
    result = scan_for_trigger(f"{LEAD}\n{TRIGGER_MARKER}\nsee above")

    assert isinstance(result, MalformedTrigger)
    assert result.display_text == LEAD + ADVISORY_NOTE


def test_unbalanced_brace_inside_string_breaks_extraction():
    payload = {"title": "Export", "description": "uses a } character"}
    result = scan_for_trigger(_agent_text(json.dumps(payload)))

    # brace counting is not string-aware
    assert isinstance(result, MalformedTrigger)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("no braces here", None),
        ("prefix {\"a\": 1} suffix", "{\"a\": 1}"),
        ("{\"a\": {\"b\": {\"c\": 2}}} trailing }", "{\"a\": {\"b\": {\"c\": 2}}}"),
        ("{\"a\": {\"b\": 1}", None),
    ],
)
def test_extract_balanced_json(text, expected):
    assert extract_balanced_json(text) == expected


def test_normalize_string_payload():
    result = normalize_feature_requirements("SSO with Okta\nEnterprise customers need SAML login")

    assert result["title"] == "SSO with Okta"
    assert result["description"] == "SSO with Okta\nEnterprise customers need SAML login"
    assert result["customerData"] == {"count": 0, "totalARR": 0, "urgency": ""}


def test_normalize_object_fills_missing_keys_and_coerces_numbers():
    result = normalize_feature_requirements({
        "title": "Dark mode",
        "customerData": {"count": "3", "totalARR": "$195,000"},
    })

    assert result == {
        "title": "Dark mode",
        "description": "",
        "businessContext": "",
        "technicalRequirements": "",
        "customerData": {"count": 3, "totalARR": 195000.0, "urgency": ""},
    }


def test_normalize_rejects_other_shapes():
    with pytest.raises(TypeError):
        normalize_feature_requirements(["not", "a", "payload"])
