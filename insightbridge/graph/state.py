from typing import Any, Literal, TypedDict


class ConversationTurn(TypedDict):
    role: Literal["user", "assistant"]
    content: str


class CustomerData(TypedDict):
    count: int
    totalARR: float
    urgency: str


class FeatureRequirements(TypedDict):
    title: str
    description: str
    businessContext: str
    technicalRequirements: str
    customerData: CustomerData


class IntakeState(TypedDict, total=False):
    message: str
    history: list[ConversationTurn]
    # Record from the previous turn, if the caller keeps one
    base_request: dict | None
    context_found: dict
    response: str
    usage: dict
    structured_request: dict
    request_summary: str
    validation: dict


class InsightsState(TypedDict, total=False):
    session_id: str
    message: str
    history: list[ConversationTurn]
    insights: list[dict]
    stats: dict
    response: str
    usage: dict
    # NoTrigger | MalformedTrigger | Triggered
    scan: Any
    display_response: str
    tech_analysis: dict | None
