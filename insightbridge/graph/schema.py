"""
StructuredRequest: the record the Intake agent builds from a CSM conversation.

Records are plain nested dicts:

    customer    companyName, tier, arr, renewalDate, contactPerson,
                contactEmail, accountHealth
    request     title, description, businessProblem, useCase, priority,
                deadline, category
    impact      usersAffected, revenueAtRisk, competitiveThreat, churnRisk
    additional  similarRequests, currentWorkaround, betaTesting, customBudget
    meta        requestDate, csmName, completeness, status
"""

import copy
import datetime
import math

TIERS = ("Enterprise", "Growth", "Startup")
ACCOUNT_HEALTH = ("healthy", "at-risk", "expanding")
PRIORITIES = ("low", "medium", "high", "critical")
CHURN_RISKS = ("none", "low", "medium", "high")
STATUSES = ("draft", "pending", "submitted")

# Fields that make up the completeness score (6 + 7 + 4)
TRACKED_FIELDS: dict[str, tuple[str, ...]] = {
    "customer": ("companyName", "tier", "arr", "renewalDate", "contactPerson", "accountHealth"),
    "request": ("title", "description", "businessProblem", "useCase", "priority", "deadline", "category"),
    "impact": ("usersAffected", "revenueAtRisk", "competitiveThreat", "churnRisk"),
}

_EMPTY_REQUEST = {
    "customer": {
        "companyName": "",
        "tier": "",
        "arr": 0,
        "renewalDate": "",
        "contactPerson": "",
        "contactEmail": "",
        "accountHealth": "",
    },
    "request": {
        "title": "",
        "description": "",
        "businessProblem": "",
        "useCase": "",
        "priority": "",
        "deadline": "",
        "category": "",
    },
    "impact": {
        "usersAffected": 0,
        "revenueAtRisk": 0,
        "competitiveThreat": "",
        "churnRisk": "",
    },
    "additional": {
        "similarRequests": [],
        "currentWorkaround": "",
        "betaTesting": False,
        "customBudget": 0,
    },
    "meta": {
        "requestDate": "",
        "csmName": "",
        "completeness": 0,
        "status": "draft",
    },
}


def now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def create_empty_request() -> dict:
    request = copy.deepcopy(_EMPTY_REQUEST)
    request["meta"]["requestDate"] = now_iso()
    return request


def is_filled(value) -> bool:
    # bool before int: bool is an int subclass and always counts
    if isinstance(value, bool):
        return True
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def calculate_completeness(request: dict) -> int:
    """Percentage (0-100) of the 17 tracked fields that are filled."""
    filled = 0
    total = 0
    for section, fields in TRACKED_FIELDS.items():
        values = request.get(section) or {}
        for field in fields:
            total += 1
            if is_filled(values.get(field)):
                filled += 1
    return round(100 * filled / total)


def validate_feature_request(request: dict) -> dict:
    """
    Check the fields the Product team needs to act on a request.

    Returns {"isValid": bool, "missingFields": ["customer.tier", ...]}.
    A partial record is still submittable; this is advisory only.
    """
    customer = request.get("customer") or {}
    req = request.get("request") or {}
    impact = request.get("impact") or {}

    missing = []
    if not customer.get("companyName"):
        missing.append("customer.companyName")
    if not customer.get("tier"):
        missing.append("customer.tier")
    if not req.get("description"):
        missing.append("request.description")
    if not req.get("businessProblem"):
        missing.append("request.businessProblem")
    if not req.get("priority"):
        missing.append("request.priority")
    # zero revenue at risk is a legitimate answer; only an absent value is missing
    if impact.get("revenueAtRisk") is None:
        missing.append("impact.revenueAtRisk")
    if not impact.get("churnRisk"):
        missing.append("impact.churnRisk")

    return {"isValid": not missing, "missingFields": missing}


def to_number(value) -> int | float:
    """
    Read a money or count value the way the model or a form may send it:
    50000, "50000", "$50,000". Anything unreadable counts as 0.
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else 0
    if not isinstance(value, str):
        return 0
    try:
        number = float(value.replace("$", "").replace(",", "").strip())
    except ValueError:
        return 0
    if not math.isfinite(number):
        return 0
    return int(number) if number.is_integer() else number


def format_money(value) -> str:
    amount = to_number(value)
    if float(amount).is_integer():
        return f"${int(amount):,}"
    return f"${amount:,.2f}"


def build_request_summary(request: dict, validation: dict | None = None) -> str:
    """Human-readable summary of a StructuredRequest for the CSM."""
    customer = request.get("customer") or {}
    req = request.get("request") or {}
    impact = request.get("impact") or {}
    additional = request.get("additional") or {}
    meta = request.get("meta") or {}
    validation = validation or validate_feature_request(request)

    lines = [f"**Feature Request Summary** ({meta.get('completeness', 0)}% complete)", ""]

    company = customer.get("companyName") or "Unknown customer"
    details = [customer.get("tier") or "", format_money(customer.get("arr")) + " ARR" if customer.get("arr") else ""]
    details = ", ".join(d for d in details if d)
    lines.append(f"**Customer:** {company}" + (f" ({details})" if details else ""))
    if customer.get("renewalDate"):
        lines.append(f"**Renewal:** {customer['renewalDate']}")
    if customer.get("accountHealth"):
        lines.append(f"**Account Health:** {customer['accountHealth']}")

    lines.append(f"**Request:** {req.get('title') or req.get('description') or '(not yet captured)'}")
    for label, key in (
        ("Description", "description"),
        ("Business Problem", "businessProblem"),
        ("Use Case", "useCase"),
        ("Priority", "priority"),
        ("Deadline", "deadline"),
        ("Category", "category"),
    ):
        # without a title the description is already on the Request line
        if key == "description" and not req.get("title"):
            continue
        if req.get(key):
            lines.append(f"**{label}:** {req[key]}")

    if is_filled(impact.get("usersAffected")):
        lines.append(f"**Users Affected:** {impact['usersAffected']}")
    if is_filled(impact.get("revenueAtRisk")):
        lines.append(f"**Revenue at Risk:** {format_money(impact['revenueAtRisk'])}")
    if impact.get("competitiveThreat"):
        lines.append(f"**Competitive Threat:** {impact['competitiveThreat']}")
    if impact.get("churnRisk"):
        lines.append(f"**Churn Risk:** {impact['churnRisk']}")

    similar = additional.get("similarRequests")
    if similar:
        if isinstance(similar, (list, tuple)):
            similar = ", ".join(str(r) for r in similar)
        lines.append(f"**Similar Requests:** {similar}")
    if additional.get("currentWorkaround"):
        lines.append(f"**Current Workaround:** {additional['currentWorkaround']}")

    if validation["missingFields"]:
        lines.append("")
        lines.append("**Still needed:** " + ", ".join(validation["missingFields"]))

    return "\n".join(lines)
