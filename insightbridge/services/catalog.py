"""
Static demo catalogs: customers, historical feature requests, and the
codebase description used by the Tech Spec agent.
"""

import json
import re
from pathlib import Path

_DATA_DIR = Path(__file__).parent.parent / "data"

_COMPANY_SUFFIXES = {"corp", "inc", "ltd", "llc", "co"}
_STOPWORDS = {
    "with", "from", "that", "this", "they", "their", "have", "need", "needs",
    "want", "wants", "for", "and", "the", "into", "options", "features",
    "functionality", "support",
}


def _load(name: str):
    return json.loads((_DATA_DIR / name).read_text(encoding="utf-8"))


def load_customers() -> list[dict]:
    return _load("customers.json")


def load_requests() -> list[dict]:
    return _load("requests.json")


def load_codebase() -> dict:
    return _load("codebase.json")


def _name_patterns(company_name: str) -> list[re.Pattern]:
    words = company_name.split()
    variants = [company_name]
    if len(words) > 1 and words[-1].lower().rstrip(".") in _COMPANY_SUFFIXES:
        variants.append(" ".join(words[:-1]))
    return [re.compile(rf"\b{re.escape(v)}\b", re.IGNORECASE) for v in variants]


def get_customer_by_name(name: str) -> dict | None:
    target = name.strip().lower()
    return next((c for c in load_customers() if c["companyName"].lower() == target), None)


def find_customer_in_text(text: str) -> dict | None:
    """Best-effort match of a known company name anywhere in free text."""
    if not text:
        return None
    for customer in load_customers():
        if any(p.search(text) for p in _name_patterns(customer["companyName"])):
            return customer
    return None


def _keywords(text: str) -> set[str]:
    return {
        w for w in re.findall(r"[a-z0-9]+", text.lower())
        if len(w) >= 3 and w not in _STOPWORDS
    }


def find_similar_requests(text: str, limit: int = 3) -> list[dict]:
    """Historical requests whose description or category overlaps the text."""
    words = _keywords(text)
    if not words:
        return []

    scored = []
    for req in load_requests():
        overlap = len(words & (_keywords(req["description"]) | _keywords(req["category"])))
        if overlap:
            scored.append((overlap, req))

    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [req for _, req in scored[:limit]]


def count_requests_by_category(requests: list[dict]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for req in requests:
        category = req.get("category") or "Uncategorized"
        counts[category] = counts.get(category, 0) + 1
    return counts


def customer_to_record(customer: dict) -> dict:
    """Map a catalog customer onto the StructuredRequest customer section."""
    return {
        "companyName": customer.get("companyName", ""),
        "tier": customer.get("tier", ""),
        "arr": customer.get("arr", 0),
        "renewalDate": customer.get("contractRenewalDate") or customer.get("renewalDate", ""),
        "contactPerson": customer.get("contactPerson", ""),
        "contactEmail": customer.get("contactEmail", ""),
        "accountHealth": customer.get("accountHealth", ""),
    }
