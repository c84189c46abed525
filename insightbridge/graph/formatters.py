"""
Render session state into the text blocks folded into each agent's system prompt.

All functions here are pure: no I/O, no LLM calls.
"""

from insightbridge.graph.schema import format_money, to_number
from insightbridge.services.catalog import count_requests_by_category

EMPTY_REPOSITORY = (
    "**Current Insights Repository:** Empty\n\n"
    "No customer insights have been submitted yet. Once CSMs submit feature "
    "requests, you'll be able to analyze patterns and provide strategic recommendations."
)


def _breakdown(title: str, counts: dict) -> list[str]:
    if not counts:
        return []
    lines = [f"**{title}:**"]
    lines += [f"- {key}: {count} insight(s)" for key, count in counts.items()]
    lines.append("")
    return lines


# ---------------------------------------------------------------------------
# Insights (PM)
# ---------------------------------------------------------------------------

def format_insights_context(insights: list[dict], stats: dict) -> str:
    if not insights:
        return EMPTY_REPOSITORY

    lines = [
        f"**Current Insights Repository:** {len(insights)} insight(s)",
        "",
        "**Summary Statistics:**",
        f"- Total Insights: {stats.get('totalInsights', len(insights))}",
        f"- Unique Customers: {stats.get('uniqueCustomers', 0)}",
        f"- Total ARR Represented: {format_money(stats.get('totalARR'))}",
        f"- Total Revenue at Risk: {format_money(stats.get('totalRevenueAtRisk'))}",
        f"- High-Urgency Insights: {stats.get('highUrgencyCount', 0)}",
        "",
    ]
    lines += _breakdown("By Customer Tier", stats.get("byTier") or {})
    lines += _breakdown("By Category", stats.get("byCategory") or {})
    lines += _breakdown("By Priority", stats.get("byPriority") or {})

    lines.append("**Individual Insights:**")
    lines.append("")
    for index, insight in enumerate(insights, start=1):
        customer = insight.get("customer") or {}
        request = insight.get("request") or {}
        impact = insight.get("impact") or {}

        company = customer.get("companyName") or "Unknown Company"
        tier = customer.get("tier") or "Unknown Tier"
        lines.append(f"{index}. **{company}** ({tier}, {format_money(customer.get('arr'))} ARR)")
        lines.append(f"   - **Request:** {request.get('title') or request.get('description') or 'No title'}")
        if request.get("category"):
            lines.append(f"   - **Category:** {request['category']}")
        if request.get("priority"):
            lines.append(f"   - **Priority:** {request['priority']}")
        if to_number(impact.get("revenueAtRisk")) > 0:
            lines.append(f"   - **Revenue at Risk:** {format_money(impact['revenueAtRisk'])}")
        if impact.get("competitiveThreat"):
            lines.append(f"   - **Competitive Threat:** {impact['competitiveThreat']}")
        if customer.get("renewalDate"):
            lines.append(f"   - **Renewal Date:** {customer['renewalDate']}")
        if customer.get("accountHealth"):
            lines.append(f"   - **Account Health:** {customer['accountHealth']}")
        if request.get("businessProblem"):
            lines.append(f"   - **Business Problem:** {request['businessProblem']}")
        lines.append("")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Intake (CSM)
# ---------------------------------------------------------------------------

def format_intake_context(
    customers: list[dict],
    requests: list[dict],
    matched_customer: dict | None = None,
    similar_requests: list[dict] | None = None,
) -> str:
    lines = [
        "### Customer Database",
        f"{len(customers)} customers in database with company name, tier, ARR, "
        "renewal dates, contact information and account health.",
        "",
        "Sample customers: " + ", ".join(c["companyName"] for c in customers[:3]),
        "",
        "### Historical Feature Requests",
        f"{len(requests)} historical requests across categories:",
    ]
    for category, count in sorted(count_requests_by_category(requests).items()):
        lines.append(f"- {category} ({count} requests)")

    if matched_customer:
        c = matched_customer
        lines += [
            "",
            "### Customer Identified in This Conversation",
            f"**{c['companyName']}** ({c.get('tier', 'Unknown tier')}, {format_money(c.get('arr'))} ARR)",
            f"- Renewal: {c.get('contractRenewalDate') or c.get('renewalDate') or 'unknown'}",
            f"- Account Health: {c.get('accountHealth') or 'unknown'}",
            f"- Contact: {c.get('contactPerson') or 'unknown'}",
        ]

    if similar_requests:
        lines += ["", "### Similar Historical Requests"]
        for req in similar_requests:
            line = f"- {req['id']}: {req['description']} ({req.get('category', 'Uncategorized')}, {req.get('status', 'unknown')})"
            if req.get("competitorMention"):
                line += f" - {req['competitorMention']}"
            lines.append(line)

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Tech Spec (Engineering)
# ---------------------------------------------------------------------------

def format_codebase_context(codebase: dict) -> str:
    lines = ["### System Components", ""]
    for component in codebase.get("components", []):
        lines += [
            f"**{component['name']}** ({component['path']})",
            f"- Description: {component['description']}",
            f"- Language: {component['language']}",
            f"- Dependencies: {', '.join(component.get('dependencies', []))}",
            f"- Performance: {component['performance']}",
            f"- Complexity: {component['complexity']}",
            f"- Limitations: {component['limitations']}",
            f"- Last Modified: {component['lastModified']}",
            "",
        ]

    lines += ["### Architecture Patterns", ""]
    for pattern in codebase.get("architecturePatterns", []):
        lines += [
            f"**{pattern['pattern']}**",
            f"- Usage: {pattern['usage']}",
            f"- Benefits: {pattern['benefits']}",
            "",
        ]

    lines += ["### Past Implementations (for reference)", ""]
    for impl in codebase.get("pastImplementations", []):
        lines += [
            f"**{impl['featureName']}** ({impl['implementationDate']})",
            f"- Complexity: {impl['complexity']}",
            f"- Time to Implement: {impl['timeToImplement']}",
            f"- Approach: {impl['approach']}",
            f"- Challenges: {impl['challenges']}",
            f"- Success Metrics: {impl['successMetrics']}",
            "",
        ]

    return "\n".join(lines)


def format_spec_context(spec: dict | None) -> str:
    """The latest autonomous specification, for conversational refinement."""
    if not spec:
        return ""
    title = (spec.get("featureRequirements") or {}).get("title") or "Untitled Feature"
    return (
        "\n### Current Specification\n\n"
        f"The following specification for **{title}** was generated on "
        f"{spec.get('timestamp', 'an earlier turn')}. Refine it rather than starting over.\n\n"
        f"{spec.get('specification', '')}"
    )
