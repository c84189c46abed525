from insightbridge.graph.formatters import (
    format_codebase_context,
    format_insights_context,
    format_intake_context,
    format_spec_context,
)
from insightbridge.services.catalog import (
    find_similar_requests,
    get_customer_by_name,
    load_codebase,
    load_customers,
    load_requests,
)
from insightbridge.services.insights import compute_stats


def test_empty_repository_message_and_no_statistics():
    text = format_insights_context([], compute_stats([]))

    assert "**Current Insights Repository:** Empty" in text
    assert "Summary Statistics" not in text
    assert "Total ARR" not in text
    assert "By Customer Tier" not in text


def test_tier_counts_and_total_arr_match_inputs(insight_factory):
    insights = [
        insight_factory("Acme Corp", "Enterprise", 150000),
        insight_factory("Global Solutions Ltd", "Enterprise", 280000),
        insight_factory("TechStart Inc", "Startup", 12000, request={"priority": "low", "category": "Mobile"}),
    ]

    text = format_insights_context(insights, compute_stats(insights))

    assert "**Current Insights Repository:** 3 insight(s)" in text
    assert "- Total ARR Represented: $442,000" in text
    assert "- Total Revenue at Risk: $150,000" in text
    assert "- Unique Customers: 3" in text
    assert "- High-Urgency Insights: 2" in text
    assert "- Enterprise: 2 insight(s)" in text
    assert "- Startup: 1 insight(s)" in text
    assert "- Mobile: 1 insight(s)" in text


def test_individual_insight_lines(insight_factory):
    insight = insight_factory(
        customer={"renewalDate": "2025-03-15", "accountHealth": "at-risk"},
        impact={"competitiveThreat": "Competitor X"},
        request={"businessProblem": "Manual exports take hours"},
    )

    text = format_insights_context([insight], compute_stats([insight]))

    assert "1. **Acme Corp** (Enterprise, $150,000 ARR)" in text
    assert "   - **Request:** Bulk export" in text
    assert "   - **Revenue at Risk:** $50,000" in text
    assert "   - **Competitive Threat:** Competitor X" in text
    assert "   - **Renewal Date:** 2025-03-15" in text
    assert "   - **Account Health:** at-risk" in text
    assert "   - **Business Problem:** Manual exports take hours" in text


def test_missing_customer_fields_fall_back(insight_factory):
    insight = insight_factory(customer={"companyName": "", "tier": "", "arr": 0}, request={"title": ""})

    text = format_insights_context([insight], compute_stats([insight]))

    assert "1. **Unknown Company** (Unknown Tier, $0 ARR)" in text
    assert "   - **Request:** Export many reports at once" in text


def test_intake_context_lists_catalog_and_match():
    customers = load_customers()
    requests = load_requests()
    acme = get_customer_by_name("Acme Corp")
    similar = find_similar_requests("Acme wants bulk export of reports")

    text = format_intake_context(customers, requests, acme, similar)

    assert f"{len(customers)} customers in database" in text
    assert "- Export (2 requests)" in text
    assert "**Acme Corp** (Enterprise, $150,000 ARR)" in text
    assert "- Renewal: 2025-03-15" in text
    assert "req-001: Bulk export functionality for reports" in text


def test_intake_context_without_match_has_no_customer_section():
    text = format_intake_context(load_customers(), load_requests())

    assert "Customer Identified" not in text
    assert "Similar Historical Requests" not in text


def test_codebase_context_sections():
    codebase = load_codebase()

    text = format_codebase_context(codebase)

    assert "### System Components" in text
    assert "**Export API** (/api/v1/exports)" in text
    assert "### Architecture Patterns" in text
    assert "### Past Implementations (for reference)" in text
    assert text.count("- Limitations:") == len(codebase["components"])


def test_spec_context():
    assert format_spec_context(None) == ""

    text = format_spec_context({
        "featureRequirements": {"title": "Bulk export"},
        "timestamp": "2025-01-01T00:00:00+00:00",
        "specification": "Approach A: extend the Export API.",
    })

    assert "**Bulk export**" in text
    assert "Approach A: extend the Export API." in text


def test_loosely_typed_amounts_are_rendered_not_raised(insight_factory):
    insights = [
        insight_factory(customer={"arr": "$150,000"}, impact={"revenueAtRisk": "$50,000"}),
        insight_factory("TechStart Inc", "Startup", 12000, impact={"revenueAtRisk": "unknown"}),
    ]

    text = format_insights_context(insights, compute_stats(insights))

    assert "1. **Acme Corp** (Enterprise, $150,000 ARR)" in text
    assert "   - **Revenue at Risk:** $50,000" in text
    assert "$$" not in text
    assert text.count("**Revenue at Risk:**") == 1
    assert "- Total ARR Represented: $162,000" in text
