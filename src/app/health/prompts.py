"""Prompt templates for health narratives and action suggestions.

Provides two system prompts and two builders. The narrative prompt explains
an already-computed score; it never asks the model to compute one. The
suggestions prompt packages the deterministic alert findings and asks for
3-5 prioritized actions as JSON.

Exports:
    NARRATIVE_SYSTEM_PROMPT: Persona for the 2-3 sentence health narrative.
    SUGGESTIONS_SYSTEM_PROMPT: Persona for suggestion packaging.
    build_narrative_prompt: User message for one client's narrative.
    build_suggestions_prompt: User message built from alert findings.
"""

from __future__ import annotations

import json
from typing import Optional

from src.app.health.schemas import (
    AlertCategory,
    AlertFinding,
    AlertPriority,
    AlertRule,
    Client,
    HealthScore,
    Market,
    TaskCategory,
)

AGENCY_NAME = "OnnifyWorks"


# -- System Prompts -----------------------------------------------------------


NARRATIVE_SYSTEM_PROMPT: str = f"""\
You are a CRM health analyst for {AGENCY_NAME}, a digital marketing agency. \
Write a brief 2-3 sentence narrative explaining a client's health score. \
Be specific about what is driving the score up or down. \
Use plain language, no markdown. Be actionable.\
"""

SUGGESTIONS_SYSTEM_PROMPT: str = f"""\
You are an operations advisor for the {AGENCY_NAME} digital marketing agency \
CRM. Analyze the data and provide actionable suggestions. Always respond in \
valid JSON. Do NOT wrap the JSON in code blocks.\
"""


# -- Prompt Builders ----------------------------------------------------------


def build_narrative_prompt(client: Client, health: HealthScore) -> str:
    """Build the user message for a client health narrative.

    Args:
        client: The scored client.
        health: Composite scorer output with factor scores and counts.

    Returns:
        Fixed-shape prompt listing the score, each factor with the counts
        behind it, and the contract window.
    """
    f = health.factors
    c = health.counts
    contract_start = client.contract_start.isoformat() if client.contract_start else "N/A"
    contract_end = client.contract_end.isoformat() if client.contract_end else "Ongoing"

    return (
        f"Client: {client.company_name} ({client.market.value} market, "
        f"{client.plan_tier.value} plan, ${client.monthly_value:,.0f}/mo)\n"
        f"Health Score: {health.score}/100 (grade {health.grade.value}, "
        f"{health.tier.value})\n"
        f"- Delivery Rate: {f.delivery_rate}% "
        f"({c.completed_deliverables}/{c.total_deliverables} completed)\n"
        f"- On-Time: {f.on_time_score}% ({c.overdue_count} overdue items)\n"
        f"- Payment: {f.payment_score}% ({c.paid_invoices} paid, "
        f"{c.overdue_invoices} overdue of {c.total_invoices} invoices)\n"
        f"- Engagement: {f.engagement_score}% "
        f"({c.recent_activity} items updated in last 14 days)\n"
        f"Contract: {contract_start} to {contract_end}\n\n"
        "Explain why this score is what it is and what the team should do."
    )


_SECTION_TITLES: dict[AlertRule, str] = {
    AlertRule.OVERDUE_DELIVERABLE: "Overdue Deliverables",
    AlertRule.OVERDUE_INVOICE: "Overdue Invoices",
    AlertRule.EXPIRING_CONTRACT: "Expiring Contracts (30d)",
    AlertRule.UPCOMING_RECURRING_INVOICE: "Upcoming Recurring Invoices (7d)",
    AlertRule.DUE_SOON_NOT_STARTED: "Due Soon (Not Started)",
    AlertRule.STUCK_CONTENT: "Stuck Content (Ideation >7d)",
    AlertRule.BLOCKED_TASK: "Blocked Tasks",
}

_SUGGESTION_SHAPE = {
    "suggestions": [
        {
            "priority": " | ".join(p.value for p in AlertPriority),
            "category": " | ".join(c.value for c in AlertCategory),
            "title": "short headline",
            "description": "1 sentence explanation",
            "action": "button label, e.g. Create Follow-up Task",
            "suggestedTask": {
                "name": "task name",
                "clientId": "client id or null",
                "assignedTo": "person or null",
                "category": " | ".join(t.value for t in TaskCategory),
                "dueDate": "YYYY-MM-DD",
            },
        }
    ]
}


def build_suggestions_prompt(
    findings: list[AlertFinding],
    *,
    active_clients: int,
    total_deliverables: Optional[int] = None,
    market: Optional[Market] = None,
    skipped_rules: Optional[list[AlertRule]] = None,
) -> str:
    """Build the user message for suggestion packaging.

    Args:
        findings: Deterministic findings from the alert sweep.
        active_clients: Number of in-scope clients.
        total_deliverables: Deliverable count, when the collection loaded.
        market: Market filter applied to the sweep, if any.
        skipped_rules: Rules that could not run because data failed to load.

    Returns:
        Prompt string grouping findings by rule, with the JSON shape to return.
    """
    by_rule: dict[AlertRule, list[AlertFinding]] = {rule: [] for rule in AlertRule}
    for finding in findings:
        by_rule[finding.rule].append(finding)

    scope = market.value if market else "all markets"
    lines = [
        f"Current CRM state for the {AGENCY_NAME} digital marketing agency "
        f"({scope}):",
        "",
        f"Active Clients: {active_clients}",
    ]
    if total_deliverables is not None:
        lines.append(f"Total Deliverables: {total_deliverables}")

    skipped = set(skipped_rules or [])
    for rule, title in _SECTION_TITLES.items():
        if rule in skipped:
            lines.append(f"{title}: unavailable")
            continue
        items = by_rule[rule]
        summary = "; ".join(f"{f.title} ({f.description})" for f in items)
        lines.append(f"{title}: {summary or 'none'}")

    shape = json.dumps(_SUGGESTION_SHAPE, indent=2)
    lines.extend(
        [
            "",
            "Based on this data, suggest the top 3-5 most urgent actions the "
            "team should take today. Only suggest actions grounded in the items "
            "above.",
            "",
            f"Respond in JSON format:\n{shape}",
        ]
    )
    return "\n".join(lines)
