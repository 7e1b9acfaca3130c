"""Alert Rule Engine: deterministic sweep of operational records.

Scans clients, deliverables, invoices, tasks and content for conditions the
team should act on today (overdue, expiring, due soon, stuck, blocked) and
emits prioritized findings. Every rule is a pure function of the loaded
records and an explicit ``as_of`` instant; day windows are whole calendar
days between ``as_of.date()`` and the record's date.

A collection that failed to load arrives as None. Rules that need it are
skipped and reported in ``AlertSweep.skipped_rules``; the rest still run.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Optional

from src.app.health.factors import as_utc
from src.app.health.schemas import (
    AlertCategory,
    AlertFinding,
    AlertPriority,
    AlertRule,
    AlertSweep,
    Client,
    ClientStatus,
    ContentItem,
    Currency,
    Deliverable,
    DeliverableStatus,
    Invoice,
    InvoiceStatus,
    Market,
    SuggestedTask,
    SweepInputs,
    Task,
    TaskCategory,
    TaskStatus,
)

# Collections each rule reads, besides the client registry used for scoping.
RULE_DEPENDENCIES: dict[AlertRule, tuple[str, ...]] = {
    AlertRule.OVERDUE_DELIVERABLE: ("deliverables",),
    AlertRule.OVERDUE_INVOICE: ("invoices",),
    AlertRule.EXPIRING_CONTRACT: ("clients",),
    AlertRule.UPCOMING_RECURRING_INVOICE: ("invoices",),
    AlertRule.DUE_SOON_NOT_STARTED: ("deliverables",),
    AlertRule.STUCK_CONTENT: ("content",),
    AlertRule.BLOCKED_TASK: ("tasks",),
}

_missing_rules = set(AlertRule) - set(RULE_DEPENDENCIES)
if _missing_rules:
    raise TypeError(f"Alert rules without dependencies: {sorted(_missing_rules)}")

_RULE_ORDER = {rule: index for index, rule in enumerate(AlertRule)}

UNKNOWN_CLIENT = "unknown client"


def _count(count: int, unit: str = "day") -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def _format_amount(amount: float, currency: Currency) -> str:
    return f"{currency.value} {amount:,.2f}"


def _due_phrase(days_until: int) -> str:
    if days_until == 0:
        return "due today"
    return f"due in {_count(days_until)}"


class _SweepContext:
    """Per-sweep lookups shared by the rules."""

    def __init__(
        self, inputs: SweepInputs, *, as_of: datetime, market: Optional[Market]
    ) -> None:
        self.inputs = inputs
        self.as_of_date = as_of.date()
        self.market = market

        clients = inputs.clients or []
        self.clients_by_id = {c.id: c for c in clients}
        self.scoped_clients = clients_in_scope(clients, market)
        self.scoped_ids = {c.id for c in self.scoped_clients}

        self.open_tasks_by_deliverable: dict[str, list[Task]] = defaultdict(list)
        self.open_task_notes: list[str] = []
        for task in inputs.tasks or []:
            if task.status.is_done:
                continue
            if task.deliverable_id:
                self.open_tasks_by_deliverable[task.deliverable_id].append(task)
            if task.notes:
                self.open_task_notes.append(task.notes)

    def in_scope(self, client_id: Optional[str]) -> bool:
        """Whether a record attached to ``client_id`` belongs in this sweep.

        Unattached records, and records whose client cannot be checked because
        the registry failed to load, only count in unfiltered sweeps.
        """
        if client_id is None or self.inputs.clients is None:
            return self.market is None
        return client_id in self.scoped_ids

    def client_name(self, client_id: Optional[str]) -> str:
        client = self.clients_by_id.get(client_id) if client_id else None
        return client.company_name if client else UNKNOWN_CLIENT

    def days_until(self, target: date) -> int:
        return (target - self.as_of_date).days

    def has_follow_up(self, deliverable_id: str) -> bool:
        return bool(self.open_tasks_by_deliverable.get(deliverable_id))

    def invoice_followed_up(self, invoice: Invoice) -> bool:
        if not invoice.invoice_number:
            return False
        return any(invoice.invoice_number in notes for notes in self.open_task_notes)


class AlertRuleEngine:
    """Run the deterministic alert rules over one snapshot of records.

    Args:
        aggregate_overdue_deliverables: Emit one overdue finding per client
            instead of one per deliverable.
        expiring_contract_days: Forward window for contract ends (inclusive).
        recurring_invoice_days: Forward window for recurring invoice due
            dates (inclusive).
        due_soon_days: Forward window for not-started deliverables
            (inclusive).
        stuck_content_days: Content older than this many whole days in its
            initial stage is stuck.
        billing_owner: Assignee for payment and invoicing follow-up tasks.
    """

    def __init__(
        self,
        *,
        aggregate_overdue_deliverables: bool = False,
        expiring_contract_days: int = 30,
        recurring_invoice_days: int = 7,
        due_soon_days: int = 3,
        stuck_content_days: int = 7,
        billing_owner: Optional[str] = None,
    ) -> None:
        self.aggregate_overdue_deliverables = aggregate_overdue_deliverables
        self.expiring_contract_days = expiring_contract_days
        self.recurring_invoice_days = recurring_invoice_days
        self.due_soon_days = due_soon_days
        self.stuck_content_days = stuck_content_days
        self.billing_owner = billing_owner

        self._rules: dict[AlertRule, Callable[[_SweepContext], list[AlertFinding]]] = {
            AlertRule.OVERDUE_DELIVERABLE: self._overdue_deliverables,
            AlertRule.OVERDUE_INVOICE: self._overdue_invoices,
            AlertRule.EXPIRING_CONTRACT: self._expiring_contracts,
            AlertRule.UPCOMING_RECURRING_INVOICE: self._upcoming_recurring_invoices,
            AlertRule.DUE_SOON_NOT_STARTED: self._due_soon_not_started,
            AlertRule.STUCK_CONTENT: self._stuck_content,
            AlertRule.BLOCKED_TASK: self._blocked_tasks,
        }

    def sweep(
        self,
        inputs: SweepInputs,
        *,
        as_of: datetime,
        market: Optional[Market] = None,
    ) -> AlertSweep:
        """Evaluate every rule and return findings ordered by priority.

        Args:
            inputs: Loaded collections; None marks a collection that failed.
            as_of: Evaluation instant. Naive values are treated as UTC.
            market: Restrict the sweep to one market; None sweeps all.

        Returns:
            AlertSweep with sorted findings and the rules that were skipped.
        """
        as_of = as_utc(as_of)
        ctx = _SweepContext(inputs, as_of=as_of, market=market)
        findings: list[AlertFinding] = []
        skipped: list[AlertRule] = []

        for rule, evaluate in self._rules.items():
            if any(getattr(inputs, name) is None for name in RULE_DEPENDENCIES[rule]):
                skipped.append(rule)
                continue
            findings.extend(evaluate(ctx))

        findings.sort(
            key=lambda f: (
                f.priority.rank,
                _RULE_ORDER[f.rule],
                f.due_date or date.max,
                f.id,
            )
        )
        return AlertSweep(findings=findings, skipped_rules=skipped, generated_at=as_of)

    # ── Deliverables ─────────────────────────────────────────────────────

    def _overdue_deliverables(self, ctx: _SweepContext) -> list[AlertFinding]:
        overdue = [
            d
            for d in ctx.inputs.deliverables or []
            if ctx.in_scope(d.client_id) and d.is_overdue(ctx.as_of_date)
        ]
        if self.aggregate_overdue_deliverables:
            by_client: dict[str, list[Deliverable]] = defaultdict(list)
            for d in overdue:
                by_client[d.client_id].append(d)
            return [
                self._overdue_client_finding(ctx, client_id, items)
                for client_id, items in by_client.items()
            ]
        return [self._overdue_deliverable_finding(ctx, d) for d in overdue]

    def _overdue_deliverable_finding(
        self, ctx: _SweepContext, d: Deliverable
    ) -> AlertFinding:
        followed_up = ctx.has_follow_up(d.id)
        description = (
            f"Due {d.due_date.isoformat()} for {ctx.client_name(d.client_id)}, "
            f"still {d.status.value}."
        )
        description += (
            " A follow-up task is already open."
            if followed_up
            else " No follow-up task exists."
        )
        return AlertFinding(
            id=f"{AlertRule.OVERDUE_DELIVERABLE.value}:{d.id}",
            rule=AlertRule.OVERDUE_DELIVERABLE,
            priority=AlertPriority.HIGH,
            category=AlertCategory.OVERDUE,
            subject_id=d.id,
            client_id=d.client_id,
            title=f'"{d.name}" is overdue',
            description=description,
            action="View Follow-up Task" if followed_up else "Create Follow-up Task",
            suggested_task=None
            if followed_up
            else SuggestedTask(
                name=f"Follow up: {d.name} (overdue)",
                client_id=d.client_id,
                assigned_to=d.assigned_to,
                category=TaskCategory.OPS.value,
                due_date=ctx.as_of_date + timedelta(days=1),
            ),
            due_date=d.due_date,
        )

    def _overdue_client_finding(
        self, ctx: _SweepContext, client_id: str, items: list[Deliverable]
    ) -> AlertFinding:
        items = sorted(items, key=lambda d: (d.due_date, d.id))
        needing_follow_up = [d for d in items if not ctx.has_follow_up(d.id)]
        name = ctx.client_name(client_id)
        names = ", ".join(f'"{d.name}"' for d in items)
        suggested = None
        if needing_follow_up:
            suggested = SuggestedTask(
                name=f"Follow up: {_count(len(needing_follow_up), 'overdue deliverable')} for {name}",
                client_id=client_id,
                assigned_to=needing_follow_up[0].assigned_to,
                category=TaskCategory.OPS.value,
                due_date=ctx.as_of_date + timedelta(days=1),
            )
        return AlertFinding(
            id=f"{AlertRule.OVERDUE_DELIVERABLE.value}:client:{client_id}",
            rule=AlertRule.OVERDUE_DELIVERABLE,
            priority=AlertPriority.HIGH,
            category=AlertCategory.OVERDUE,
            subject_id=client_id,
            client_id=client_id,
            title=f"{_count(len(items), 'overdue deliverable')} for {name}",
            description=f"Oldest due {items[0].due_date.isoformat()}: {names}.",
            action="Create Follow-up Task" if suggested else "View Follow-up Tasks",
            suggested_task=suggested,
            due_date=items[0].due_date,
        )

    def _due_soon_not_started(self, ctx: _SweepContext) -> list[AlertFinding]:
        findings = []
        for d in ctx.inputs.deliverables or []:
            if d.status != DeliverableStatus.NOT_STARTED or d.due_date is None:
                continue
            if not ctx.in_scope(d.client_id):
                continue
            days_until = ctx.days_until(d.due_date)
            if not 0 <= days_until <= self.due_soon_days:
                continue
            assignee = d.assigned_to or "nobody"
            findings.append(
                AlertFinding(
                    id=f"{AlertRule.DUE_SOON_NOT_STARTED.value}:{d.id}",
                    rule=AlertRule.DUE_SOON_NOT_STARTED,
                    priority=AlertPriority.MEDIUM,
                    category=AlertCategory.DELIVERABLE,
                    subject_id=d.id,
                    client_id=d.client_id,
                    title=f'"{d.name}" {_due_phrase(days_until)} but Not Started',
                    description=(
                        f"Assigned to {assignee} for {ctx.client_name(d.client_id)}. "
                        "Consider creating a task to kick this off."
                    ),
                    action="Create Start Task",
                    suggested_task=SuggestedTask(
                        name=f"Start work on: {d.name}",
                        client_id=d.client_id,
                        assigned_to=d.assigned_to,
                        category=TaskCategory.OPS.value,
                        due_date=ctx.as_of_date,
                    ),
                    due_date=d.due_date,
                )
            )
        return findings

    # ── Invoices ─────────────────────────────────────────────────────────

    def _overdue_invoices(self, ctx: _SweepContext) -> list[AlertFinding]:
        groups: dict[tuple[str, Currency], list[Invoice]] = defaultdict(list)
        for invoice in ctx.inputs.invoices or []:
            if invoice.status == InvoiceStatus.OVERDUE and ctx.in_scope(invoice.client_id):
                groups[(invoice.client_id, invoice.currency)].append(invoice)

        findings = []
        for (client_id, currency), invoices in groups.items():
            invoices.sort(key=lambda i: (i.invoice_number, i.id))
            total = round(sum(i.amount for i in invoices), 2)
            amount = _format_amount(total, currency)
            name = ctx.client_name(client_id)
            numbers = ", ".join(i.invoice_number or i.id for i in invoices)
            if len(invoices) == 1:
                title = f"Invoice {numbers} is overdue ({amount})"
            else:
                title = f"{len(invoices)} overdue invoices for {name} ({amount})"
            pending = [i for i in invoices if not ctx.invoice_followed_up(i)]
            suggested = None
            if pending:
                suggested = SuggestedTask(
                    name=f"Payment follow-up: {numbers} ({amount})",
                    client_id=client_id,
                    assigned_to=self.billing_owner,
                    category=TaskCategory.SALES.value,
                    due_date=ctx.as_of_date + timedelta(days=1),
                )
            findings.append(
                AlertFinding(
                    id=f"{AlertRule.OVERDUE_INVOICE.value}:{client_id}:{currency.value}",
                    rule=AlertRule.OVERDUE_INVOICE,
                    priority=AlertPriority.HIGH,
                    category=AlertCategory.INVOICE,
                    subject_id=client_id,
                    client_id=client_id,
                    title=title,
                    description=f"{name} has not paid {numbers}. Send a payment reminder.",
                    action="Create Payment Follow-up" if suggested else "View Payment Follow-up",
                    suggested_task=suggested,
                    amount=total,
                    currency=currency,
                )
            )
        return findings

    def _upcoming_recurring_invoices(self, ctx: _SweepContext) -> list[AlertFinding]:
        findings = []
        for invoice in ctx.inputs.invoices or []:
            if not invoice.is_recurring or invoice.next_due_date is None:
                continue
            if not ctx.in_scope(invoice.client_id):
                continue
            days_until = ctx.days_until(invoice.next_due_date)
            if not 0 <= days_until <= self.recurring_invoice_days:
                continue
            label = invoice.invoice_number or invoice.id
            interval = (
                f"{invoice.recurrence_interval.value} " if invoice.recurrence_interval else ""
            )
            findings.append(
                AlertFinding(
                    id=f"{AlertRule.UPCOMING_RECURRING_INVOICE.value}:{invoice.id}",
                    rule=AlertRule.UPCOMING_RECURRING_INVOICE,
                    priority=AlertPriority.MEDIUM,
                    category=AlertCategory.INVOICE,
                    subject_id=invoice.id,
                    client_id=invoice.client_id,
                    title=f"Recurring invoice {label} {_due_phrase(days_until)}",
                    description=(
                        f"Next {interval}invoice for {ctx.client_name(invoice.client_id)} "
                        f"({_format_amount(invoice.amount, invoice.currency)}) is due "
                        f"{invoice.next_due_date.isoformat()}."
                    ),
                    action="Prepare Invoice",
                    suggested_task=SuggestedTask(
                        name=f"Issue recurring invoice: {label}",
                        client_id=invoice.client_id,
                        assigned_to=self.billing_owner,
                        category=TaskCategory.ADMIN.value,
                        due_date=invoice.next_due_date,
                    ),
                    due_date=invoice.next_due_date,
                    amount=invoice.amount,
                    currency=invoice.currency,
                )
            )
        return findings

    # ── Clients ──────────────────────────────────────────────────────────

    def _expiring_contracts(self, ctx: _SweepContext) -> list[AlertFinding]:
        findings = []
        for client in ctx.scoped_clients:
            if client.contract_end is None:
                continue
            days_until = ctx.days_until(client.contract_end)
            if not 0 <= days_until <= self.expiring_contract_days:
                continue
            ends = "today" if days_until == 0 else f"in {_count(days_until)}"
            findings.append(
                AlertFinding(
                    id=f"{AlertRule.EXPIRING_CONTRACT.value}:{client.id}",
                    rule=AlertRule.EXPIRING_CONTRACT,
                    priority=AlertPriority.MEDIUM,
                    category=AlertCategory.DEADLINE,
                    subject_id=client.id,
                    client_id=client.id,
                    title=f"Contract with {client.company_name} ends {ends}",
                    description=(
                        f"{client.plan_tier.value} plan worth "
                        f"{client.monthly_value:,.2f}/mo ends "
                        f"{client.contract_end.isoformat()}. Start the renewal conversation."
                    ),
                    action="Create Renewal Task",
                    suggested_task=SuggestedTask(
                        name=f"Renewal discussion: {client.company_name}",
                        client_id=client.id,
                        category=TaskCategory.SALES.value,
                        due_date=min(
                            client.contract_end, ctx.as_of_date + timedelta(days=7)
                        ),
                    ),
                    due_date=client.contract_end,
                )
            )
        return findings

    # ── Content & Tasks ──────────────────────────────────────────────────

    def _stuck_content(self, ctx: _SweepContext) -> list[AlertFinding]:
        findings = []
        for item in ctx.inputs.content or []:
            if not item.status.is_initial or not ctx.in_scope(item.client_id):
                continue
            age = (ctx.as_of_date - item.created_at.date()).days
            if age <= self.stuck_content_days:
                continue
            findings.append(self._stuck_content_finding(ctx, item, age))
        return findings

    @staticmethod
    def _stuck_content_finding(
        ctx: _SweepContext, item: ContentItem, age: int
    ) -> AlertFinding:
        assignee = item.assigned_to or "nobody"
        return AlertFinding(
            id=f"{AlertRule.STUCK_CONTENT.value}:{item.id}",
            rule=AlertRule.STUCK_CONTENT,
            priority=AlertPriority.LOW,
            category=AlertCategory.CONTENT,
            subject_id=item.id,
            client_id=item.client_id,
            title=f'Content "{item.title}" stuck in {item.status.value}',
            description=(
                f"Created {_count(age)} ago. Assigned to {assignee}. "
                "Consider moving to Draft."
            ),
            action="Create Draft Task",
            suggested_task=SuggestedTask(
                name=f"Draft content: {item.title}",
                client_id=item.client_id,
                assigned_to=item.assigned_to,
                category=TaskCategory.CONTENT.value,
                due_date=ctx.as_of_date + timedelta(days=3),
            ),
            due_date=item.created_at.date(),
        )

    def _blocked_tasks(self, ctx: _SweepContext) -> list[AlertFinding]:
        findings = []
        for task in ctx.inputs.tasks or []:
            if task.status != TaskStatus.BLOCKED or not ctx.in_scope(task.client_id):
                continue
            assignee = task.assigned_to or "nobody"
            findings.append(
                AlertFinding(
                    id=f"{AlertRule.BLOCKED_TASK.value}:{task.id}",
                    rule=AlertRule.BLOCKED_TASK,
                    priority=AlertPriority.MEDIUM,
                    category=AlertCategory.DELIVERABLE,
                    subject_id=task.id,
                    client_id=task.client_id,
                    title=f'Task "{task.name}" is blocked',
                    description=(
                        f"Assigned to {assignee} for {ctx.client_name(task.client_id)}. "
                        "Clear the blocker or reassign."
                    ),
                    action="Review Blocker",
                    due_date=task.due_date,
                )
            )
        return findings


def clients_in_scope(
    clients: list[Client], market: Optional[Market] = None
) -> list[Client]:
    """Non-churned clients, optionally restricted to one market."""
    return [
        c
        for c in clients
        if c.status != ClientStatus.CHURNED and (market is None or c.market == market)
    ]


__all__ = ["AlertRuleEngine", "RULE_DEPENDENCIES", "clients_in_scope"]
