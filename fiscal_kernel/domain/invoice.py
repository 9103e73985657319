"""
Fiscal Invoice -- drafts, composed invoices and their lifecycle.

Responsibility:
    ``InvoiceDraft`` is the mutable working copy a cashier edits.
    ``ComposedInvoice`` is the frozen record produced by the compositor
    once an NCF has been issued.  Status changes after composition are
    pure functions returning a new ``ComposedInvoice``, validated against
    ``INVOICE_WORKFLOW``.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Status is the tagged ``InvoiceStatus`` enum, never a free string.
    - No transition outside ``INVOICE_WORKFLOW``; cancelled and paid are
      terminal.
    - Once composed, a draft's lines can no longer change, and they
      cannot change while a compose of that draft is in progress.
    - Cancelling keeps the issued number on the invoice.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from fiscal_kernel.domain.aggregator import (
    InvoiceLine,
    InvoiceTotals,
    RoundingPolicy,
    compute_totals,
)
from fiscal_kernel.domain.sequence import IssuedNumber
from fiscal_kernel.domain.tax_rules import TaxRuleTable
from fiscal_kernel.domain.taxpayer import Customer
from fiscal_kernel.exceptions import (
    InvalidInvoiceTransitionError,
    InvalidPaymentAmountError,
    InvoiceFrozenError,
    LineNotFoundError,
)
from fiscal_kernel.logging_config import get_logger

logger = get_logger("domain.invoice")

MAX_PAYMENT_TERMS_DAYS = 365


class InvoiceStatus(Enum):
    """Invoice lifecycle states."""
    DRAFT = "draft"
    ISSUED = "issued"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: InvoiceStatus
    to_state: InvoiceStatus
    action: str


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    initial_state: InvoiceStatus
    terminal_states: frozenset[InvoiceStatus]
    transitions: tuple[Transition, ...]

    def allows(self, from_state: InvoiceStatus, to_state: InvoiceStatus, action: str) -> bool:
        return any(
            t.from_state is from_state and t.to_state is to_state and t.action == action
            for t in self.transitions
        )


_S = InvoiceStatus

INVOICE_WORKFLOW = Workflow(
    name="fiscal_invoice",
    initial_state=_S.DRAFT,
    terminal_states=frozenset({_S.PAID, _S.CANCELLED}),
    transitions=(
        Transition(_S.DRAFT, _S.ISSUED, action="compose"),
        Transition(_S.ISSUED, _S.PARTIALLY_PAID, action="record_payment"),
        Transition(_S.ISSUED, _S.PAID, action="record_payment"),
        Transition(_S.PARTIALLY_PAID, _S.PARTIALLY_PAID, action="record_payment"),
        Transition(_S.PARTIALLY_PAID, _S.PAID, action="record_payment"),
        Transition(_S.ISSUED, _S.OVERDUE, action="mark_overdue"),
        Transition(_S.PARTIALLY_PAID, _S.OVERDUE, action="mark_overdue"),
        Transition(_S.OVERDUE, _S.PARTIALLY_PAID, action="record_payment"),
        Transition(_S.OVERDUE, _S.PAID, action="record_payment"),
        Transition(_S.ISSUED, _S.CANCELLED, action="cancel"),
    ),
)


@dataclass(frozen=True)
class Payment:
    """A payment recorded against an issued invoice."""
    amount: Decimal
    paid_on: date
    reference: str = ""


@dataclass(frozen=True)
class ComposedInvoice:
    """An issued fiscal invoice.  Lines, totals and NCF never change."""
    invoice_id: str
    document_type: str
    issued_number: IssuedNumber
    customer: Customer
    lines: tuple[InvoiceLine, ...]
    totals: InvoiceTotals
    payment_terms_days: int
    issue_date: date
    due_date: date
    status: InvoiceStatus = InvoiceStatus.ISSUED
    payments: tuple[Payment, ...] = ()
    cancellation_reason: str | None = None

    @property
    def ncf(self) -> str:
        return self.issued_number.ncf

    @property
    def amount_paid(self) -> Decimal:
        return sum((p.amount for p in self.payments), Decimal("0"))

    @property
    def balance_due(self) -> Decimal:
        return max(self.totals.grand_total - self.amount_paid, Decimal("0"))


def _transition(
    invoice: ComposedInvoice, to_state: InvoiceStatus, action: str, **changes
) -> ComposedInvoice:
    if not INVOICE_WORKFLOW.allows(invoice.status, to_state, action):
        raise InvalidInvoiceTransitionError(
            invoice.invoice_id, invoice.status.value, to_state.value
        )
    updated = replace(invoice, status=to_state, **changes)
    logger.info(
        "invoice_status_changed",
        extra={
            "invoice_id": invoice.invoice_id,
            "ncf": invoice.ncf,
            "action": action,
            "from_status": invoice.status.value,
            "to_status": to_state.value,
        },
    )
    return updated


def apply_payment(
    invoice: ComposedInvoice,
    amount: Decimal | int | str,
    paid_on: date,
    reference: str = "",
) -> ComposedInvoice:
    """Record a payment; moves to partially_paid or paid."""
    amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if not amount.is_finite() or amount <= 0:
        raise InvalidPaymentAmountError(invoice.invoice_id, str(amount))
    payments = invoice.payments + (Payment(amount, paid_on, reference),)
    paid = sum((p.amount for p in payments), Decimal("0"))
    target = (
        InvoiceStatus.PAID
        if paid >= invoice.totals.grand_total
        else InvoiceStatus.PARTIALLY_PAID
    )
    return _transition(invoice, target, "record_payment", payments=payments)


def mark_overdue(invoice: ComposedInvoice, as_of: date) -> ComposedInvoice:
    """Move to overdue when past due and unpaid; otherwise return as-is."""
    if invoice.status not in (InvoiceStatus.ISSUED, InvoiceStatus.PARTIALLY_PAID):
        return invoice
    if as_of <= invoice.due_date:
        return invoice
    return _transition(invoice, InvoiceStatus.OVERDUE, "mark_overdue")


def cancel_invoice(invoice: ComposedInvoice, reason: str) -> ComposedInvoice:
    """Cancel an issued, unpaid invoice.  The NCF stays consumed."""
    return _transition(
        invoice, InvoiceStatus.CANCELLED, "cancel", cancellation_reason=reason
    )


class InvoiceDraft:
    """
    Mutable invoice under construction.

    Lines may be freely added, replaced and removed while the draft is in
    DRAFT.  ``compose_lock`` serializes composition of the same draft; an
    edit attempted while it is held raises InvoiceFrozenError.
    """

    def __init__(
        self,
        document_type: str,
        customer: Customer,
        currency: str,
        exchange_rate: Decimal = Decimal("1"),
        payment_terms_days: int = 30,
        invoice_id: str | None = None,
    ):
        self.invoice_id = invoice_id or uuid4().hex
        self.document_type = document_type
        self.customer = customer
        self.currency = currency
        self.exchange_rate = exchange_rate
        self.payment_terms_days = payment_terms_days
        self.status = InvoiceStatus.DRAFT
        self.composed: ComposedInvoice | None = None
        self.compose_lock = threading.Lock()
        self._lines: dict[str, InvoiceLine] = {}

    @property
    def lines(self) -> tuple[InvoiceLine, ...]:
        return tuple(self._lines.values())

    @contextmanager
    def _editing(self) -> Iterator[None]:
        if not self.compose_lock.acquire(blocking=False):
            raise InvoiceFrozenError(self.invoice_id)
        try:
            if self.status is not InvoiceStatus.DRAFT:
                raise InvoiceFrozenError(self.invoice_id)
            yield
        finally:
            self.compose_lock.release()

    def add_line(self, line: InvoiceLine) -> str:
        with self._editing():
            self._lines[line.line_id] = line
        return line.line_id

    def replace_line(self, line: InvoiceLine) -> None:
        with self._editing():
            if line.line_id not in self._lines:
                raise LineNotFoundError(self.invoice_id, line.line_id)
            self._lines[line.line_id] = line

    def remove_line(self, line_id: str) -> InvoiceLine:
        with self._editing():
            try:
                return self._lines.pop(line_id)
            except KeyError:
                raise LineNotFoundError(self.invoice_id, line_id) from None

    def totals(
        self,
        tax_table: TaxRuleTable,
        rounding_policy: RoundingPolicy = RoundingPolicy.PER_LINE,
        base_currency: str | None = None,
    ) -> InvoiceTotals:
        """Preview totals; recomputed on every call while in draft."""
        if self.composed is not None:
            return self.composed.totals
        return compute_totals(
            self.lines,
            tax_table,
            currency=self.currency,
            exchange_rate=self.exchange_rate,
            rounding_policy=rounding_policy,
            base_currency=base_currency,
        )

    def mark_issued(self, invoice: ComposedInvoice) -> None:
        if not INVOICE_WORKFLOW.allows(self.status, InvoiceStatus.ISSUED, "compose"):
            raise InvalidInvoiceTransitionError(
                self.invoice_id, self.status.value, InvoiceStatus.ISSUED.value
            )
        self.composed = invoice
        self.status = InvoiceStatus.ISSUED
