"""
Invoice Compositor -- turns a draft into an issued fiscal invoice.

Responsibility:
    Runs the eligibility gate, computes totals, and only then asks the
    allocator for an NCF.  Owns the post-issue lifecycle calls (payment,
    overdue refresh, cancellation).

Architecture position:
    Kernel > Services.  Orchestrates the document-type registry, the
    aggregator, the taxpayer registry and the sequence allocator.

Invariants enforced:
    - Atomic compose: any failure leaves the draft in DRAFT with no
      number consumed.  Lines are read once, and the due date is computed,
      before ``issue_next``, which is the last step that can fail.
    - A draft is composed at most once, also under concurrent calls.
    - Only SequenceContendedError is retried, with bounded backoff.
    - Eligibility fails closed: an unreachable taxpayer registry blocks
      document types that require a registered taxpayer.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import date, timedelta
from decimal import Decimal

from fiscal_config.settings import FiscalSettings
from fiscal_kernel.domain.aggregator import (
    InvoiceLine,
    InvoiceTotals,
    compute_totals,
    validate_exchange_rate,
)
from fiscal_kernel.domain.clock import Clock, SystemClock
from fiscal_kernel.domain.currency import CurrencyRegistry
from fiscal_kernel.domain.document_types import DocumentTypeRule
from fiscal_kernel.domain.invoice import (
    MAX_PAYMENT_TERMS_DAYS,
    ComposedInvoice,
    InvoiceDraft,
    InvoiceStatus,
    apply_payment,
    cancel_invoice,
    mark_overdue,
)
from fiscal_kernel.domain.taxpayer import Customer, classify_taxpayer_id
from fiscal_kernel.exceptions import (
    AlreadyIssuedError,
    CustomerIneligibleForDocumentTypeError,
    EligibilityCheckUnavailableError,
    TaxClassNotAllowedForDocumentTypeError,
)
from fiscal_kernel.logging_config import LogContext, get_logger
from fiscal_kernel.services.reference_data import ReferenceDataCache
from fiscal_kernel.services.retry import retry_on_contention
from fiscal_kernel.services.sequence_allocator import SequenceAllocator
from fiscal_kernel.services.taxpayer_registry import (
    TaxpayerRegistry,
    TaxpayerRegistryUnavailableError,
)

logger = get_logger("services.invoice_compositor")


class InvoiceCompositor:
    """
    Composes fiscal invoices.

    Contract:
        ``compose(draft)`` either returns a ComposedInvoice carrying a
        freshly issued NCF, or raises with the draft unchanged and no
        number consumed.

    Non-goals:
        - Does NOT persist invoices; callers store the ComposedInvoice.
        - Does NOT release an NCF on cancellation.
    """

    def __init__(
        self,
        allocator: SequenceAllocator,
        reference_data: ReferenceDataCache,
        taxpayer_registry: TaxpayerRegistry | None = None,
        clock: Clock | None = None,
        settings: FiscalSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._allocator = allocator
        self._reference_data = reference_data
        self._taxpayer_registry = taxpayer_registry
        self._clock = clock or SystemClock()
        self._settings = settings or FiscalSettings()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def new_draft(
        self,
        document_type: str,
        customer: Customer,
        currency: str | None = None,
        exchange_rate: Decimal | int | str = Decimal("1"),
        payment_terms_days: int | None = None,
    ) -> InvoiceDraft:
        self._reference_data.document_types.get(document_type)
        currency = CurrencyRegistry.validate(currency or self._settings.base_currency)
        rate = validate_exchange_rate(currency, exchange_rate, self._settings.base_currency)
        if payment_terms_days is None:
            payment_terms_days = self._settings.default_payment_terms_days
        if not 0 <= payment_terms_days <= MAX_PAYMENT_TERMS_DAYS:
            raise ValueError(
                f"payment_terms_days must be between 0 and {MAX_PAYMENT_TERMS_DAYS}"
            )
        return InvoiceDraft(
            document_type=document_type,
            customer=customer,
            currency=currency,
            exchange_rate=rate,
            payment_terms_days=payment_terms_days,
        )

    def preview_totals(self, draft: InvoiceDraft) -> InvoiceTotals:
        return draft.totals(
            self._reference_data.tax_table,
            rounding_policy=self._settings.rounding_policy,
            base_currency=self._settings.base_currency,
        )

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def compose(self, draft: InvoiceDraft, as_of: date | None = None) -> ComposedInvoice:
        """
        Validate, total and number ``draft``.

        Steps, in order:
            1. Customer eligibility for the document type.
            2. Every line's tax class is known and allowed.
            3. Totals (line validation happens here) and the due date.
            4. NCF issuance, retried only on contention.

        Raises:
            AlreadyIssuedError, UnknownDocumentTypeError, EligibilityError
            subclasses, EligibilityCheckUnavailableError,
            UnknownTaxClassError, ValueError (payment terms out of range), NoEligibleSequenceError,
            SequenceContendedError, SequenceInvariantViolationError.
        """
        with draft.compose_lock:
            if draft.status is not InvoiceStatus.DRAFT:
                raise AlreadyIssuedError(
                    draft.invoice_id, draft.composed.ncf if draft.composed else None
                )

            with LogContext.bind(
                invoice_id=draft.invoice_id, document_type=draft.document_type
            ):
                lines = draft.lines
                rule = self._reference_data.document_types.get(draft.document_type)
                self._check_customer(rule, draft.customer)
                self._check_tax_classes(rule, lines)
                totals = compute_totals(
                    lines,
                    self._reference_data.tax_table,
                    currency=draft.currency,
                    exchange_rate=draft.exchange_rate,
                    rounding_policy=self._settings.rounding_policy,
                    base_currency=self._settings.base_currency,
                )

                issue_date = as_of or self._clock.today()
                due_date = self._due_date(issue_date, draft.payment_terms_days)
                issued = retry_on_contention(
                    lambda: self._allocator.issue_next(draft.document_type, issue_date),
                    max_attempts=self._settings.contention_max_attempts,
                    backoff_seconds=self._settings.contention_backoff_seconds,
                    sleep=self._sleep,
                )

                invoice = ComposedInvoice(
                    invoice_id=draft.invoice_id,
                    document_type=draft.document_type,
                    issued_number=issued,
                    customer=draft.customer,
                    lines=lines,
                    totals=totals,
                    payment_terms_days=draft.payment_terms_days,
                    issue_date=issue_date,
                    due_date=due_date,
                )
                draft.mark_issued(invoice)

                logger.info(
                    "invoice_composed",
                    extra={
                        "ncf": issued.ncf,
                        "customer_id": draft.customer.customer_id,
                        "line_count": len(invoice.lines),
                        "currency": totals.currency,
                        "grand_total": totals.grand_total,
                        "due_date": invoice.due_date,
                    },
                )
                return invoice

    @staticmethod
    def _due_date(issue_date: date, payment_terms_days: int) -> date:
        if not 0 <= payment_terms_days <= MAX_PAYMENT_TERMS_DAYS:
            raise ValueError(
                f"payment_terms_days must be between 0 and {MAX_PAYMENT_TERMS_DAYS}"
            )
        try:
            return issue_date + timedelta(days=payment_terms_days)
        except OverflowError as exc:
            raise ValueError(f"due date out of range for issue date {issue_date}") from exc

    def _check_customer(self, rule: DocumentTypeRule, customer: Customer) -> None:
        if not rule.requires_taxpayer_id:
            return
        taxpayer_id = customer.normalized_taxpayer_id
        if not taxpayer_id:
            raise CustomerIneligibleForDocumentTypeError(
                customer.customer_id, rule.code, "a taxpayer id (RNC or cédula) is required"
            )
        if classify_taxpayer_id(taxpayer_id) is None:
            raise CustomerIneligibleForDocumentTypeError(
                customer.customer_id, rule.code, f"taxpayer id {taxpayer_id} is not valid"
            )
        if self._taxpayer_registry is None:
            return

        try:
            record = self._taxpayer_registry.lookup(taxpayer_id)
        except TaxpayerRegistryUnavailableError as exc:
            logger.error(
                "taxpayer_registry_unavailable",
                extra={"taxpayer_id": taxpayer_id, "error": str(exc)},
            )
            raise EligibilityCheckUnavailableError(taxpayer_id, str(exc)) from exc

        if record is None:
            raise CustomerIneligibleForDocumentTypeError(
                customer.customer_id, rule.code, f"taxpayer {taxpayer_id} is not registered"
            )
        if not record.is_active:
            raise CustomerIneligibleForDocumentTypeError(
                customer.customer_id,
                rule.code,
                f"taxpayer {taxpayer_id} is {record.status.value}",
            )

    def _check_tax_classes(
        self, rule: DocumentTypeRule, lines: tuple[InvoiceLine, ...]
    ) -> None:
        tax_table = self._reference_data.tax_table
        for line in lines:
            tax_table.get(line.tax_class)
            if not rule.allows(line.tax_class):
                raise TaxClassNotAllowedForDocumentTypeError(
                    rule.code, line.tax_class, line.line_id
                )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def record_payment(
        self,
        invoice: ComposedInvoice,
        amount: Decimal | int | str,
        paid_on: date | None = None,
        reference: str = "",
    ) -> ComposedInvoice:
        with LogContext.bind(invoice_id=invoice.invoice_id):
            return apply_payment(
                invoice, amount, paid_on or self._clock.today(), reference
            )

    def refresh_overdue(
        self, invoice: ComposedInvoice, as_of: date | None = None
    ) -> ComposedInvoice:
        with LogContext.bind(invoice_id=invoice.invoice_id):
            return mark_overdue(invoice, as_of or self._clock.today())

    def cancel(self, invoice: ComposedInvoice, reason: str) -> ComposedInvoice:
        with LogContext.bind(invoice_id=invoice.invoice_id):
            return cancel_invoice(invoice, reason)
