"""
Pure domain layer.

Value objects and calculations with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (see clock.py)

Domain objects are immutable and deterministic, except ``InvoiceDraft``
which is the cashier's working copy until it is composed.
"""

from fiscal_kernel.domain.aggregator import (
    InvoiceLine,
    InvoiceTotals,
    RoundingPolicy,
    TaxBreakdown,
    compute_totals,
)
from fiscal_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from fiscal_kernel.domain.currency import CurrencyInfo, CurrencyRegistry, round_money
from fiscal_kernel.domain.document_types import DocumentTypeRegistry, DocumentTypeRule
from fiscal_kernel.domain.invoice import (
    INVOICE_WORKFLOW,
    ComposedInvoice,
    InvoiceDraft,
    InvoiceStatus,
    Payment,
)
from fiscal_kernel.domain.sequence import (
    AlertKind,
    IssuedNumber,
    NumberSequence,
    SequenceAlert,
    SequenceHealth,
    SequenceState,
    format_ncf,
)
from fiscal_kernel.domain.tax_rules import TaxClass, TaxRuleTable
from fiscal_kernel.domain.taxpayer import (
    Customer,
    TaxpayerIdKind,
    classify_taxpayer_id,
    format_taxpayer_id,
)

__all__ = [
    "INVOICE_WORKFLOW",
    "AlertKind",
    "Clock",
    "ComposedInvoice",
    "CurrencyInfo",
    "CurrencyRegistry",
    "Customer",
    "DeterministicClock",
    "DocumentTypeRegistry",
    "DocumentTypeRule",
    "InvoiceDraft",
    "InvoiceLine",
    "InvoiceStatus",
    "InvoiceTotals",
    "IssuedNumber",
    "NumberSequence",
    "Payment",
    "RoundingPolicy",
    "SequenceAlert",
    "SequenceHealth",
    "SequenceState",
    "SystemClock",
    "TaxBreakdown",
    "TaxClass",
    "TaxRuleTable",
    "TaxpayerIdKind",
    "classify_taxpayer_id",
    "compute_totals",
    "format_ncf",
    "format_taxpayer_id",
    "round_money",
]
