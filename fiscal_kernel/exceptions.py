"""
Typed Exception Hierarchy for the Fiscal Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers must react to fiscal failures by category, not by parsing
messages.  An exhausted NCF range needs an administrator; a bad discount
needs the cashier to fix the draft; a contended cursor can simply be
retried.  Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example:
    try:
        invoice = compositor.compose(draft)
    except NoEligibleSequenceError as e:
        notify_admin(f"No NCF range left for {e.document_type}")
    except EligibilityError as e:
        show_form_error(code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FiscalKernelError (base)
    |
    +-- ConfigurationError                 fatal, operator-facing
    |   +-- InvalidRangeError
    |   +-- OverlappingRangeError
    |   +-- InvalidSeriesError
    |   +-- MissingExpirationError
    |   +-- UnknownTaxClassError
    |   +-- UnknownDocumentTypeError
    |   +-- SequenceNotFoundError
    |   +-- ReferenceDataError
    |
    +-- EligibilityError                   fix the draft and compose again
    |   +-- CustomerIneligibleForDocumentTypeError
    |   +-- TaxClassNotAllowedForDocumentTypeError
    |   +-- EmptyLineSetError
    |   +-- InvalidLineQuantityError
    |   +-- InvalidDiscountError
    |   +-- InvalidUnitPriceError
    |   +-- InvalidCurrencyError
    |   +-- InvalidExchangeRateError
    |
    +-- ExternalServiceError
    |   +-- EligibilityCheckUnavailableError
    |
    +-- SequenceExhaustionError            fatal until a new range is registered
    |   +-- NoEligibleSequenceError
    |
    +-- ConcurrencyError                   transient, retryable
    |   +-- SequenceContendedError
    |
    +-- InvariantViolationError            programmer error, halts the sequence
    |   +-- SequenceInvariantViolationError
    |
    +-- InvoiceError
        +-- AlreadyIssuedError
        +-- InvoiceFrozenError
        +-- InvalidInvoiceTransitionError
        +-- InvalidPaymentAmountError
        +-- LineNotFoundError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. NEVER loop on NoEligibleSequenceError.  It requires registering a new
   range with the tax authority.

2. SequenceContendedError is the only error that may be retried
   automatically (see ``fiscal_kernel.services.retry``).

3. SequenceInvariantViolationError means a concurrency bug.  The
   allocator has already halted the sequence; page an engineer.
"""


class FiscalKernelError(Exception):
    """
    Base exception for all fiscal kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FISCAL_KERNEL_ERROR"
    retryable: bool = False


# Configuration errors


class ConfigurationError(FiscalKernelError):
    """Base exception for bad administrative setup."""

    code: str = "CONFIGURATION_ERROR"


class InvalidRangeError(ConfigurationError):
    """NCF range bounds are not a valid interval."""

    code: str = "INVALID_RANGE"

    def __init__(self, range_start: int, range_end: int, reason: str):
        self.range_start = range_start
        self.range_end = range_end
        self.reason = reason
        super().__init__(
            f"Invalid NCF range [{range_start}, {range_end}]: {reason}"
        )


class OverlappingRangeError(ConfigurationError):
    """New range intersects an existing range of the same type and series."""

    code: str = "OVERLAPPING_RANGE"

    def __init__(
        self,
        document_type: str,
        series: str,
        range_start: int,
        range_end: int,
        existing_sequence_id: str,
    ):
        self.document_type = document_type
        self.series = series
        self.range_start = range_start
        self.range_end = range_end
        self.existing_sequence_id = existing_sequence_id
        super().__init__(
            f"Range [{range_start}, {range_end}] for {document_type} series "
            f"{series} overlaps sequence {existing_sequence_id}"
        )


class InvalidSeriesError(ConfigurationError):
    """Series label cannot be rendered in the three-digit NCF slot."""

    code: str = "INVALID_SERIES"

    def __init__(self, series: str):
        self.series = series
        super().__init__(f"Invalid NCF series {series!r}: expected 1-3 digits")


class MissingExpirationError(ConfigurationError):
    """Document type requires an expiration date for its ranges."""

    code: str = "MISSING_EXPIRATION"

    def __init__(self, document_type: str):
        self.document_type = document_type
        super().__init__(
            f"Ranges for document type {document_type} require an expiration date"
        )


class UnknownTaxClassError(ConfigurationError):
    """Tax class code is not registered in the tax rule table."""

    code: str = "UNKNOWN_TAX_CLASS"

    def __init__(self, tax_class: str):
        self.tax_class = tax_class
        super().__init__(f"Unknown tax class: {tax_class}")


class UnknownDocumentTypeError(ConfigurationError):
    """Fiscal document type code is not registered."""

    code: str = "UNKNOWN_DOCUMENT_TYPE"

    def __init__(self, document_type: str):
        self.document_type = document_type
        super().__init__(f"Unknown fiscal document type: {document_type}")


class SequenceNotFoundError(ConfigurationError):
    """NCF sequence with given ID was not found."""

    code: str = "SEQUENCE_NOT_FOUND"

    def __init__(self, sequence_id: str):
        self.sequence_id = sequence_id
        super().__init__(f"NCF sequence not found: {sequence_id}")


class ReferenceDataError(ConfigurationError):
    """Reference data (tax classes, document types) failed validation."""

    code: str = "REFERENCE_DATA_ERROR"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid reference data in {source}: {reason}")


# Eligibility errors


class EligibilityError(FiscalKernelError):
    """Base exception for invoice drafts that cannot be composed as-is."""

    code: str = "ELIGIBILITY_ERROR"


class CustomerIneligibleForDocumentTypeError(EligibilityError):
    """Customer lacks the registered taxpayer id the document type needs."""

    code: str = "CUSTOMER_INELIGIBLE_FOR_DOCUMENT_TYPE"

    def __init__(self, customer_id: str, document_type: str, reason: str):
        self.customer_id = customer_id
        self.document_type = document_type
        self.reason = reason
        super().__init__(
            f"Customer {customer_id} cannot receive {document_type}: {reason}"
        )


class TaxClassNotAllowedForDocumentTypeError(EligibilityError):
    """Line tax class is outside the document type's allowed set."""

    code: str = "TAX_CLASS_NOT_ALLOWED_FOR_DOCUMENT_TYPE"

    def __init__(self, document_type: str, tax_class: str, line_id: str):
        self.document_type = document_type
        self.tax_class = tax_class
        self.line_id = line_id
        super().__init__(
            f"Tax class {tax_class} (line {line_id}) is not allowed on "
            f"document type {document_type}"
        )


class EmptyLineSetError(EligibilityError):
    """An invoice must have at least one line."""

    code: str = "EMPTY_LINE_SET"

    def __init__(self):
        super().__init__("Invoice has no lines")


class InvalidLineQuantityError(EligibilityError):
    """Line quantity is not positive or has more than 3 decimals."""

    code: str = "INVALID_LINE_QUANTITY"

    def __init__(self, line_id: str, quantity: str):
        self.line_id = line_id
        self.quantity = quantity
        super().__init__(f"Invalid quantity {quantity} on line {line_id}")


class InvalidDiscountError(EligibilityError):
    """Discount percentage outside [0, 100]."""

    code: str = "INVALID_DISCOUNT"

    def __init__(self, line_id: str, discount_pct: str):
        self.line_id = line_id
        self.discount_pct = discount_pct
        super().__init__(
            f"Invalid discount {discount_pct}% on line {line_id}: must be 0-100"
        )


class InvalidUnitPriceError(EligibilityError):
    """Unit price is negative."""

    code: str = "INVALID_UNIT_PRICE"

    def __init__(self, line_id: str, unit_price: str):
        self.line_id = line_id
        self.unit_price = unit_price
        super().__init__(f"Invalid unit price {unit_price} on line {line_id}")


class InvalidCurrencyError(EligibilityError):
    """Not a recognized ISO 4217 currency code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: {currency!r}")


class InvalidExchangeRateError(EligibilityError):
    """Exchange rate is not positive or contradicts the base currency."""

    code: str = "INVALID_EXCHANGE_RATE"

    def __init__(self, currency: str, rate: str, reason: str):
        self.currency = currency
        self.rate = rate
        self.reason = reason
        super().__init__(f"Invalid exchange rate {rate} for {currency}: {reason}")


# External collaborators


class ExternalServiceError(FiscalKernelError):
    """Base exception for failures of external collaborators."""

    code: str = "EXTERNAL_SERVICE_ERROR"


class EligibilityCheckUnavailableError(ExternalServiceError):
    """Taxpayer registry could not be reached; composition fails closed."""

    code: str = "ELIGIBILITY_CHECK_UNAVAILABLE"

    def __init__(self, taxpayer_id: str, reason: str):
        self.taxpayer_id = taxpayer_id
        self.reason = reason
        super().__init__(
            f"Taxpayer registry unavailable for {taxpayer_id}: {reason}"
        )


# Exhaustion / expiration


class SequenceExhaustionError(FiscalKernelError):
    """Base exception for NCF capacity problems."""

    code: str = "SEQUENCE_EXHAUSTION"


class NoEligibleSequenceError(SequenceExhaustionError):
    """
    No active, unexpired, unexhausted range exists for the document type.

    Must never be retried automatically; an administrator has to register
    a new range with the tax authority.
    """

    code: str = "NO_ELIGIBLE_SEQUENCE"

    def __init__(self, document_type: str, as_of: str):
        self.document_type = document_type
        self.as_of = as_of
        super().__init__(
            f"No eligible NCF sequence for {document_type} as of {as_of}"
        )


# Concurrency


class ConcurrencyError(FiscalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class SequenceContendedError(ConcurrencyError):
    """Cursor lock not acquired in time, or another writer moved the cursor."""

    code: str = "SEQUENCE_CONTENDED"

    def __init__(self, sequence_id: str, reason: str):
        self.sequence_id = sequence_id
        self.reason = reason
        super().__init__(f"NCF sequence {sequence_id} contended: {reason}")


# Invariant violations


class InvariantViolationError(FiscalKernelError):
    """Base exception for states that correct code can never produce."""

    code: str = "INVARIANT_VIOLATION"


class SequenceInvariantViolationError(InvariantViolationError):
    """Issuance would break a range or expiration invariant."""

    code: str = "SEQUENCE_INVARIANT_VIOLATION"

    def __init__(self, sequence_id: str, reason: str):
        self.sequence_id = sequence_id
        self.reason = reason
        super().__init__(
            f"Invariant violated on NCF sequence {sequence_id}: {reason}"
        )


# Invoice lifecycle


class InvoiceError(FiscalKernelError):
    """Base exception for invoice lifecycle errors."""

    code: str = "INVOICE_ERROR"


class AlreadyIssuedError(InvoiceError):
    """compose() was called on a draft that already carries a number."""

    code: str = "ALREADY_ISSUED"

    def __init__(self, invoice_id: str, ncf: str | None):
        self.invoice_id = invoice_id
        self.ncf = ncf
        super().__init__(f"Invoice {invoice_id} already issued as {ncf}")


class InvoiceFrozenError(InvoiceError):
    """Draft lines cannot change after composition."""

    code: str = "INVOICE_FROZEN"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is frozen and cannot be edited")


class InvalidInvoiceTransitionError(InvoiceError):
    """Requested status change is not in the invoice workflow."""

    code: str = "INVALID_INVOICE_TRANSITION"

    def __init__(self, invoice_id: str, from_status: str, to_status: str):
        self.invoice_id = invoice_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invoice {invoice_id} cannot move from {from_status} to {to_status}"
        )


class InvalidPaymentAmountError(InvoiceError):
    """Payment amount must be strictly positive."""

    code: str = "INVALID_PAYMENT_AMOUNT"

    def __init__(self, invoice_id: str, amount: str):
        self.invoice_id = invoice_id
        self.amount = amount
        super().__init__(f"Invalid payment amount {amount} for invoice {invoice_id}")


class LineNotFoundError(InvoiceError):
    """Draft has no line with the given id."""

    code: str = "LINE_NOT_FOUND"

    def __init__(self, invoice_id: str, line_id: str):
        self.invoice_id = invoice_id
        self.line_id = line_id
        super().__init__(f"Line {line_id} not found on invoice {invoice_id}")
