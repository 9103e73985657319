"""Fiscal kernel services: sequence allocation and invoice composition."""

from fiscal_kernel.services.invoice_compositor import InvoiceCompositor
from fiscal_kernel.services.reference_data import ReferenceDataCache
from fiscal_kernel.services.retry import retry_on_contention
from fiscal_kernel.services.sequence_allocator import SequenceAllocator
from fiscal_kernel.services.sequence_store import (
    InMemorySequenceStore,
    SequenceStore,
    SqlAlchemySequenceStore,
)
from fiscal_kernel.services.taxpayer_registry import (
    InMemoryTaxpayerRegistry,
    TaxpayerRecord,
    TaxpayerRegistry,
    TaxpayerRegistryUnavailableError,
    TaxpayerStatus,
)

__all__ = [
    "InMemorySequenceStore",
    "InMemoryTaxpayerRegistry",
    "InvoiceCompositor",
    "ReferenceDataCache",
    "SequenceAllocator",
    "SequenceStore",
    "SqlAlchemySequenceStore",
    "TaxpayerRecord",
    "TaxpayerRegistry",
    "TaxpayerRegistryUnavailableError",
    "TaxpayerStatus",
    "retry_on_contention",
]
