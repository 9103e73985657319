"""
Reference Data Cache -- read-through cache of tax classes and document types.

Reference data changes only by administrative action, so it is loaded
once and held until ``invalidate()`` is called.  Sequences are NOT cached
here; the allocator always re-reads them under lock.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from fiscal_config.loader import ReferenceData, build_reference_data
from fiscal_kernel.domain.document_types import DocumentTypeRegistry
from fiscal_kernel.domain.tax_rules import TaxRuleTable
from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.services.sequence_store import SequenceStore

logger = get_logger("services.reference_data")


class ReferenceDataCache:
    """Thread-safe lazily loaded reference data."""

    def __init__(self, loader: Callable[[], ReferenceData]):
        self._loader = loader
        self._lock = threading.Lock()
        self._data: ReferenceData | None = None

    @classmethod
    def from_store(cls, store: SequenceStore) -> ReferenceDataCache:
        def load() -> ReferenceData:
            return build_reference_data(
                store.load_tax_classes(),
                store.load_document_type_rules(),
                source=type(store).__name__,
            )

        return cls(load)

    @classmethod
    def from_reference_data(cls, data: ReferenceData) -> ReferenceDataCache:
        return cls(lambda: data)

    def get(self) -> ReferenceData:
        with self._lock:
            if self._data is None:
                self._data = self._loader()
                logger.info(
                    "reference_data_cached",
                    extra={"source": self._data.source, "checksum": self._data.checksum},
                )
            return self._data

    @property
    def tax_table(self) -> TaxRuleTable:
        return self.get().tax_table

    @property
    def document_types(self) -> DocumentTypeRegistry:
        return self.get().document_types

    def invalidate(self) -> None:
        with self._lock:
            self._data = None
        logger.info("reference_data_invalidated")
