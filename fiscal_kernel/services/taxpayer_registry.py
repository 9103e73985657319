"""
Taxpayer Registry -- collaborator answering "is this RNC/cédula registered?".

The compositor calls ``lookup`` for document types that require a
registered taxpayer.  A registry that cannot be reached raises
``TaxpayerRegistryUnavailableError``; the compositor turns that into
``EligibilityCheckUnavailableError`` and refuses to compose (fail closed).
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from fiscal_kernel.domain.taxpayer import normalize_taxpayer_id


class TaxpayerStatus(Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TaxpayerRecord:
    taxpayer_id: str
    legal_name: str
    status: TaxpayerStatus = TaxpayerStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status is TaxpayerStatus.ACTIVE


class TaxpayerRegistryUnavailableError(Exception):
    """The registry backend could not answer."""


class TaxpayerRegistry(ABC):
    @abstractmethod
    def lookup(self, taxpayer_id: str) -> TaxpayerRecord | None:
        """Return the record for a normalized id, or None if unregistered.

        Raises:
            TaxpayerRegistryUnavailableError: backend unreachable.
        """


class InMemoryTaxpayerRegistry(TaxpayerRegistry):
    """Registry backed by a local snapshot (e.g. the DGII RNC listing)."""

    def __init__(self, records: Iterable[TaxpayerRecord] = ()):
        self._lock = threading.Lock()
        self._records: dict[str, TaxpayerRecord] = {}
        self._available = True
        for record in records:
            self.register(record)

    def register(self, record: TaxpayerRecord) -> None:
        with self._lock:
            self._records[normalize_taxpayer_id(record.taxpayer_id)] = record

    def set_available(self, available: bool) -> None:
        """Simulate an outage of the backing service."""
        self._available = available

    def lookup(self, taxpayer_id: str) -> TaxpayerRecord | None:
        if not self._available:
            raise TaxpayerRegistryUnavailableError("taxpayer registry offline")
        with self._lock:
            return self._records.get(normalize_taxpayer_id(taxpayer_id))
