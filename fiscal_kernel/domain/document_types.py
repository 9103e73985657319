"""
NCF Type Registry -- fiscal document types and their legal constraints.

Responsibility:
    Maps a fiscal-document-type code (B01, B02, ...) to display metadata,
    the set of tax classes it may carry, and whether the customer must be
    a registered taxpayer.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Consumed by the sequence allocator
    (to reject unknown types) and the invoice compositor (eligibility).

Invariants enforced:
    - Rules are immutable and validated against the tax rule table at
      construction: an allowed tax class that is not registered fails fast.
    - Unknown document-type codes raise UnknownDocumentTypeError.  There
      is NO fallback to a default type.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from fiscal_kernel.domain.tax_rules import TaxRuleTable
from fiscal_kernel.exceptions import ReferenceDataError, UnknownDocumentTypeError

_CODE_PATTERN = re.compile(r"^[A-Z]\d{2}$")


@dataclass(frozen=True)
class DocumentTypeRule:
    """Legal rules for one fiscal document type."""

    code: str
    label: str
    allowed_tax_classes: frozenset[str]
    requires_taxpayer_id: bool = False
    requires_expiration: bool = True

    def __post_init__(self) -> None:
        if not _CODE_PATTERN.match(self.code or ""):
            raise ReferenceDataError(
                "document_types", f"code {self.code!r} is not a letter plus two digits"
            )
        if not isinstance(self.allowed_tax_classes, frozenset):
            object.__setattr__(
                self, "allowed_tax_classes", frozenset(self.allowed_tax_classes)
            )
        if not self.allowed_tax_classes:
            raise ReferenceDataError(
                "document_types", f"{self.code} allows no tax classes"
            )

    def allows(self, tax_class: str) -> bool:
        return tax_class in self.allowed_tax_classes


class DocumentTypeRegistry:
    """Immutable registry of DocumentTypeRule keyed by code."""

    def __init__(self, rules: Iterable[DocumentTypeRule], tax_table: TaxRuleTable):
        registry: dict[str, DocumentTypeRule] = {}
        for rule in rules:
            if rule.code in registry:
                raise ReferenceDataError(
                    "document_types", f"duplicate document type {rule.code}"
                )
            unknown = rule.allowed_tax_classes - tax_table.codes()
            if unknown:
                raise ReferenceDataError(
                    "document_types",
                    f"{rule.code} references unknown tax classes {sorted(unknown)}",
                )
            registry[rule.code] = rule
        self._rules = registry

    def get(self, document_type: str) -> DocumentTypeRule:
        try:
            return self._rules[document_type]
        except KeyError:
            raise UnknownDocumentTypeError(document_type) from None

    def is_tax_class_allowed(self, document_type: str, tax_class: str) -> bool:
        return self.get(document_type).allows(tax_class)

    def requires_taxpayer_id(self, document_type: str) -> bool:
        return self.get(document_type).requires_taxpayer_id

    def __contains__(self, document_type: object) -> bool:
        return document_type in self._rules

    def codes(self) -> frozenset[str]:
        return frozenset(self._rules)

    def all(self) -> tuple[DocumentTypeRule, ...]:
        return tuple(self._rules.values())
