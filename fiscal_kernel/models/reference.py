"""
Module: fiscal_kernel.models.reference
Responsibility: ORM persistence for fiscal reference data: tax classes and
    document-type rules.  Loaded once per process into the reference data
    cache.
Architecture position: Kernel > Models.
"""

from decimal import Decimal

from sqlalchemy import JSON, Boolean, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import TimestampedBase
from fiscal_kernel.domain.document_types import DocumentTypeRule
from fiscal_kernel.domain.tax_rules import TaxClass


class TaxClassModel(TimestampedBase):
    __tablename__ = "tax_classes"

    __table_args__ = (UniqueConstraint("code", name="uq_tax_classes_code"),)

    code: Mapped[str] = mapped_column(String(20), nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(10, 6), nullable=False)
    exempt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dto(self) -> TaxClass:
        return TaxClass(
            code=self.code,
            label=self.label,
            rate=Decimal(str(self.rate)).normalize(),
            exempt=self.exempt,
        )

    @classmethod
    def from_dto(cls, dto: TaxClass) -> "TaxClassModel":
        return cls(code=dto.code, label=dto.label, rate=dto.rate, exempt=dto.exempt)


class DocumentTypeRuleModel(TimestampedBase):
    """
    Document type rule.  ``allowed_tax_classes`` is a JSON list of tax
    class codes, validated against the tax table when the registry is
    built.
    """

    __tablename__ = "document_type_rules"

    __table_args__ = (UniqueConstraint("code", name="uq_document_type_rules_code"),)

    code: Mapped[str] = mapped_column(String(3), nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    allowed_tax_classes: Mapped[list] = mapped_column(JSON, nullable=False)
    requires_taxpayer_id: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_expiration: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> DocumentTypeRule:
        return DocumentTypeRule(
            code=self.code,
            label=self.label,
            allowed_tax_classes=frozenset(self.allowed_tax_classes),
            requires_taxpayer_id=self.requires_taxpayer_id,
            requires_expiration=self.requires_expiration,
        )

    @classmethod
    def from_dto(cls, dto: DocumentTypeRule) -> "DocumentTypeRuleModel":
        return cls(
            code=dto.code,
            label=dto.label,
            allowed_tax_classes=sorted(dto.allowed_tax_classes),
            requires_taxpayer_id=dto.requires_taxpayer_id,
            requires_expiration=dto.requires_expiration,
        )
