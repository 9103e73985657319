"""ORM models for the fiscal kernel."""

from fiscal_kernel.models.reference import DocumentTypeRuleModel, TaxClassModel
from fiscal_kernel.models.sequence import IssuedNumberModel, NumberSequenceModel

__all__ = [
    "DocumentTypeRuleModel",
    "IssuedNumberModel",
    "NumberSequenceModel",
    "TaxClassModel",
]
