"""
Reference Data Loader (``fiscal_config.loader``).

Responsibility
--------------
Loads the fiscal reference data YAML (tax classes and document types) and
parses it into a ``TaxRuleTable`` and a ``DocumentTypeRegistry``.

Invariants enforced
-------------------
* Every parse error raises ``ReferenceDataError`` naming the source file
  and the offending entry; there are no silent defaults for required keys.
* Rates are parsed from strings (or ints) into Decimal, never float.
* ``compute_checksum`` produces a deterministic SHA-256 of the parsed
  content so the loaded data can be matched to a known baseline.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from importlib import resources
from pathlib import Path
from typing import Any

import yaml

from fiscal_kernel.domain.document_types import DocumentTypeRegistry, DocumentTypeRule
from fiscal_kernel.domain.tax_rules import TaxClass, TaxRuleTable
from fiscal_kernel.exceptions import ReferenceDataError
from fiscal_kernel.logging_config import get_logger

logger = get_logger("config.loader")


@dataclass(frozen=True)
class ReferenceData:
    """Parsed, cross-validated reference data."""

    tax_table: TaxRuleTable
    document_types: DocumentTypeRegistry
    checksum: str
    source: str


def default_reference_data_path() -> Path:
    return Path(str(resources.files("fiscal_config") / "data" / "reference_data.yaml"))


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if data is not None else {}


def _parse_rate(source: str, code: str, raw: Any) -> Decimal:
    if isinstance(raw, float):
        raise ReferenceDataError(
            source, f"rate of {code} must be quoted (got float {raw!r})"
        )
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise ReferenceDataError(source, f"rate of {code} is not a number: {raw!r}") from None


def _parse_flag(source: str, code: str, data: dict[str, Any], key: str, default: bool) -> bool:
    raw = data.get(key, default)
    if not isinstance(raw, bool):
        raise ReferenceDataError(
            source, f"{key} of {code} must be true or false (got {raw!r})"
        )
    return raw


def _parse_code_list(source: str, code: str, data: dict[str, Any], key: str) -> frozenset[str]:
    raw = data[key]
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise ReferenceDataError(
            source, f"{key} of {code} must be a list of codes (got {raw!r})"
        )
    return frozenset(raw)


def parse_tax_class(data: dict[str, Any], source: str = "tax_classes") -> TaxClass:
    try:
        code = data["code"]
        return TaxClass(
            code=code,
            label=data.get("label", code),
            rate=_parse_rate(source, code, data["rate"]),
            exempt=_parse_flag(source, code, data, "exempt", False),
        )
    except KeyError as exc:
        raise ReferenceDataError(source, f"tax class entry missing {exc.args[0]!r}") from None


def parse_document_type(
    data: dict[str, Any], source: str = "document_types"
) -> DocumentTypeRule:
    try:
        code = data["code"]
        return DocumentTypeRule(
            code=code,
            label=data.get("label", code),
            allowed_tax_classes=_parse_code_list(source, code, data, "allowed_tax_classes"),
            requires_taxpayer_id=_parse_flag(
                source, code, data, "requires_taxpayer_id", False
            ),
            requires_expiration=_parse_flag(source, code, data, "requires_expiration", True),
        )
    except KeyError as exc:
        raise ReferenceDataError(
            source, f"document type entry missing {exc.args[0]!r}"
        ) from None


def build_reference_data(
    tax_classes: list[TaxClass],
    document_types: list[DocumentTypeRule],
    source: str,
) -> ReferenceData:
    tax_table = TaxRuleTable(tax_classes)
    registry = DocumentTypeRegistry(document_types, tax_table)
    return ReferenceData(
        tax_table=tax_table,
        document_types=registry,
        checksum=compute_checksum(tax_table, registry),
        source=source,
    )


def parse_reference_data(data: dict[str, Any], source: str) -> ReferenceData:
    tax_entries = data.get("tax_classes") or []
    type_entries = data.get("document_types") or []
    if not tax_entries:
        raise ReferenceDataError(source, "no tax_classes defined")
    if not type_entries:
        raise ReferenceDataError(source, "no document_types defined")
    return build_reference_data(
        [parse_tax_class(entry, source) for entry in tax_entries],
        [parse_document_type(entry, source) for entry in type_entries],
        source,
    )


def load_reference_data(path: Path | str | None = None) -> ReferenceData:
    """Load reference data from ``path`` or the packaged default."""
    path = Path(path) if path is not None else default_reference_data_path()
    reference = parse_reference_data(load_yaml_file(path), str(path))
    logger.info(
        "reference_data_loaded",
        extra={
            "source": str(path),
            "tax_classes": len(reference.tax_table.codes()),
            "document_types": len(reference.document_types.codes()),
            "checksum": reference.checksum,
        },
    )
    return reference


def compute_checksum(tax_table: TaxRuleTable, registry: DocumentTypeRegistry) -> str:
    """SHA-256 over a canonical JSON rendering of the reference data."""
    payload = {
        "tax_classes": [
            {"code": tc.code, "rate": str(tc.rate.normalize()), "exempt": tc.exempt}
            for tc in sorted(tax_table.all(), key=lambda t: t.code)
        ],
        "document_types": [
            {
                "code": rule.code,
                "allowed": sorted(rule.allowed_tax_classes),
                "requires_taxpayer_id": rule.requires_taxpayer_id,
                "requires_expiration": rule.requires_expiration,
            }
            for rule in sorted(registry.all(), key=lambda r: r.code)
        ],
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
