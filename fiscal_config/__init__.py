"""
Fiscal configuration: reference data (tax classes, document types) and
runtime settings, both loaded from YAML.
"""

from fiscal_config.loader import ReferenceData, load_reference_data
from fiscal_config.settings import FiscalSettings, load_settings

__all__ = [
    "FiscalSettings",
    "ReferenceData",
    "load_reference_data",
    "load_settings",
]
