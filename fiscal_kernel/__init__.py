"""
Fiscal Kernel - NCF numbering and invoice tax core.

A library for Dominican Republic fiscal documents with:
- Typed, expiring NCF ranges with exhaustion-safe allocation
- Serialized cursor increments under concurrent issuance
- Per-line ITBIS / discount aggregation in Decimal arithmetic
- Invoice composition with all-or-nothing number issuance
"""

__version__ = "0.1.0"
