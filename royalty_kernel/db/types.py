"""
Module: royalty_kernel.db.types
Responsibility: Annotated type aliases for royalty column types.  Centralizes
    the column definitions for cent amounts, basis points, identifiers and
    hashes so every model uses identical types.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    CRITICAL: No floats and no decimals in stored money.  Every monetary
    column is ``Cents`` (BigInteger) and every share is ``BasisPoints``.
"""

from typing import Annotated

from sqlalchemy import BigInteger, Integer, String, Text

# Monetary amount in integer cents (signed: adjustments may be negative)
Cents = Annotated[int, BigInteger]

# Share or rate in basis points (0..10000)
BasisPoints = Annotated[int, Integer]

# Monotonic sequence number for ordering
Sequence = Annotated[int, BigInteger]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

# External identifiers (creator, asset, license, actor) are opaque strings
ExternalId = Annotated[str, String(64)]

# Short identifier strings (status values, codes)
ShortCode = Annotated[str, String(50)]

# Free text (notes, reasons, resolutions)
LongText = Annotated[str, Text]
