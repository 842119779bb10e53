"""Database layer - engine, base classes, types, and immutability."""

from royalty_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from royalty_kernel.db.engine import create_tables, get_engine, get_session
from royalty_kernel.db.types import BasisPoints, Cents, PayloadHash, Sequence

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Cents",
    "BasisPoints",
    "Sequence",
    "PayloadHash",
]
