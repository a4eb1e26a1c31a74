"""Database layer - engine, base classes, types, and immutability."""

from procurement_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from procurement_kernel.db.engine import create_tables, get_engine, get_session
from procurement_kernel.db.types import round_money, to_money

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "round_money",
    "to_money",
]
