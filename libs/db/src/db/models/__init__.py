"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the statement/transaction models used by ``statement_ingest``.
"""

from .finance import BankStatement, Base, Category, Transaction

__all__ = [
    "Base",
    "BankStatement",
    "Category",
    "Transaction",
]
