from .ledger_base import LedgerBase, UnknownEntityError
from .ledger import InMemoryLedger

__all__ = ["LedgerBase", "UnknownEntityError", "InMemoryLedger"]
