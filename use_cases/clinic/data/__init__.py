"""Clinic data layer - repository interface and its backends."""

from .repository import ClinicRepository, slot_ledger_id
from .memory_store import InMemoryClinicRepository

__all__ = [
    "ClinicRepository",
    "InMemoryClinicRepository",
    "slot_ledger_id",
]
