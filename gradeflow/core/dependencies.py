"""
FastAPI dependencies wiring routers to the storage collaborator and engine.
Tests override ``get_store`` to run against an in-memory store.
"""

from fastapi import Depends

from gradeflow.core.calculation import MarksCalculator, RecordLocks
from gradeflow.core.database import get_supabase
from gradeflow.core.storage import MarksStore, SupabaseMarksStore

# Shared by every request so concurrent edits of one record are serialized
_record_locks = RecordLocks()


def get_store() -> MarksStore:
    return SupabaseMarksStore(get_supabase())


def get_calculator(store: MarksStore = Depends(get_store)) -> MarksCalculator:
    return MarksCalculator(store, _record_locks)
