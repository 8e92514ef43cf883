"""
In-memory form record repository.

Single-process store used by tests and local tools. Transactions are
serialized with an asyncio lock and work on a staged copy of the record
map; the copy replaces the live map only when the transaction block exits
cleanly, so a failed operation leaves nothing behind.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from lifecycle.record import FormRecord
from lifecycle.repository import FormRecordRepository, FormRecordTransaction


class InMemoryTransaction(FormRecordTransaction):
    """Transaction over a staged copy of the record map."""

    def __init__(self, records: Dict[str, FormRecord]):
        self.staged = dict(records)

    async def get(self, record_id: str) -> Optional[FormRecord]:
        record = self.staged.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def get_for_owner(self, form_id: str, owner_id: str) -> Optional[FormRecord]:
        matches = [
            r for r in self.staged.values()
            if r.form_id == form_id and r.owner_id == owner_id
        ]
        if not matches:
            return None
        return max(matches, key=lambda r: r.updated_at).model_copy(deep=True)

    async def save(self, record: FormRecord) -> None:
        self.staged[record.id] = record.model_copy(deep=True)

    async def delete(self, record_id: str) -> bool:
        return self.staged.pop(record_id, None) is not None


class InMemoryFormRecordRepository(FormRecordRepository):
    """Form records held in process memory."""

    def __init__(self):
        self._records: Dict[str, FormRecord] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTransaction]:
        async with self._lock:
            tx = InMemoryTransaction(self._records)
            yield tx
            self._records = tx.staged

    def __len__(self) -> int:
        return len(self._records)
