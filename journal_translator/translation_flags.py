"""
Per-item translation flags.

Flags live on the item itself (in the store's namespace) so that an
unfinished batch can be rediscovered after a restart.
"""

from typing import NamedTuple, Optional, List, Dict, Any

from .store import DocumentStore

# Flag field names (persisted)
FLAG_BATCH_ID = "translationBatchId"
FLAG_BATCH_INDEX = "translationBatchIndex"
FLAG_QUEUED = "translationQueued"
FLAG_COMPLETED = "translationCompleted"

ALL_FLAGS = [FLAG_BATCH_ID, FLAG_BATCH_INDEX, FLAG_QUEUED, FLAG_COMPLETED]


class TranslationFlags(NamedTuple):
    batch_id: Optional[str]
    batch_index: Optional[int]
    queued: bool
    completed: bool

    @property
    def in_flight(self) -> bool:
        return bool(self.queued and not self.completed and self.batch_id)


async def mark_queued(store: DocumentStore, item: Dict[str, Any], batch_id: str, batch_index: int) -> None:
    """Record that an item was submitted as position `batch_index` of `batch_id` (single write)."""
    await store.run_async(
        store.set_flags,
        item["document_id"],
        item["id"],
        {
            FLAG_BATCH_ID: batch_id,
            FLAG_BATCH_INDEX: batch_index,
            FLAG_QUEUED: True,
            FLAG_COMPLETED: False,
        },
        replace=True,
    )


async def mark_completed(store: DocumentStore, item: Dict[str, Any]) -> None:
    """Flip an item to completed. The batch id and index are kept."""
    await store.run_async(
        store.set_flags,
        item["document_id"],
        item["id"],
        {FLAG_COMPLETED: True, FLAG_QUEUED: False},
    )


def read_flags(store: DocumentStore, item: Dict[str, Any]) -> TranslationFlags:
    flags = store.get_flags(item["document_id"], item["id"])
    return TranslationFlags(
        batch_id=flags.get(FLAG_BATCH_ID),
        batch_index=flags.get(FLAG_BATCH_INDEX),
        queued=bool(flags.get(FLAG_QUEUED, False)),
        completed=bool(flags.get(FLAG_COMPLETED, False)),
    )


async def clear_flags(store: DocumentStore, item: Dict[str, Any]) -> None:
    await store.run_async(store.unset_flags, item["document_id"], item["id"], ALL_FLAGS)


def find_incomplete_translations(store: DocumentStore, doc_id: str) -> Dict[str, List[Dict[str, Any]]]:
    """
    Find items queued in a batch that never completed.

    Returns:
        Dict mapping batch_id -> list of items still waiting on that batch
    """
    incomplete: Dict[str, List[Dict[str, Any]]] = {}
    for item in store.get_items(doc_id):
        flags = read_flags(store, item)
        if flags.in_flight:
            incomplete.setdefault(flags.batch_id, []).append(item)
    return incomplete


def has_incomplete_translations(store: DocumentStore, doc_id: str) -> bool:
    return len(find_incomplete_translations(store, doc_id)) > 0


def find_queued_items(store: DocumentStore, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Return the items that are still queued under some batch."""
    return [item for item in items if read_flags(store, item).in_flight]
