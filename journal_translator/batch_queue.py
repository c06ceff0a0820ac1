"""
Registry of batch jobs this process is currently polling.

Only guards against polling the same batch twice at once. It is not
persisted; item flags are the durable record of what is in flight.
"""

from typing import List, Optional


class ActiveJobRegistry:

    def __init__(self):
        self._active = set()

    def enqueue(self, batch_id: Optional[str]) -> None:
        if batch_id and batch_id not in self._active:
            self._active.add(batch_id)
            print(f"Journal Translator | Added batch {batch_id} to monitoring queue")

    def dequeue(self, batch_id: Optional[str]) -> None:
        if batch_id and batch_id in self._active:
            self._active.discard(batch_id)
            print(f"Journal Translator | Removed batch {batch_id} from monitoring queue")

    def contains(self, batch_id: Optional[str]) -> bool:
        return bool(batch_id) and batch_id in self._active

    def list_active(self) -> List[str]:
        return sorted(self._active)

    def clear(self) -> None:
        self._active.clear()
        print("Journal Translator | Cleared all batches from monitoring queue")

    def __len__(self) -> int:
        return len(self._active)


# Process-wide registry
active_batches = ActiveJobRegistry()
