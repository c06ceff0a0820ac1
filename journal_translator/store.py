"""
JSON-file document store.

- Documents with ordered items (pages)
- Per-item flag namespaces
- Durable writes (flush + fsync + atomic replace), thread/async safe
"""

import asyncio
import copy
import json
import os
import threading
import uuid
from pathlib import Path
from typing import List, Dict, Any, Optional

from .settings import MODULE_ID

def _new_id() -> str:
    return uuid.uuid4().hex[:16]


class DocumentStore:
    """
    Documents and their items, persisted as a single JSON file.

    Every mutation is written to disk before returning, so flags survive a
    process restart. Items handed out are copies tagged with their
    ``document_id``; callers must go back to the store to see changes.
    """

    def __init__(self, path: str, namespace: str = MODULE_ID):
        self.path = Path(path)
        self.namespace = namespace
        self._lock = threading.Lock()
        self._async_lock = None  # Lazy-initialized asyncio.Lock(), bound to one event loop
        self._async_lock_loop = None
        self._data: Dict[str, Any] = {"documents": {}}
        self.load()

    # --------------------------------------------------------------------------
    # Persistence
    # --------------------------------------------------------------------------

    def load(self) -> None:
        """Load the store from disk (missing or invalid file -> empty store)."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            data.setdefault("documents", {})
            self._data = data
        except FileNotFoundError:
            self._data = {"documents": {}}
        except json.JSONDecodeError as e:
            print(f"  ⚠ Warning: Could not parse store file {self.path}: {e}. Starting empty.")
            self._data = {"documents": {}}

    def _save(self) -> None:
        """Write the whole store atomically. Caller holds the lock."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)

    # --------------------------------------------------------------------------
    # Reads
    # --------------------------------------------------------------------------

    def _document(self, doc_id: str) -> Dict[str, Any]:
        try:
            return self._data["documents"][doc_id]
        except KeyError:
            raise KeyError(f"Document not found: {doc_id}") from None

    def _item(self, doc_id: str, item_id: str) -> Dict[str, Any]:
        for item in self._document(doc_id)["items"]:
            if item["id"] == item_id:
                return item
        raise KeyError(f"Item not found: {doc_id}/{item_id}")

    @staticmethod
    def _export_item(doc_id: str, item: Dict[str, Any]) -> Dict[str, Any]:
        exported = copy.deepcopy(item)
        exported["document_id"] = doc_id
        return exported

    def list_documents(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {"id": doc["id"], "name": doc["name"], "folder": doc.get("folder"), "num_items": len(doc["items"])}
                for doc in self._data["documents"].values()
            ]

    def get_document(self, doc_id: str) -> Dict[str, Any]:
        """Return document metadata (without items)."""
        with self._lock:
            doc = self._document(doc_id)
            return {"id": doc["id"], "name": doc["name"], "folder": doc.get("folder")}

    def get_items(self, doc_id: str) -> List[Dict[str, Any]]:
        """Return the document's items ordered by 'sort' (stable)."""
        with self._lock:
            items = self._document(doc_id)["items"]
            ordered = sorted(enumerate(items), key=lambda p: (p[1].get("sort", 0), p[0]))
            return [self._export_item(doc_id, item) for _, item in ordered]

    def get_item(self, doc_id: str, item_id: str) -> Dict[str, Any]:
        with self._lock:
            return self._export_item(doc_id, self._item(doc_id, item_id))

    def get_flags(self, doc_id: str, item_id: str) -> Dict[str, Any]:
        """Return a copy of this namespace's flag record for an item."""
        with self._lock:
            flags = self._item(doc_id, item_id).get("flags", {})
            return dict(flags.get(self.namespace, {}))

    # --------------------------------------------------------------------------
    # Writes
    # --------------------------------------------------------------------------

    def create_document(self, name: str, items: Optional[List[Dict[str, Any]]] = None,
                        folder: Optional[str] = None) -> str:
        """Create a document with the given item data and return its id."""
        doc_id = _new_id()
        new_items = []
        for idx, data in enumerate(items or []):
            new_items.append({
                "id": data.get("id") or _new_id(),
                "name": data.get("name", f"Page {idx + 1}"),
                "type": data.get("type", "text"),
                "content": data.get("content", ""),
                "format": data.get("format", "html"),
                "sort": data.get("sort", idx),
                "flags": copy.deepcopy(data.get("flags", {})),
            })
        with self._lock:
            self._data["documents"][doc_id] = {"id": doc_id, "name": name, "folder": folder, "items": new_items}
            self._save()
        return doc_id

    def add_item(self, doc_id: str, name: str, content: str = "", item_type: str = "text",
                 content_format: str = "html", sort: Optional[int] = None) -> str:
        item_id = _new_id()
        with self._lock:
            items = self._document(doc_id)["items"]
            items.append({
                "id": item_id,
                "name": name,
                "type": item_type,
                "content": content,
                "format": content_format,
                "sort": len(items) if sort is None else sort,
                "flags": {},
            })
            self._save()
        return item_id

    def delete_item(self, doc_id: str, item_id: str) -> None:
        with self._lock:
            doc = self._document(doc_id)
            doc["items"] = [item for item in doc["items"] if item["id"] != item_id]
            self._save()

    def update_items(self, doc_id: str, updates: List[Dict[str, Any]]) -> None:
        """
        Apply field updates to several items in one write.

        Args:
            doc_id: Document containing the items
            updates: List of dicts with an "_id" key plus the fields to set
        """
        with self._lock:
            for update in updates:
                item = self._item(doc_id, update["_id"])
                for key, value in update.items():
                    if key != "_id":
                        item[key] = value
            self._save()

    def set_flags(self, doc_id: str, item_id: str, flags: Dict[str, Any], replace: bool = False) -> None:
        """Set flag fields on an item. With replace=True the namespace record is overwritten."""
        with self._lock:
            item_flags = self._item(doc_id, item_id).setdefault("flags", {})
            if replace or self.namespace not in item_flags:
                item_flags[self.namespace] = dict(flags)
            else:
                item_flags[self.namespace].update(flags)
            self._save()

    def unset_flags(self, doc_id: str, item_id: str, keys: List[str]) -> None:
        with self._lock:
            item_flags = self._item(doc_id, item_id).setdefault("flags", {})
            record = item_flags.get(self.namespace, {})
            for key in keys:
                record.pop(key, None)
            if not record:
                item_flags.pop(self.namespace, None)
            self._save()

    async def run_async(self, func, *args, **kwargs):
        """
        Run a blocking store write in the default executor.

        Uses an asyncio lock so writes issued from concurrent tasks are serialized.
        """
        loop = asyncio.get_running_loop()
        if self._async_lock is None or self._async_lock_loop is not loop:
            self._async_lock = asyncio.Lock()
            self._async_lock_loop = loop
        async with self._async_lock:
            return await loop.run_in_executor(None, lambda: func(*args, **kwargs))
