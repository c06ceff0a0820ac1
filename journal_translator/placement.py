"""
Applying translated text to documents.

Modes: append, prepend, replace (update the original items) and new
(create a "<name> (Translated)" document).
"""

from typing import List, Dict, Any, Callable

from tqdm import tqdm

from .notifications import Notifier
from .store import DocumentStore
from .translation_flags import mark_completed

SEPARATOR = '<hr style="margin: 1em 0;">'
TRANSLATED_SUFFIX = " (Translated)"


def _is_empty(translated: str) -> bool:
    return not translated or translated.strip() == ""


def create_item_updates(
    items: List[Dict[str, Any]],
    translated_contents: List[str],
    content_transformer: Callable[[str, str], str],
    notifier: Notifier,
) -> List[Dict[str, Any]]:
    """
    Build store updates for items that received a non-empty translation.

    Args:
        items: Items that were translated, in submission order
        translated_contents: Translations aligned with `items`
        content_transformer: (original, translated) -> new content

    Returns:
        List of {"_id": ..., "content": ...} updates
    """
    item_updates = []
    for item, translated in zip(items, translated_contents):
        if _is_empty(translated):
            notifier.warn(f'Translation returned empty for page "{item["name"]}". Skipping this page.')
            continue
        original = item.get("content") or ""
        item_updates.append({"_id": item["id"], "content": content_transformer(original, translated)})
    return item_updates


def create_translated_items_data(
    items: List[Dict[str, Any]],
    translated_contents: List[str],
    notifier: Notifier,
) -> List[Dict[str, Any]]:
    """Build item data for a new translated document (empty translations skipped)."""
    items_data = []
    for item, translated in zip(items, translated_contents):
        if _is_empty(translated):
            notifier.warn(f'Translation returned empty for page "{item["name"]}". Skipping this page.')
            continue
        items_data.append({
            "name": f"{item['name']}{TRANSLATED_SUFFIX}",
            "type": item.get("type", "text"),
            "content": translated,
            "format": item.get("format", "html"),
            "sort": item.get("sort", 0),
        })
    return items_data


def _update_in_place(store, document, items, translated_contents, transformer, notifier, verb) -> None:
    item_updates = create_item_updates(items, translated_contents, transformer, notifier)
    if item_updates:
        store.update_items(document["id"], item_updates)
        notifier.info(f'Successfully {verb} "{document["name"]}".')
    else:
        notifier.warn(f'No pages were updated for "{document["name"]}".')


def handle_append_mode(store, document, items, translated_contents, notifier) -> None:
    _update_in_place(store, document, items, translated_contents,
                     lambda original, translated: original + SEPARATOR + translated,
                     notifier, "appended translations to")


def handle_prepend_mode(store, document, items, translated_contents, notifier) -> None:
    _update_in_place(store, document, items, translated_contents,
                     lambda original, translated: translated + SEPARATOR + original,
                     notifier, "prepended translations to")


def handle_replace_mode(store, document, items, translated_contents, notifier) -> None:
    _update_in_place(store, document, items, translated_contents,
                     lambda original, translated: translated,
                     notifier, "replaced original with translations in")


def handle_new_document_mode(store, document, items, translated_contents, notifier) -> None:
    items_data = create_translated_items_data(items, translated_contents, notifier)
    if items_data:
        translated_name = f"{document['name']}{TRANSLATED_SUFFIX}"
        store.create_document(translated_name, items_data, folder=document.get("folder"))
        notifier.info(
            f'Successfully created a new journal "{translated_name}" with translations from "{document["name"]}".'
        )
    else:
        notifier.warn(f'No pages were translated for "{document["name"]}".')


MODE_HANDLERS = {
    "append": handle_append_mode,
    "prepend": handle_prepend_mode,
    "replace": handle_replace_mode,
    "new": handle_new_document_mode,
}


def apply_translations_with_mode(
    store: DocumentStore,
    document: Dict[str, Any],
    items: List[Dict[str, Any]],
    translated_contents: List[str],
    mode: str,
    notifier: Notifier,
) -> None:
    """Apply translations using the handler for `mode` (unknown modes create a new document)."""
    handler = MODE_HANDLERS.get(mode, handle_new_document_mode)
    handler(store, document, items, translated_contents, notifier)


async def complete_translation(store: DocumentStore, items: List[Dict[str, Any]]) -> None:
    """Mark every item as completed."""
    for item in tqdm(items, desc="Marking pages completed", disable=len(items) < 2):
        await mark_completed(store, item)
