"""
Translation of a document's items in one batch.

Runs the unfinished-batch check, then submits the items: flags them as soon as
the batch id is known, applies the results and marks them completed.
"""

import asyncio
from typing import List, Dict, Any, Optional

from openai import AsyncOpenAI
from tqdm import tqdm

from .batch_queue import ActiveJobRegistry, active_batches
from .notifications import Notifier
from .openai_batch import BatchOutcome, SleepFn, submit_batch
from .placement import apply_translations_with_mode, complete_translation
from .recovery import ACTION_ABANDON, ACTION_CANCEL, ACTION_NONE, ChooseFn, check_incomplete_translations
from .settings import Settings
from .store import DocumentStore
from .translation_flags import find_queued_items, mark_queued


def select_items(
    store: DocumentStore,
    doc_id: str,
    selected_item_ids: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """Selected items in document order, or every item with content."""
    items = store.get_items(doc_id)
    if selected_item_ids is None:
        return [item for item in items if item.get("content")]
    wanted = set(selected_item_ids)
    return [item for item in items if item["id"] in wanted]


async def submit_items(
    store: DocumentStore,
    document: Dict[str, Any],
    items: List[Dict[str, Any]],
    settings: Settings,
    client: Optional[AsyncOpenAI] = None,
    notifier: Optional[Notifier] = None,
    registry: ActiveJobRegistry = active_batches,
    sleep: SleepFn = asyncio.sleep,
) -> BatchOutcome:
    """
    Send `items` as one batch, flag them, then apply the results.

    Items still queued under another batch are never resubmitted: the call
    warns and returns without touching the API.
    """
    notifier = notifier or Notifier()

    queued = find_queued_items(store, items)
    if queued:
        names = ", ".join(f'"{item["name"]}"' for item in queued[:5])
        notifier.warn(f"{len(queued)} page(s) are already queued in another batch: {names}. Resolve that batch first.")
        return BatchOutcome(None, [])

    contents = [item.get("content") or "" for item in items]
    notifier.info(f"Translating {len(contents)} pages in batch...")

    created_batch_ids: List[str] = []

    async def on_batch_created(batch_id: str) -> None:
        created_batch_ids.append(batch_id)
        registry.enqueue(batch_id)
        for index, item in enumerate(tqdm(items, desc="Flagging pages", disable=len(items) < 2)):
            await mark_queued(store, item, batch_id, index)
        print(f"Journal Translator | Set translation flags for {len(items)} pages with batch ID: {batch_id}")

    outcome = await submit_batch(
        contents, settings,
        client=client, notifier=notifier, on_batch_created=on_batch_created, sleep=sleep,
    )

    try:
        if not outcome.translations:
            notifier.warn(f'No translations received for "{document["name"]}".')
            return outcome

        apply_translations_with_mode(store, document, items, outcome.translations,
                                     settings.translation_mode, notifier)
        await complete_translation(store, items)
        return outcome
    finally:
        # Flags stay on the items if the batch failed; the batch can be resumed later.
        for batch_id in created_batch_ids:
            registry.dequeue(batch_id)


async def translate_document(
    store: DocumentStore,
    doc_id: str,
    settings: Settings,
    selected_item_ids: Optional[List[str]] = None,
    choose: Optional[ChooseFn] = None,
    client: Optional[AsyncOpenAI] = None,
    notifier: Optional[Notifier] = None,
    registry: ActiveJobRegistry = active_batches,
    sleep: SleepFn = asyncio.sleep,
) -> BatchOutcome:
    """
    Translate items of a document with one batch job.

    Args:
        store: Document store holding the document
        doc_id: Document to translate
        settings: Prompt, model, polling and output mode
        selected_item_ids: Items to translate (default: all items with content)
        choose: Decides what to do with unfinished batches found on the
            document; without it they are left alone and the call stops

    Returns:
        BatchOutcome of the new batch (BatchOutcome(None, []) if nothing was submitted)
    """
    notifier = notifier or Notifier()
    document = store.get_document(doc_id)

    # 1. Unfinished batches first
    action = await check_incomplete_translations(
        store, doc_id, settings,
        choose=choose or (lambda incomplete: ACTION_CANCEL),
        client=client, notifier=notifier, registry=registry, sleep=sleep,
    )
    if action not in (ACTION_NONE, ACTION_ABANDON):
        return BatchOutcome(None, [])

    # 2. Items to translate
    items = select_items(store, doc_id, selected_item_ids)
    if not items:
        notifier.warn(f'No pages selected for translation in "{document["name"]}".')
        return BatchOutcome(None, [])

    # 3. Submit, wait, apply
    return await submit_items(
        store, document, items, settings,
        client=client, notifier=notifier, registry=registry, sleep=sleep,
    )
