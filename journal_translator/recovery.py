"""
Recovery of unfinished batch translations.

Before a new translation starts, items still flagged as queued are grouped
by batch id. The caller decides to resume those batches (poll again and
apply the results by each item's stored batch index), abandon them (clear
the flags) or cancel.
"""

import asyncio
from typing import List, Dict, Any, Callable, Optional

from openai import AsyncOpenAI

from .batch_queue import ActiveJobRegistry, active_batches
from .notifications import Notifier
from .openai_batch import SleepFn, create_client, custom_id_for, fetch_batch_results
from .placement import apply_translations_with_mode, complete_translation
from .settings import Settings
from .store import DocumentStore
from .translation_flags import clear_flags, find_incomplete_translations, read_flags

ACTION_NONE = "none"
ACTION_RESUME = "resume"
ACTION_ABANDON = "abandon"
ACTION_CANCEL = "cancel"

RECOVERY_CHOICES = [ACTION_RESUME, ACTION_ABANDON, ACTION_CANCEL]

# incomplete translations -> one of RECOVERY_CHOICES
ChooseFn = Callable[[Dict[str, List[Dict[str, Any]]]], str]


def assemble_results_by_batch_index(
    store: DocumentStore,
    items: List[Dict[str, Any]],
    translations_map: Dict[str, str],
) -> List[str]:
    """
    Pick each item's translation using its stored batch index.

    Items may have been deleted or reordered since submission, so the
    position in `items` is not used.
    """
    translations = []
    for item in items:
        batch_index = read_flags(store, item).batch_index
        if batch_index is None:
            translations.append("")
            continue
        translations.append(translations_map.get(custom_id_for(batch_index), ""))
    return translations


async def resume_batch(
    store: DocumentStore,
    document: Dict[str, Any],
    batch_id: str,
    items: List[Dict[str, Any]],
    settings: Settings,
    client: Optional[AsyncOpenAI] = None,
    notifier: Optional[Notifier] = None,
    registry: ActiveJobRegistry = active_batches,
    sleep: SleepFn = asyncio.sleep,
) -> bool:
    """
    Resume one batch found in item flags and apply its results.

    Returns:
        True if the results were applied, False if the batch was refused
        (already monitored) or failed. Flags are left untouched on failure.
    """
    notifier = notifier or Notifier()

    if registry.contains(batch_id):
        notifier.info(f"Batch {batch_id} is already being monitored.")
        return False

    registry.enqueue(batch_id)
    try:
        notifier.info(f"Resuming batch {batch_id} for {len(items)} page(s)...")
        client = client or create_client(settings)
        translations_map = await fetch_batch_results(client, batch_id, settings, notifier, sleep=sleep)
        translations = assemble_results_by_batch_index(store, items, translations_map)

        apply_translations_with_mode(store, document, items, translations, settings.translation_mode, notifier)
        await complete_translation(store, items)
        return True
    except Exception as e:
        print(f"Journal Translator | ✗ Resume of batch {batch_id} failed: {e}")
        notifier.error(f"Failed to resume batch {batch_id}: {e}")
        return False
    finally:
        registry.dequeue(batch_id)


async def abandon_batches(store: DocumentStore, incomplete: Dict[str, List[Dict[str, Any]]]) -> None:
    """Clear flags on every item of every discovered batch."""
    for batch_id, items in incomplete.items():
        for item in items:
            await clear_flags(store, item)
        print(f"Journal Translator | Cleared flags for {len(items)} page(s) of batch {batch_id}")


async def check_incomplete_translations(
    store: DocumentStore,
    doc_id: str,
    settings: Settings,
    choose: ChooseFn,
    client: Optional[AsyncOpenAI] = None,
    notifier: Optional[Notifier] = None,
    registry: ActiveJobRegistry = active_batches,
    sleep: SleepFn = asyncio.sleep,
) -> str:
    """
    Look for unfinished batches on a document and act on the caller's choice.

    Returns:
        The action taken: "none" (nothing unfinished), "resume", "abandon"
        or "cancel"
    """
    notifier = notifier or Notifier()
    incomplete = find_incomplete_translations(store, doc_id)
    if not incomplete:
        return ACTION_NONE

    num_items = sum(len(items) for items in incomplete.values())
    notifier.warn(f"Found {num_items} page(s) waiting on {len(incomplete)} unfinished batch(es).")

    choice = choose(incomplete)
    if choice not in RECOVERY_CHOICES:
        raise ValueError(f"Unknown recovery choice: {choice}")

    if choice == ACTION_RESUME:
        document = store.get_document(doc_id)
        await asyncio.gather(*[
            resume_batch(store, document, batch_id, items, settings,
                         client=client, notifier=notifier, registry=registry, sleep=sleep)
            for batch_id, items in incomplete.items()
        ])
    elif choice == ACTION_ABANDON:
        await abandon_batches(store, incomplete)
        notifier.info("Previous translations abandoned. Starting a new translation.")
    else:
        notifier.info("Translation cancelled.")

    return choice
