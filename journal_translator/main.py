#!/usr/bin/env python3
"""
Main entry point for the Journal Batch Translator.

Translates the pages of a document in the store with one OpenAI batch job,
or resumes a batch left unfinished by an earlier run.
"""

import argparse
import asyncio
import sys
from typing import List, Dict, Any

from .handlers import translate_document
from .notifications import Notifier
from .recovery import RECOVERY_CHOICES
from .settings import TRANSLATION_MODES, load_settings
from .store import DocumentStore
from .translation_flags import find_incomplete_translations, read_flags

# --- Recovery prompt ---

def prompt_recovery_choice(incomplete: Dict[str, List[Dict[str, Any]]]) -> str:
    """Ask on the terminal what to do with unfinished batches."""
    print("\nUnfinished batch translations were found for this journal:")
    for batch_id, items in incomplete.items():
        print(f"  - Batch {batch_id}: {len(items)} page(s)")
    print("  [r]esume: wait for these batches and apply their results")
    print("  [a]bandon: forget them and start a new translation")
    print("  [c]ancel: do nothing")

    answers = {"r": "resume", "a": "abandon", "c": "cancel"}
    while True:
        try:
            answer = input("Choice [r/a/c]: ").strip().lower()
        except EOFError:
            return "cancel"
        if answer in answers:
            return answers[answer]
        if answer in RECOVERY_CHOICES:
            return answer

# --- Reports ---

def print_documents(store: DocumentStore) -> None:
    documents = store.list_documents()
    if not documents:
        print("No journals found in store.")
        return
    for doc in documents:
        print(f"{doc['id']}  {doc['name']}  ({doc['num_items']} pages)")
        for item in store.get_items(doc["id"]):
            flags = read_flags(store, item)
            state = "completed" if flags.completed else "queued" if flags.queued else ""
            print(f"    {item['id']}  {item['name']}  {state}")


def print_status(store: DocumentStore, doc_id: str) -> None:
    incomplete = find_incomplete_translations(store, doc_id)
    if not incomplete:
        print("✓ No unfinished batch translations.")
        return
    print(f"Unfinished batch translations: {len(incomplete)}")
    for batch_id, items in incomplete.items():
        print(f"  Batch {batch_id}:")
        for item in items:
            print(f"    [{read_flags(store, item).batch_index}] {item['name']} ({item['id']})")

# --- Run ---

async def run_translation(args: argparse.Namespace) -> int:
    settings = load_settings(args.settings)
    if args.mode:
        settings.translation_mode = args.mode
    if args.model:
        settings.model_version = args.model
    if args.polling_delay is not None:
        settings.polling_delay = args.polling_delay
    if args.max_polling_attempts is not None:
        settings.max_polling_attempts = args.max_polling_attempts

    try:
        settings.validate()
    except ValueError as e:
        print(f"\n✗ Error: {e}")
        return 1

    if not settings.has_api_key():
        print("\n✗ Error: OPENAI_API_KEY environment variable not set")
        print("  Please set it with: export OPENAI_API_KEY='your-api-key'")
        return 1

    store = DocumentStore(args.store)
    try:
        document = store.get_document(args.document)
    except KeyError as e:
        print(f"\n✗ Error: {e.args[0]}")
        return 1

    print("=" * 80)
    print("OpenAI Batch Journal Translator")
    print(f"Journal: {document['name']} ({document['id']})")
    print(f"Model: {settings.model_version}")
    print(f"Mode: {TRANSLATION_MODES[settings.translation_mode]}")
    print(f"Polling: every {settings.polling_delay}s, up to {settings.max_polling_attempts} attempts")
    print("=" * 80)

    if args.on_incomplete == "ask":
        choose = prompt_recovery_choice
    else:
        choose = lambda incomplete: args.on_incomplete

    notifier = Notifier()
    outcome = await translate_document(
        store, args.document, settings,
        selected_item_ids=args.items,
        choose=choose,
        notifier=notifier,
    )

    if outcome.batch_id:
        print(f"\n✓ Translation finished. Batch ID: {outcome.batch_id}")
    return 1 if notifier.errors() else 0


def main():
    parser = argparse.ArgumentParser(
        description="Journal Batch Translator. Translates journal pages with the OpenAI Batch API."
    )

    # --- Store Arguments ---
    parser.add_argument(
        '--store',
        type=str,
        required=True,
        help="Path to the JSON journal store."
    )
    parser.add_argument(
        '--document',
        type=str,
        default=None,
        help="ID of the journal to translate."
    )
    parser.add_argument(
        '--items',
        type=str,
        nargs="+",
        default=None,
        metavar="PAGE_ID",
        help="Pages to translate (default: all pages with content)."
    )

    # --- Settings Arguments ---
    parser.add_argument(
        '--settings',
        type=str,
        default="settings.json",
        help="Path to the settings JSON file (default: settings.json)."
    )
    parser.add_argument(
        '--mode',
        type=str,
        default=None,
        choices=list(TRANSLATION_MODES),
        help="Where to put the translation (overrides settings)."
    )
    parser.add_argument(
        '--model',
        type=str,
        default=None,
        help="OpenAI model (overrides settings)."
    )
    parser.add_argument(
        '--polling-delay',
        type=int,
        default=None,
        help="Seconds between batch status checks (overrides settings)."
    )
    parser.add_argument(
        '--max-polling-attempts',
        type=int,
        default=None,
        help="Status checks before giving up (overrides settings)."
    )

    # --- Execution Mode Arguments ---
    parser.add_argument(
        '--on-incomplete',
        type=str,
        default="ask",
        choices=["ask"] + RECOVERY_CHOICES,
        help="What to do with unfinished batches found on the journal (default: ask)."
    )
    parser.add_argument(
        '--status',
        action="store_true",
        help="Show unfinished batches for the journal and exit."
    )
    parser.add_argument(
        '--list',
        action="store_true",
        help="List journals and pages in the store and exit."
    )

    if len(sys.argv) == 1:
        parser.print_help(sys.stderr)
        sys.exit(1)

    args = parser.parse_args()

    if args.list:
        print_documents(DocumentStore(args.store))
        sys.exit(0)

    if not args.document:
        parser.error("--document is required unless --list is given")

    if args.status:
        store = DocumentStore(args.store)
        try:
            print_status(store, args.document)
        except KeyError as e:
            print(f"\n✗ Error: {e.args[0]}")
            sys.exit(1)
        sys.exit(0)

    sys.exit(asyncio.run(run_translation(args)))


if __name__ == "__main__":
    main()
