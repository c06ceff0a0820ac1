"""
OpenAI Batch API client for journal translation.

- Batch request building (one chat completion per item, tagged request-{index})
- Batch API wrappers (upload, create, poll, download, parse)
- Result reassembly by request index
- submit_batch: the full call, with the on_batch_created hook
"""

import asyncio
import json
import time
from typing import List, Dict, Any, Optional, Callable, Awaitable, NamedTuple

import openai
from openai import AsyncOpenAI

from .errors import (
    BatchJobFailedError,
    BatchTimeoutError,
    DownloadError,
    JobCreationError,
    PollingError,
    ResultParseError,
    UploadError,
)
from .notifications import Notifier
from .settings import Settings

# ==============================================================================
# CONSTANTS
# ==============================================================================

CHAT_COMPLETIONS_ENDPOINT = "/v1/chat/completions"
# OpenAI only accepts 24h; the poller gives up much earlier (see max_polling_attempts).
COMPLETION_WINDOW = "24h"
BATCH_FILE_NAME = "batch.jsonl"
CUSTOM_ID_PREFIX = "request-"

# Batch status constants
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_EXPIRED = "expired"
STATUS_CANCELLED = "cancelled"

TERMINAL_STATUSES = [STATUS_COMPLETED, STATUS_FAILED, STATUS_EXPIRED, STATUS_CANCELLED]

LOG_PREFIX = "Journal Translator |"


class BatchOutcome(NamedTuple):
    batch_id: Optional[str]
    translations: List[str]


OnBatchCreated = Callable[[str], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]

# ==============================================================================
# HELPERS
# ==============================================================================

def create_client(settings: Settings) -> AsyncOpenAI:
    """Create the async OpenAI client. SDK-level retries are off: a failed request fails the call."""
    return AsyncOpenAI(api_key=settings.api_key, max_retries=0)


def custom_id_for(index: int) -> str:
    return f"{CUSTOM_ID_PREFIX}{index}"


def api_error_message(error: Exception) -> str:
    """Extract the server-provided message from an OpenAI error, if any."""
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        if isinstance(body.get("error"), dict):
            body = body["error"]
        message = body.get("message")
        if message:
            return str(message)
    message = getattr(error, "message", None)
    return str(message) if message else str(error)

# ==============================================================================
# BATCH REQUEST
# ==============================================================================

def prepare_batch(texts_to_translate: List[str], settings: Settings) -> List[Dict[str, Any]]:
    """
    Build one chat completion request per text.

    The custom_id is derived from the position in `texts_to_translate`; it is
    the only key the output file preserves.
    """
    return [
        {
            "custom_id": custom_id_for(index),
            "method": "POST",
            "url": CHAT_COMPLETIONS_ENDPOINT,
            "body": {
                "model": settings.model_version,
                "messages": [
                    {"role": "system", "content": settings.system_prompt},
                    {"role": "user", "content": f"{settings.custom_prompt}\n\n---\n\n{text}"},
                ],
            },
        }
        for index, text in enumerate(texts_to_translate)
    ]


def encode_batch_file(batch_requests: List[Dict[str, Any]]) -> bytes:
    """Encode requests as a JSONL file body."""
    return "\n".join(json.dumps(request, ensure_ascii=False) for request in batch_requests).encode("utf-8")

# ==============================================================================
# BATCH API WRAPPERS
# ==============================================================================

async def upload_batch_file(client: AsyncOpenAI, batch_file: bytes, notifier: Notifier) -> str:
    """Uploads the batch file and returns its file id."""
    notifier.info("Uploading translation batch file...")
    try:
        uploaded = await client.files.create(
            file=(BATCH_FILE_NAME, batch_file, "application/jsonl"),
            purpose="batch",
        )
    except openai.OpenAIError as e:
        raise UploadError(f"File Upload Failed: {api_error_message(e)}") from e
    print(f"{LOG_PREFIX} Batch file uploaded. File ID: {uploaded.id}")
    return uploaded.id


async def create_batch_job(client: AsyncOpenAI, file_id: str, notifier: Notifier) -> str:
    """Creates a batch job from an uploaded file ID."""
    notifier.info("Creating translation batch job...")
    try:
        batch = await client.batches.create(
            input_file_id=file_id,
            endpoint=CHAT_COMPLETIONS_ENDPOINT,
            completion_window=COMPLETION_WINDOW,
        )
    except openai.OpenAIError as e:
        raise JobCreationError(f"Batch Creation Failed: {api_error_message(e)}") from e
    print(f"{LOG_PREFIX} Batch job created. Batch ID: {batch.id}")
    return batch.id


def _progress_message(batch: Any) -> str:
    message = f"Batch job is still processing... ({batch.status})"
    request_counts = getattr(batch, "request_counts", None)
    if request_counts is not None:
        completed = getattr(request_counts, "completed", 0) or 0
        total = getattr(request_counts, "total", 0) or 0
        if total > 0:
            message = f"Batch job is still processing... ({completed}/{total} requests completed)"
    return message


async def poll_batch_status(
    client: AsyncOpenAI,
    batch_id: str,
    polling_delay: float,
    max_attempts: int,
    notifier: Notifier,
    sleep: SleepFn = asyncio.sleep,
) -> Any:
    """
    Polls a batch job until it reaches a terminal status.

    A failed status request is fatal (not retried): it means we could not ask,
    not that the job is still running.

    Returns:
        The batch object in its terminal status

    Raises:
        PollingError: The status request failed
        BatchTimeoutError: max_attempts polls without a terminal status
    """
    for attempt in range(1, max_attempts + 1):
        try:
            batch = await client.batches.retrieve(batch_id)
        except openai.OpenAIError as e:
            raise PollingError(f"Polling Error: {api_error_message(e)}") from e

        if batch.status in TERMINAL_STATUSES:
            return batch

        notifier.info(_progress_message(batch))
        if attempt < max_attempts:
            await sleep(polling_delay)

    raise BatchTimeoutError(max_attempts * polling_delay)


async def retrieve_batch_response(client: AsyncOpenAI, completed_batch: Any, notifier: Notifier) -> str:
    """
    Downloads the output file of a completed batch and returns its text.

    Note: When every request of the batch failed, OpenAI completes the job
          without an output file; that is an empty result, not an error.
    """
    output_file_id = getattr(completed_batch, "output_file_id", None)
    if not output_file_id:
        print(f"{LOG_PREFIX} ⚠ Batch {completed_batch.id} has no output file; no request succeeded.")
        return ""
    notifier.info("Downloading translated content...")
    try:
        file_response = await client.files.content(output_file_id)
    except openai.OpenAIError as e:
        raise DownloadError(f"Failed to download results: {api_error_message(e)}") from e
    return file_response.text


async def retrieve_batch_errors(client: AsyncOpenAI, completed_batch: Any) -> Dict[str, str]:
    """
    Downloads the error file of a batch, if it has one, and logs each failed request.

    A failed download is logged and yields no entries.

    Returns:
        Dict mapping custom_id -> error message
    """
    error_file_id = getattr(completed_batch, "error_file_id", None)
    if not error_file_id:
        return {}
    try:
        file_response = await client.files.content(error_file_id)
    except openai.OpenAIError as e:
        print(f"{LOG_PREFIX} ✗ Warning: Could not download error file {error_file_id}: {api_error_message(e)}")
        return {}

    errors = process_errors(file_response.text)
    for custom_id, message in errors.items():
        print(f"{LOG_PREFIX} ✗ Error in request {custom_id}: {message}")
    return errors


def process_results(results_content: str) -> Dict[str, str]:
    """
    Parses the JSONL output of a batch.

    Records carrying an error are logged and skipped. A line that is not
    valid JSON is fatal.

    Returns:
        Dict mapping custom_id -> translated text
    """
    translations_map: Dict[str, str] = {}

    for line_no, line in enumerate(results_content.strip().splitlines(), 1):
        if not line.strip():
            continue
        try:
            result = json.loads(line)
        except json.JSONDecodeError as e:
            raise ResultParseError(f"Could not parse result line {line_no}: {e}") from e

        custom_id = result.get("custom_id", "")
        response = result.get("response") or {}
        body = response.get("body") or {}

        error = body.get("error") or result.get("error")
        if error:
            message = error.get("message", "Unknown error") if isinstance(error, dict) else str(error)
            print(f"{LOG_PREFIX} ✗ Error in request {custom_id}: {message}")
            continue

        try:
            translations_map[custom_id] = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            print(f"{LOG_PREFIX} ✗ Malformed response body for {custom_id}: {e}")

    return translations_map


def process_errors(errors_content: str) -> Dict[str, str]:
    """
    Parses the JSONL error file of a batch (failed requests).

    Malformed lines are skipped: the file is diagnostic only.

    Returns:
        Dict mapping custom_id -> error message
    """
    errors: Dict[str, str] = {}

    for line in errors_content.strip().splitlines():
        try:
            error_line = json.loads(line)
        except json.JSONDecodeError:
            continue
        custom_id = error_line.get("custom_id", "")
        if not custom_id:
            continue

        response = error_line.get("response") or {}
        error_body = response.get("body") or {}
        error_info = error_body.get("error") if isinstance(error_body, dict) else None
        error_info = error_info or error_line.get("error")
        if isinstance(error_info, dict):
            errors[custom_id] = error_info.get("message", "Unknown error")
        else:
            errors[custom_id] = str(error_info or error_body or "Unknown error")

    return errors


def assemble_final_results(translations_map: Dict[str, str], original_length: int) -> List[str]:
    """Order translations by request index; missing entries become ""."""
    final_translations = []
    for index in range(original_length):
        custom_id = custom_id_for(index)
        if custom_id in translations_map:
            final_translations.append(translations_map[custom_id])
        else:
            final_translations.append("")
            print(f"{LOG_PREFIX} ⚠ No result found for {custom_id}.")
    return final_translations

# ==============================================================================
# BATCH PIPELINE
# ==============================================================================

async def fetch_batch_results(
    client: AsyncOpenAI,
    batch_id: str,
    settings: Settings,
    notifier: Notifier,
    sleep: SleepFn = asyncio.sleep,
) -> Dict[str, str]:
    """
    Waits for an existing batch and returns its parsed results.

    Used both right after submission and when resuming a batch found in
    item flags.

    Returns:
        Dict mapping custom_id -> translated text
    """
    notifier.info("Processing translations... This may take a few minutes up to an hour.")
    completed_batch = await poll_batch_status(
        client,
        batch_id,
        settings.polling_delay,
        settings.max_polling_attempts,
        notifier,
        sleep=sleep,
    )
    if completed_batch.status != STATUS_COMPLETED:
        raise BatchJobFailedError(completed_batch.status)
    notifier.info("Batch job completed successfully!")

    results_content = await retrieve_batch_response(client, completed_batch, notifier)
    translations_map = process_results(results_content)
    await retrieve_batch_errors(client, completed_batch)
    return translations_map


async def submit_batch(
    texts_to_translate: List[str],
    settings: Settings,
    client: Optional[AsyncOpenAI] = None,
    notifier: Optional[Notifier] = None,
    on_batch_created: Optional[OnBatchCreated] = None,
    sleep: SleepFn = asyncio.sleep,
) -> BatchOutcome:
    """
    Translates `texts_to_translate` with a single OpenAI batch job.

    Steps:
    1. Build and upload the batch file
    2. Create the batch job
    3. Await on_batch_created(batch_id) (failures are logged, not fatal)
    4. Poll until terminal status
    5. Download and parse results
    6. Reassemble by request index

    Any fatal error is reported once through `notifier` and yields
    BatchOutcome(None, []).
    """
    notifier = notifier or Notifier()

    if not settings.has_api_key():
        notifier.error("OpenAI API Key is missing. Please enter your API key in the module settings.")
        return BatchOutcome(None, [])

    client = client or create_client(settings)

    try:
        batch_file = encode_batch_file(prepare_batch(texts_to_translate, settings))
        file_id = await upload_batch_file(client, batch_file, notifier)
        batch_id = await create_batch_job(client, file_id, notifier)

        if on_batch_created is not None:
            try:
                await on_batch_created(batch_id)
            except Exception as callback_error:
                print(f"{LOG_PREFIX} ⚠ on_batch_created callback failed: {callback_error}")

        start_time = time.time()
        translations_map = await fetch_batch_results(client, batch_id, settings, notifier, sleep=sleep)
        final_translations = assemble_final_results(translations_map, len(texts_to_translate))

        print(f"{LOG_PREFIX} Batch {batch_id} finished in {(time.time() - start_time) / 60:.1f} minutes")
        notifier.info("All translations completed successfully!")
        return BatchOutcome(batch_id, final_translations)

    except BatchJobFailedError as e:
        print(f"{LOG_PREFIX} ✗ {e}")
        notifier.error(str(e))
        return BatchOutcome(None, [])
    except Exception as e:
        print(f"{LOG_PREFIX} ✗ A critical error occurred during batch translation: {e}")
        notifier.error(f"Batch translation failed: {e}")
        return BatchOutcome(None, [])
