import asyncio
import json

import pytest

from journal_translator.errors import ResultParseError
from journal_translator.openai_batch import (
    BatchOutcome,
    assemble_final_results,
    prepare_batch,
    process_errors,
    process_results,
    submit_batch,
)
from conftest import api_status_error, batch_status, error_line, result_line, results_file


def run_submit(texts, settings, client, notifier, sleep, **kwargs):
    return asyncio.run(submit_batch(texts, settings, client=client, notifier=notifier, sleep=sleep, **kwargs))


def test_prepare_batch_tags_requests_by_position(settings):
    requests = prepare_batch(["Hello", "", "World"], settings)
    assert [r["custom_id"] for r in requests] == ["request-0", "request-1", "request-2"]
    body = requests[2]["body"]
    assert requests[2]["url"] == "/v1/chat/completions"
    assert body["model"] == "gpt-4o"
    assert body["messages"][0] == {"role": "system", "content": "You are a helpful translator"}
    assert body["messages"][1]["content"] == "Translate to English\n\n---\n\nWorld"


def test_missing_api_key_returns_empty_without_calls(settings, fake_client, notifier, sleep):
    settings.api_key = "   \t\n  "
    result = run_submit(["Test text"], settings, fake_client, notifier, sleep)
    assert result == BatchOutcome(None, [])
    assert notifier.errors() == ["OpenAI API Key is missing. Please enter your API key in the module settings."]
    fake_client.files.create.assert_not_awaited()


def test_successful_batch_translation(settings, fake_client, notifier, sleep):
    fake_client.files.content.return_value = results_file(
        result_line("request-0", "Translated text 1"),
        result_line("request-1", "Translated text 2"),
    )
    result = run_submit(["Text 1", "Text 2"], settings, fake_client, notifier, sleep)

    assert result == BatchOutcome("batch-123", ["Translated text 1", "Translated text 2"])
    assert ("info", "All translations completed successfully!") in notifier.messages
    assert notifier.errors() == []

    upload_kwargs = fake_client.files.create.await_args.kwargs
    assert upload_kwargs["purpose"] == "batch"
    name, payload, _ = upload_kwargs["file"]
    assert name == "batch.jsonl"
    lines = payload.decode("utf-8").split("\n")
    assert [json.loads(line)["custom_id"] for line in lines] == ["request-0", "request-1"]

    create_kwargs = fake_client.batches.create.await_args.kwargs
    assert create_kwargs["input_file_id"] == "file-123"
    assert create_kwargs["endpoint"] == "/v1/chat/completions"
    fake_client.files.content.assert_awaited_once_with("output-file-123")


def test_results_are_ordered_by_tag_not_arrival(settings, fake_client, notifier, sleep):
    fake_client.files.content.return_value = results_file(
        result_line("request-1", "Monde"),
        result_line("request-0", "Bonjour"),
    )
    result = run_submit(["Hello", "World"], settings, fake_client, notifier, sleep)
    assert result.translations == ["Bonjour", "Monde"]


def test_missing_and_failed_results_become_empty_strings(settings, fake_client, notifier, sleep):
    fake_client.files.content.return_value = results_file(
        result_line("request-2", "Three"),
        error_line("request-0", "content filtered"),
    )
    result = run_submit(["One", "Two", "Three"], settings, fake_client, notifier, sleep)
    assert result.batch_id == "batch-123"
    assert result.translations == ["", "", "Three"]
    assert notifier.errors() == []


def test_upload_error_is_reported_once(settings, fake_client, notifier, sleep):
    fake_client.files.create.side_effect = api_status_error("rate limited", status_code=429)

    result = run_submit(["Test text"], settings, fake_client, notifier, sleep)

    assert result == BatchOutcome(None, [])
    assert len(notifier.errors()) == 1
    assert "rate limited" in notifier.errors()[0]
    assert notifier.errors()[0] == "Batch translation failed: File Upload Failed: rate limited"
    fake_client.batches.create.assert_not_awaited()


def test_batch_creation_error(settings, fake_client, notifier, sleep):
    fake_client.batches.create.side_effect = api_status_error("Batch creation failed", url="https://api.openai.com/v1/batches")
    callback_calls = []

    async def on_created(batch_id):
        callback_calls.append(batch_id)

    result = run_submit(["Test text"], settings, fake_client, notifier, sleep, on_batch_created=on_created)

    assert result == BatchOutcome(None, [])
    assert notifier.errors() == ["Batch translation failed: Batch Creation Failed: Batch creation failed"]
    assert callback_calls == []


@pytest.mark.parametrize("status", ["failed", "cancelled"])
def test_unsuccessful_terminal_status(settings, fake_client, notifier, sleep, status):
    fake_client.batches.retrieve.return_value = batch_status(status)

    result = run_submit(["Test text"], settings, fake_client, notifier, sleep)

    assert result == BatchOutcome(None, [])
    assert notifier.errors() == [f"Batch job failed with status: {status}"]
    fake_client.files.content.assert_not_awaited()


def test_results_download_error(settings, fake_client, notifier, sleep):
    fake_client.files.content.side_effect = api_status_error("Download failed")

    result = run_submit(["Test text"], settings, fake_client, notifier, sleep)

    assert result == BatchOutcome(None, [])
    assert notifier.errors() == ["Batch translation failed: Failed to download results: Download failed"]


def test_polls_until_completed_with_fixed_delay(settings, fake_client, notifier, sleep):
    fake_client.batches.retrieve.side_effect = [
        batch_status("validating"),
        batch_status("in_progress", completed=1, total=2),
        batch_status("finalizing"),
        batch_status("completed"),
    ]
    fake_client.files.content.return_value = results_file(result_line("request-0", "Done"))

    result = run_submit(["Text"], settings, fake_client, notifier, sleep)

    assert result.translations == ["Done"]
    assert sleep.delays == [30, 30, 30]
    assert fake_client.batches.retrieve.await_count == 4
    assert ("info", "Batch job is still processing... (1/2 requests completed)") in notifier.messages


def test_polling_request_failure_is_not_retried(settings, fake_client, notifier, sleep):
    fake_client.batches.retrieve.side_effect = api_status_error("server unavailable", status_code=503)

    result = run_submit(["Text"], settings, fake_client, notifier, sleep)

    assert result == BatchOutcome(None, [])
    assert fake_client.batches.retrieve.await_count == 1
    assert sleep.delays == []
    assert notifier.errors() == ["Batch translation failed: Polling Error: server unavailable"]


def test_polling_timeout_reports_elapsed_time(settings, fake_client, notifier, sleep):
    settings.max_polling_attempts = 10
    fake_client.batches.retrieve.return_value = batch_status("in_progress")

    result = run_submit(["Text"], settings, fake_client, notifier, sleep)

    assert result == BatchOutcome(None, [])
    assert fake_client.batches.retrieve.await_count == 10
    assert len(sleep.delays) == 9
    assert notifier.errors() == ["Batch translation failed: Batch job timed out after 5 minutes."]


def test_callback_runs_before_polling(settings, fake_client, notifier, sleep):
    events = []

    async def on_created(batch_id):
        events.append(("created", batch_id))

    async def retrieve(batch_id):
        events.append(("poll", batch_id))
        return batch_status("completed")

    fake_client.batches.retrieve.side_effect = retrieve
    fake_client.files.content.return_value = results_file(result_line("request-0", "Ok"))

    run_submit(["Text"], settings, fake_client, notifier, sleep, on_batch_created=on_created)

    assert events == [("created", "batch-123"), ("poll", "batch-123")]


def test_callback_failure_does_not_affect_outcome(settings, fake_client, notifier, sleep):
    async def on_created(batch_id):
        raise RuntimeError("store unavailable")

    fake_client.files.content.return_value = results_file(result_line("request-0", "Ok"))

    result = run_submit(["Text"], settings, fake_client, notifier, sleep, on_batch_created=on_created)

    assert result == BatchOutcome("batch-123", ["Ok"])
    assert notifier.errors() == []


def test_process_results_skips_error_records():
    content = "\n".join([
        result_line("request-0", "Bonjour"),
        error_line("request-1", "rate limited"),
        json.dumps({"custom_id": "request-2", "response": None, "error": {"message": "expired"}}),
        "",
    ])
    assert process_results(content) == {"request-0": "Bonjour"}


def test_process_results_rejects_invalid_json():
    with pytest.raises(ResultParseError):
        process_results(result_line("request-0", "Bonjour") + "\n{not json")


def test_assemble_final_results_pads_gaps():
    assert assemble_final_results({"request-1": "b"}, 3) == ["", "b", ""]


def test_completed_batch_without_output_file_pads_every_result(settings, fake_client, notifier, sleep):
    fake_client.batches.retrieve.return_value = batch_status("completed", output_file_id=None, error_file_id="error-file-123")
    fake_client.files.content.return_value = results_file(
        error_line("request-0", "content filtered"),
        error_line("request-1", "content filtered"),
    )

    result = run_submit(["Hello", "World"], settings, fake_client, notifier, sleep)

    assert result == BatchOutcome("batch-123", ["", ""])
    assert notifier.errors() == []
    fake_client.files.content.assert_awaited_once_with("error-file-123")


def test_error_file_is_read_alongside_output(settings, fake_client, notifier, sleep):
    fake_client.batches.retrieve.return_value = batch_status("completed", error_file_id="error-file-123")
    contents = {
        "output-file-123": results_file(result_line("request-1", "Monde")),
        "error-file-123": results_file(error_line("request-0", "rate limited")),
    }

    async def content(file_id):
        return contents[file_id]

    fake_client.files.content.side_effect = content

    result = run_submit(["Hello", "World"], settings, fake_client, notifier, sleep)

    assert result == BatchOutcome("batch-123", ["", "Monde"])
    assert [call.args[0] for call in fake_client.files.content.await_args_list] == ["output-file-123", "error-file-123"]


def test_error_file_download_failure_is_not_fatal(settings, fake_client, notifier, sleep):
    fake_client.batches.retrieve.return_value = batch_status("completed", error_file_id="error-file-123")

    async def content(file_id):
        if file_id == "error-file-123":
            raise api_status_error("not found", status_code=404)
        return results_file(result_line("request-0", "Bonjour"))

    fake_client.files.content.side_effect = content

    result = run_submit(["Hello"], settings, fake_client, notifier, sleep)

    assert result == BatchOutcome("batch-123", ["Bonjour"])
    assert notifier.errors() == []


def test_process_errors_reads_messages():
    content = "\n".join([
        error_line("request-0", "rate limited"),
        json.dumps({"custom_id": "request-1", "response": None, "error": {"message": "expired"}}),
        "{not json",
        json.dumps({"response": {"body": {"error": {"message": "no id"}}}}),
    ])
    assert process_errors(content) == {"request-0": "rate limited", "request-1": "expired"}
