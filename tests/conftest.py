import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import openai
import pytest

from journal_translator.batch_queue import ActiveJobRegistry
from journal_translator.notifications import Notifier
from journal_translator.settings import Settings
from journal_translator.store import DocumentStore


def batch_status(status, batch_id="batch-123", output_file_id="output-file-123", error_file_id=None,
                 completed=0, total=0):
    return SimpleNamespace(
        id=batch_id,
        status=status,
        output_file_id=output_file_id if status == "completed" else None,
        error_file_id=error_file_id,
        request_counts=SimpleNamespace(completed=completed, failed=0, total=total),
    )


def result_line(custom_id, content):
    return json.dumps({
        "custom_id": custom_id,
        "response": {"status_code": 200, "body": {"choices": [{"message": {"content": content}}]}},
    })


def error_line(custom_id, message):
    return json.dumps({
        "custom_id": custom_id,
        "response": {"status_code": 400, "body": {"error": {"message": message}}},
    })


def results_file(*lines):
    return SimpleNamespace(text="\n".join(lines))


def api_status_error(message, status_code=400, url="https://api.openai.com/v1/files"):
    request = httpx.Request("POST", url)
    response = httpx.Response(status_code, request=request)
    return openai.APIStatusError(message, response=response, body={"error": {"message": message}})


class FakeOpenAI:
    """Stands in for AsyncOpenAI: only the files/batches calls the translator makes."""

    def __init__(self, batch_id="batch-123"):
        self.files = SimpleNamespace(
            create=AsyncMock(return_value=SimpleNamespace(id="file-123")),
            content=AsyncMock(return_value=results_file()),
        )
        self.batches = SimpleNamespace(
            create=AsyncMock(return_value=SimpleNamespace(id=batch_id, status="validating")),
            retrieve=AsyncMock(return_value=batch_status("completed", batch_id=batch_id)),
        )


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def settings():
    return Settings(
        api_key="test-api-key",
        custom_prompt="Translate to English",
        model_version="gpt-4o",
        system_prompt="You are a helpful translator",
        polling_delay=30,
        max_polling_attempts=120,
        translation_mode="replace",
    )


@pytest.fixture
def notifier():
    return Notifier(quiet=True)


@pytest.fixture
def fake_client():
    return FakeOpenAI()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def registry():
    return ActiveJobRegistry()


@pytest.fixture
def store(tmp_path):
    return DocumentStore(str(tmp_path / "journals.json"))


@pytest.fixture
def journal(store):
    doc_id = store.create_document("Adventure", [
        {"name": "Intro", "content": "Hello"},
        {"name": "Chapter 1", "content": "World"},
    ], folder="folder-1")
    return doc_id
