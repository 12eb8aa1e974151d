import json

import httpx
import pytest

from drivebot.auth.service_account import TokenCache
from drivebot.config import settings
from drivebot.schemas.telegram import Message
from drivebot.schemas.uploads import Failed, FileRef, Rejected, Success
from drivebot.services.uploads import describe_outcome, failure_reason, file_ref_from_message, relay_file

CHAT_ID = 555
ADMIN_CHAT_ID = "777"


class StubEngine:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    async def upload(self, file_ref, credential, destination_folder, sink=None, should_cancel=None):
        self.calls.append((file_ref, credential, destination_folder))
        await sink.notify("progress")
        return self.outcome


@pytest.fixture
def configured(monkeypatch, service_account_json):
    monkeypatch.setattr(settings, "telegram_bot_token", "123:abc")
    monkeypatch.setattr(settings, "telegram_api_base", "https://tg.test")
    monkeypatch.setattr(settings, "google_credentials", service_account_json)
    monkeypatch.setattr(settings, "google_drive_folder_id", "folder-1")
    monkeypatch.setattr(settings, "admin_chat_id", ADMIN_CHAT_ID)


@pytest.fixture
def sent_messages():
    return []


@pytest.fixture
def telegram_transport(sent_messages):
    def handler(request: httpx.Request) -> httpx.Response:
        sent_messages.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": {}})

    return httpx.MockTransport(handler)


FILE_REF = FileRef(source_id="f1", display_name="notes.txt", declared_size=3)


def test_document_message_becomes_file_ref():
    message = Message.model_validate({
        "chat": {"id": 1},
        "document": {"file_id": "doc-1", "file_name": "a.zip", "mime_type": "application/zip", "file_size": 42},
    })
    assert file_ref_from_message(message) == FileRef(
        source_id="doc-1", display_name="a.zip", declared_size=42, mime_type="application/zip"
    )


def test_photo_message_uses_largest_size():
    message = Message.model_validate({
        "chat": {"id": 1},
        "photo": [
            {"file_id": "small", "file_unique_id": "u1", "width": 90, "height": 90, "file_size": 1000},
            {"file_id": "large", "file_unique_id": "u3", "width": 1280, "height": 720, "file_size": 90000},
            {"file_id": "medium", "file_unique_id": "u2", "width": 320, "height": 320, "file_size": 9000},
        ],
    })
    file_ref = file_ref_from_message(message)
    assert file_ref.source_id == "large"
    assert file_ref.display_name == "photo_u3.jpg"
    assert file_ref.mime_type == "image/jpeg"


def test_text_message_has_no_file():
    assert file_ref_from_message(Message.model_validate({"chat": {"id": 1}, "text": "/start"})) is None


def test_failure_reason_includes_status_and_body():
    outcome = Rejected(reason="Drive rejected the upload", status_code=403, detail='{"error": "forbidden"}')
    assert failure_reason(outcome) == 'Drive rejected the upload: 403 - {"error": "forbidden"}'
    assert describe_outcome(FILE_REF, outcome).startswith("❌ Failed to upload file. Reason: Drive rejected")
    assert describe_outcome(FILE_REF, Success(remote_id="x")) == (
        '✅ Successfully uploaded "notes.txt" to Google Drive!'
    )


@pytest.mark.asyncio
async def test_relay_reports_success_to_sender_only(configured, telegram_transport, sent_messages):
    engine = StubEngine(Success(remote_id="drive-1"))
    async with httpx.AsyncClient(transport=telegram_transport) as client:
        outcome = await relay_file(FILE_REF, CHAT_ID, client, TokenCache(), engine=engine)

    assert outcome == Success(remote_id="drive-1")
    _, credential, folder = engine.calls[0]
    assert credential.issuer == "relay@project.iam.gserviceaccount.com"
    assert folder == "folder-1"
    assert [m["chat_id"] for m in sent_messages] == [CHAT_ID, CHAT_ID, CHAT_ID]
    assert sent_messages[0]["text"] == 'Received "notes.txt". Preparing to upload...'
    assert sent_messages[-1]["text"] == '✅ Successfully uploaded "notes.txt" to Google Drive!'


@pytest.mark.asyncio
async def test_relay_copies_failures_to_admin(configured, telegram_transport, sent_messages):
    engine = StubEngine(Failed(reason="Chunk 0-255 failed after 3 attempts", status_code=503, detail="backend error"))
    async with httpx.AsyncClient(transport=telegram_transport) as client:
        outcome = await relay_file(FILE_REF, CHAT_ID, client, TokenCache(), engine=engine)

    assert outcome.kind == "failed"
    assert sent_messages[-2]["chat_id"] == CHAT_ID
    assert sent_messages[-2]["text"].startswith("❌ Failed to upload file.")
    assert sent_messages[-1]["chat_id"] == ADMIN_CHAT_ID
    assert sent_messages[-1]["text"] == (
        f"Upload failed for chat {CHAT_ID}: Chunk 0-255 failed after 3 attempts: 503 - backend error"
    )


@pytest.mark.asyncio
async def test_relay_does_not_duplicate_admin_notice_for_admin_chat(configured, telegram_transport, sent_messages):
    engine = StubEngine(Rejected(reason="Drive rejected the upload", status_code=400))
    async with httpx.AsyncClient(transport=telegram_transport) as client:
        await relay_file(FILE_REF, int(ADMIN_CHAT_ID), client, TokenCache(), engine=engine)

    assert {m["chat_id"] for m in sent_messages} == {int(ADMIN_CHAT_ID)}


@pytest.mark.asyncio
async def test_relay_without_folder_fails_before_upload(configured, monkeypatch, telegram_transport, sent_messages):
    monkeypatch.setattr(settings, "google_drive_folder_id", None)
    engine = StubEngine(Success(remote_id="never"))
    async with httpx.AsyncClient(transport=telegram_transport) as client:
        outcome = await relay_file(FILE_REF, CHAT_ID, client, TokenCache(), engine=engine)

    assert outcome.kind == "failed"
    assert outcome.error == "ConfigurationError"
    assert engine.calls == []
    assert "GOOGLE_DRIVE_FOLDER_ID" in sent_messages[-1]["text"]


@pytest.mark.asyncio
async def test_relay_drops_cached_token_on_unauthorized(configured, telegram_transport, bearer_token):
    from drivebot.auth.service_account import load_credential

    cache = TokenCache(leeway_s=0)
    cache.put(load_credential(), bearer_token)
    engine = StubEngine(Rejected(reason="Drive rejected the upload", status_code=401))
    async with httpx.AsyncClient(transport=telegram_transport) as client:
        await relay_file(FILE_REF, CHAT_ID, client, cache, engine=engine)

    assert cache.get(load_credential()) is None
