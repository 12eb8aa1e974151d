"""
Relay of one chat file to Drive: resolves configuration, runs the transfer
engine and reports the outcome back to the sender (and the admin chat on
failure).
"""
from typing import Optional, Union

import httpx
import structlog

from ..auth.service_account import CachedTokenMinter, TokenCache, TokenMinter, load_credential
from ..config import settings
from ..errors import ConfigurationError, UploadError
from ..schemas.telegram import Message
from ..schemas.uploads import Failed, FileRef, Success, UploadOutcome
from ..storage.drive_provider import DriveTransferEngine
from .notifications import ChatNotifier
from .telegram_client import TelegramClient


logger = structlog.get_logger(__name__)


def file_ref_from_message(message: Message) -> Optional[FileRef]:
    if message.document is not None:
        doc = message.document
        return FileRef(
            source_id=doc.file_id,
            display_name=doc.file_name or f"document_{doc.file_unique_id or doc.file_id}",
            declared_size=doc.file_size,
            mime_type=doc.mime_type,
        )
    if message.photo:
        # Telegram sends every thumbnail size; keep the largest
        photo = max(message.photo, key=lambda p: (p.file_size or 0, p.width * p.height))
        return FileRef(
            source_id=photo.file_id,
            display_name=f"photo_{photo.file_unique_id or photo.file_id}.jpg",
            declared_size=photo.file_size,
            mime_type="image/jpeg",
        )
    return None


def describe_outcome(file_ref: FileRef, outcome: UploadOutcome) -> str:
    if isinstance(outcome, Success):
        return f'✅ Successfully uploaded "{file_ref.display_name}" to Google Drive!'
    return f"❌ Failed to upload file. Reason: {failure_reason(outcome)}"


def failure_reason(outcome: UploadOutcome) -> str:
    reason = getattr(outcome, "reason", "unknown error")
    status_code = getattr(outcome, "status_code", None)
    detail = getattr(outcome, "detail", None)
    if status_code is not None and detail:
        return f"{reason}: {status_code} - {detail}"
    if status_code is not None:
        return f"{reason}: {status_code}"
    return reason


async def relay_file(
    file_ref: FileRef,
    chat_id: Union[int, str],
    http_client: httpx.AsyncClient,
    token_cache: TokenCache,
    engine: Optional[DriveTransferEngine] = None,
) -> Optional[UploadOutcome]:
    log = logger.bind(chat_id=chat_id, file_name=file_ref.display_name)
    try:
        telegram = TelegramClient(http_client)
    except ConfigurationError as e:
        log.error("relay_not_configured", reason=e.message)
        return None

    notifier = ChatNotifier(telegram, chat_id)
    await notifier.notify(f'Received "{file_ref.display_name}". Preparing to upload...')

    try:
        credential = load_credential()
        if not settings.google_drive_folder_id:
            raise ConfigurationError("GOOGLE_DRIVE_FOLDER_ID is not set")
    except UploadError as e:
        outcome: UploadOutcome = Failed(reason=e.message, error=type(e).__name__)
    else:
        if engine is None:
            engine = DriveTransferEngine(http_client, CachedTokenMinter(TokenMinter(http_client), token_cache), telegram)
        outcome = await engine.upload(file_ref, credential, settings.google_drive_folder_id, sink=notifier)
        if getattr(outcome, "status_code", None) == 401:
            # Drive no longer accepts the cached token
            token_cache.invalidate(credential)

    if isinstance(outcome, Success):
        log.info("relay_succeeded", remote_id=outcome.remote_id)
    else:
        log.warning("relay_failed", outcome=outcome.kind, reason=failure_reason(outcome))
    await notifier.notify(describe_outcome(file_ref, outcome))

    admin_chat_id = settings.admin_chat_id
    if not isinstance(outcome, Success) and admin_chat_id and str(admin_chat_id) != str(chat_id):
        await telegram.send_message(admin_chat_id, f"Upload failed for chat {chat_id}: {failure_reason(outcome)}")
    return outcome


async def notify_admin(http_client: httpx.AsyncClient, text: str) -> None:
    if not settings.admin_chat_id or not settings.telegram_bot_token:
        return
    await TelegramClient(http_client).send_message(settings.admin_chat_id, text)
