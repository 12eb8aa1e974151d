"""
Google Drive transfer engine.

Files up to ``simple_upload_limit`` go up in one multipart request; larger
files go through a resumable session, sent in contiguous chunks with
per-chunk retry and resume-from-offset. A transfer only succeeds when Drive
hands back a file id.
"""
import asyncio
import json
import mimetypes
import uuid
from typing import Awaitable, Callable, Dict, Optional, Tuple

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt, wait_incrementing

from ..config import settings
from ..errors import SessionInitiationError, TransientTransferError, UploadError
from ..schemas.uploads import (
    BearerToken,
    ChunkAttempt,
    ChunkOutcome,
    ChunkRejected,
    Continue,
    Credential,
    Done,
    Expired,
    Failed,
    FileRef,
    Incomplete,
    Rejected,
    SessionGone,
    Success,
    Transient,
    UploadOutcome,
    UploadSession,
)
from ..services.notifications import NotificationSink, ProgressReporter
from .byte_source import ByteSource, ChunkReader, content_range, parse_range_end


logger = structlog.get_logger(__name__)

SIMPLE = "simple"
RESUMABLE = "resumable"


def select_strategy(size: int, simple_upload_limit: int) -> str:
    return RESUMABLE if size > simple_upload_limit else SIMPLE


def guess_mime_type(file_ref: FileRef) -> str:
    if file_ref.mime_type:
        return file_ref.mime_type
    guessed, _ = mimetypes.guess_type(file_ref.display_name)
    return guessed or "application/octet-stream"


def build_multipart_body(metadata: dict, data: bytes, mime_type: str) -> Tuple[bytes, str]:
    boundary = uuid.uuid4().hex
    head = (
        f"--{boundary}\r\n"
        "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        f"{json.dumps(metadata)}\r\n"
        f"--{boundary}\r\n"
        f"Content-Type: {mime_type}\r\n\r\n"
    ).encode("utf-8")
    tail = f"\r\n--{boundary}--\r\n".encode("utf-8")
    return head + data + tail, f"multipart/related; boundary={boundary}"


def remote_id_from(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("id"):
        return str(payload["id"])
    return None


def classify_chunk_response(response: httpx.Response) -> ChunkOutcome:
    status = response.status_code
    if status == 308:
        end = parse_range_end(response.headers.get("Range"))
        return Continue(confirmed_offset=None if end is None else end + 1)
    if status in (200, 201):
        remote_id = remote_id_from(response)
        if remote_id:
            return Done(remote_id=remote_id)
        return Incomplete(status_code=status, detail=response.text)
    if status in (404, 410):
        return SessionGone(status_code=status, detail=response.text)
    if status >= 500:
        return Transient(status_code=status, detail=response.text)
    if 200 <= status < 300:
        return Incomplete(status_code=status, detail=response.text)
    return ChunkRejected(status_code=status, detail=response.text)


def _log_failed_attempt(start: int, end: int) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome.result()
        attempt = ChunkAttempt(offset_start=start, offset_end=end, attempt_number=retry_state.attempt_number)
        logger.warning(
            "chunk_attempt_failed",
            offset_start=attempt.offset_start,
            offset_end=attempt.offset_end,
            attempt=attempt.attempt_number,
            status_code=outcome.status_code,
        )

    return log


class DriveTransferEngine:
    def __init__(
        self,
        client: httpx.AsyncClient,
        token_minter,
        source_fetcher,
        *,
        upload_base: Optional[str] = None,
        simple_upload_limit: Optional[int] = None,
        chunk_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_base_delay_s: Optional[float] = None,
        progress_step_percent: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self.token_minter = token_minter
        self.source_fetcher = source_fetcher
        self.upload_base = upload_base or settings.drive_upload_base
        self.simple_upload_limit = settings.simple_upload_limit if simple_upload_limit is None else simple_upload_limit
        self.chunk_size = chunk_size or settings.chunk_size
        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.retry_base_delay_s = settings.retry_base_delay_s if retry_base_delay_s is None else retry_base_delay_s
        self.progress_step_percent = progress_step_percent or settings.progress_step_percent
        self._sleep = sleep

    async def upload(
        self,
        file_ref: FileRef,
        credential: Credential,
        destination_folder: str,
        sink: Optional[NotificationSink] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> UploadOutcome:
        log = logger.bind(file_name=file_ref.display_name, source_id=file_ref.source_id)
        try:
            token = await self.token_minter.mint(credential)
            async with self.source_fetcher.resolve(file_ref) as resolved:
                strategy = select_strategy(resolved.size, self.simple_upload_limit)
                log.info("upload_started", size=resolved.size, strategy=strategy)
                if strategy == SIMPLE:
                    outcome = await self._upload_simple(file_ref, token, destination_folder, resolved.byte_source)
                else:
                    session = await self.initiate(file_ref, token, destination_folder, resolved.size)
                    outcome = await self._transfer(
                        session, token, ChunkReader(resolved.byte_source), file_ref.display_name, sink, should_cancel
                    )
        except UploadError as e:
            log.warning("upload_aborted", error=type(e).__name__, reason=e.message, status_code=e.status_code)
            return Failed(reason=e.message, status_code=e.status_code, detail=e.detail, error=type(e).__name__)
        log.info("upload_finished", outcome=outcome.kind)
        return outcome

    async def resume(
        self,
        session: UploadSession,
        credential: Credential,
        byte_source: ByteSource,
        label: str = "file",
        sink: Optional[NotificationSink] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> UploadOutcome:
        """Continue an existing session from the offset Drive reports, not from zero."""
        try:
            token = await self.token_minter.mint(credential)
            session.confirm(await self.probe(session, token))
            logger.info("upload_resumed", resume_uri=session.resume_uri, offset=session.bytes_confirmed)
            return await self._transfer(session, token, ChunkReader(byte_source), label, sink, should_cancel)
        except UploadError as e:
            return Failed(reason=e.message, status_code=e.status_code, detail=e.detail, error=type(e).__name__)

    def _headers(self, token: BearerToken, **extra: str) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {token.value}"}
        headers.update(extra)
        return headers

    async def _upload_simple(
        self, file_ref: FileRef, token: BearerToken, folder: str, byte_source: ByteSource
    ) -> UploadOutcome:
        data = await byte_source.read_all()
        body, content_type = build_multipart_body(
            {"name": file_ref.display_name, "parents": [folder]}, data, guess_mime_type(file_ref)
        )
        try:
            response = await self._client.post(
                self.upload_base,
                params={"uploadType": "multipart"},
                headers=self._headers(token, **{"Content-Type": content_type}),
                content=body,
            )
        except httpx.TransportError as e:
            return Failed(reason=f"Network error during upload: {e}", error=TransientTransferError.__name__)

        if response.is_success:
            remote_id = remote_id_from(response)
            if remote_id:
                return Success(remote_id=remote_id)
            return Failed(
                reason="Drive accepted the upload but returned no file id",
                status_code=response.status_code,
                detail=response.text,
            )
        if 400 <= response.status_code < 500:
            return Rejected(reason="Drive rejected the upload", status_code=response.status_code, detail=response.text)
        return Failed(reason="Drive upload failed", status_code=response.status_code, detail=response.text)

    async def initiate(self, file_ref: FileRef, token: BearerToken, folder: str, total_size: int) -> UploadSession:
        metadata = {"name": file_ref.display_name, "parents": [folder]}
        headers = self._headers(
            token,
            **{
                "Content-Type": "application/json; charset=UTF-8",
                "X-Upload-Content-Length": str(total_size),
                "X-Upload-Content-Type": guess_mime_type(file_ref),
            },
        )
        try:
            response = await self._client.post(
                self.upload_base, params={"uploadType": "resumable"}, headers=headers, content=json.dumps(metadata)
            )
        except httpx.TransportError as e:
            raise SessionInitiationError(f"Failed to initiate resumable upload: {e}")
        if not response.is_success:
            raise SessionInitiationError("Failed to initiate resumable upload", response.status_code, response.text)
        location = response.headers.get("Location")
        if not location:
            raise SessionInitiationError(
                "Drive did not return a resumable session URI", response.status_code, response.text
            )
        logger.info("session_initiated", file_name=file_ref.display_name, total_size=total_size)
        return UploadSession(resume_uri=location, total_size=total_size)

    async def probe(self, session: UploadSession, token: BearerToken) -> int:
        """Ask Drive how many bytes of the session it holds; 0 unless it says otherwise."""
        try:
            response = await self._client.put(
                session.resume_uri,
                headers=self._headers(token, **{"Content-Range": "bytes */*", "Content-Length": "0"}),
            )
        except httpx.TransportError as e:
            logger.warning("session_probe_failed", error=str(e))
            return 0
        if response.status_code == 308:
            end = parse_range_end(response.headers.get("Range"))
            if end is not None:
                return end + 1
        return 0

    async def _transfer(
        self,
        session: UploadSession,
        token: BearerToken,
        reader: ChunkReader,
        label: str,
        sink: Optional[NotificationSink],
        should_cancel: Optional[Callable[[], bool]],
    ) -> UploadOutcome:
        progress = ProgressReporter(sink, session.total_size, label, self.progress_step_percent)
        stalled = 0
        while session.bytes_confirmed < session.total_size:
            if should_cancel is not None and should_cancel():
                return Failed(reason="Upload cancelled", error="Cancelled")

            start = session.bytes_confirmed
            data = await reader.read(start, min(self.chunk_size, session.total_size - start))
            if not data:
                return Failed(
                    reason=f"Source ended at byte {start} of {session.total_size}", error="SourceUnavailable"
                )

            outcome = await self._send_chunk(session, token, start, data)
            if not isinstance(outcome, Continue):
                return self._finish(outcome, session, start, len(data))

            confirmed = outcome.confirmed_offset
            if confirmed is None:
                probed = await self.probe(session, token)
                confirmed = probed if probed > start else start + len(data)
            session.confirm(confirmed)

            if session.bytes_confirmed > start:
                stalled = 0
            else:
                stalled += 1
                if stalled >= self.max_attempts:
                    return Failed(
                        reason=f"Drive stopped accepting bytes at offset {start}",
                        error=TransientTransferError.__name__,
                    )
            await progress.update(session.bytes_confirmed)

        return Failed(
            reason="All bytes were sent but Drive never returned a file id",
            status_code=308,
            error="Incomplete",
        )

    async def _send_chunk(self, session: UploadSession, token: BearerToken, start: int, data: bytes) -> ChunkOutcome:
        end = start + len(data) - 1
        headers = self._headers(
            token,
            **{"Content-Range": content_range(start, end, session.total_size), "Content-Length": str(len(data))},
        )
        # Transient outcomes are retried with a linearly growing delay; the last one is returned as-is
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.retry_base_delay_s, increment=self.retry_base_delay_s),
            retry=retry_if_result(lambda outcome: isinstance(outcome, Transient)),
            after=_log_failed_attempt(start, end),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            sleep=self._sleep,
        )
        return await retrying(self._attempt_chunk, session.resume_uri, headers, data)

    async def _attempt_chunk(self, uri: str, headers: Dict[str, str], data: bytes) -> ChunkOutcome:
        try:
            return classify_chunk_response(await self._put_chunk(uri, headers, data))
        except TransientTransferError as e:
            return Transient(detail=e.message)

    async def _put_chunk(self, uri: str, headers: Dict[str, str], data: bytes) -> httpx.Response:
        try:
            return await self._client.put(uri, headers=headers, content=data)
        except httpx.TransportError as e:
            raise TransientTransferError(f"Network error while sending chunk: {e}")

    def _finish(self, outcome: ChunkOutcome, session: UploadSession, start: int, length: int) -> UploadOutcome:
        if isinstance(outcome, Done):
            session.confirm(session.total_size)
            return Success(remote_id=outcome.remote_id)
        if isinstance(outcome, SessionGone):
            return Expired(resume_uri=session.resume_uri, status_code=outcome.status_code, detail=outcome.detail)
        if isinstance(outcome, ChunkRejected):
            return Rejected(
                reason=f"Drive rejected bytes {start}-{start + length - 1}",
                status_code=outcome.status_code,
                detail=outcome.detail,
            )
        if isinstance(outcome, Incomplete):
            return Failed(
                reason="Drive reported completion without a file id",
                status_code=outcome.status_code,
                detail=outcome.detail,
                error="Incomplete",
            )
        return Failed(
            reason=f"Chunk {start}-{start + length - 1} failed after {self.max_attempts} attempts",
            status_code=outcome.status_code,
            detail=outcome.detail,
            error=TransientTransferError.__name__,
        )
