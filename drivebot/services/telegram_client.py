"""
Telegram Bot API client
Resolves file references into byte sources and sends chat messages
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Union

import httpx
import structlog
from pydantic import BaseModel, ConfigDict

from ..config import settings
from ..errors import ConfigurationError, SourceUnavailable
from ..schemas.uploads import FileRef
from ..storage.byte_source import BufferedByteSource, ByteSource, StreamByteSource


logger = structlog.get_logger(__name__)


class ResolvedSource(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    byte_source: ByteSource
    size: int


class TelegramClient:
    """Client for the Telegram Bot API"""

    def __init__(
        self,
        client: httpx.AsyncClient,
        bot_token: Optional[str] = None,
        api_base: Optional[str] = None,
    ):
        self.bot_token = bot_token or settings.telegram_bot_token
        self.api_base = (api_base or settings.telegram_api_base).rstrip("/")
        self._client = client

        if not self.bot_token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN is not set")

    def _method_url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.bot_token}/{method}"

    def _file_url(self, file_path: str) -> str:
        return f"{self.api_base}/file/bot{self.bot_token}/{file_path.lstrip('/')}"

    async def _call(self, method: str, **kwargs) -> Dict[str, Any]:
        response = await self._client.post(self._method_url(method), **kwargs)
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = {"ok": False, "description": response.text}
        if not response.is_success or not payload.get("ok"):
            logger.warning("telegram_call_failed", method=method, status_code=response.status_code,
                           description=payload.get("description"))
        return payload

    async def get_file(self, file_id: str) -> Dict[str, Any]:
        """Look up the download path and size of a file."""
        try:
            payload = await self._call("getFile", data={"file_id": file_id})
        except httpx.HTTPError as e:
            raise SourceUnavailable(f"Failed to get file info: {e}")
        if not payload.get("ok"):
            raise SourceUnavailable(f"Failed to get file info: {payload.get('description')}")
        result = payload.get("result") or {}
        if not result.get("file_path"):
            raise SourceUnavailable("Telegram did not return a file path", detail=str(result))
        return result

    @asynccontextmanager
    async def resolve(self, file_ref: FileRef) -> AsyncIterator[ResolvedSource]:
        """
        Open the file for reading and determine its size.

        The download's Content-Length is authoritative when present; otherwise
        the body is buffered and measured. The declared size from the update is
        never trusted for the byte count.
        """
        info = await self.get_file(file_ref.source_id)
        request = self._client.build_request("GET", self._file_url(info["file_path"]))
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise SourceUnavailable(f"Failed to download file from Telegram: {e}")

        try:
            if not response.is_success:
                await _read_body(response)
                raise SourceUnavailable("Failed to download file from Telegram", response.status_code, response.text)

            size = _content_length(response)
            if size is None:
                data = await _read_body(response)
                source: ByteSource = BufferedByteSource(data)
                size = len(data)
            else:
                source = StreamByteSource(_iter_body(response))
            if size == 0:
                raise SourceUnavailable("Telegram returned an empty file", response.status_code)

            if file_ref.declared_size is not None and file_ref.declared_size != size:
                logger.info("declared_size_mismatch", file_name=file_ref.display_name,
                            declared_size=file_ref.declared_size, size=size)
            yield ResolvedSource(byte_source=source, size=size)
        finally:
            await response.aclose()

    async def send_message(self, chat_id: Union[int, str], text: str) -> bool:
        # Delivery is best-effort: a lost notice must never change an upload outcome
        try:
            payload = await self._call("sendMessage", json={"chat_id": chat_id, "text": text})
        except httpx.HTTPError as e:
            logger.warning("send_message_failed", chat_id=chat_id, error=str(e))
            return False
        return bool(payload.get("ok"))

    async def set_webhook(self, url: str, drop_pending_updates: bool = False) -> Dict[str, Any]:
        return await self._call("setWebhook", json={"url": url, "drop_pending_updates": drop_pending_updates})


def _content_length(response: httpx.Response) -> Optional[int]:
    raw = response.headers.get("content-length")
    if raw is None or response.headers.get("content-encoding"):
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


async def _read_body(response: httpx.Response) -> bytes:
    try:
        return await response.aread()
    except httpx.HTTPError as e:
        raise SourceUnavailable(f"Telegram download interrupted: {e}")


async def _iter_body(response: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for piece in response.aiter_bytes():
            yield piece
    except httpx.HTTPError as e:
        raise SourceUnavailable(f"Telegram download interrupted: {e}")
