"""
Notification sinks for upload progress and outcomes.
Progress is throttled to coarse percentage steps so a chat is not flooded
with one message per chunk.
"""
from typing import Optional, Union

import structlog

from ..config import settings


logger = structlog.get_logger(__name__)


class NotificationSink:
    async def notify(self, text: str) -> None:
        raise NotImplementedError


class ChatNotifier(NotificationSink):
    """Sends notifications to one Telegram chat."""

    def __init__(self, telegram, chat_id: Union[int, str]):
        self.telegram = telegram
        self.chat_id = chat_id

    async def notify(self, text: str) -> None:
        await self.telegram.send_message(self.chat_id, text)


class ProgressReporter:
    def __init__(
        self,
        sink: Optional[NotificationSink],
        total_size: int,
        label: str,
        step_percent: Optional[int] = None,
    ):
        self.sink = sink
        self.total_size = total_size
        self.label = label
        self.step_percent = step_percent or settings.progress_step_percent
        self.last_reported = 0

    async def update(self, bytes_confirmed: int) -> None:
        """
        Report when bytes_confirmed crosses the next step boundary.

        A jump over several boundaries reports only the highest one; 100% is
        left to the final outcome message.
        """
        if self.sink is None or self.total_size <= 0:
            return
        percent = bytes_confirmed * 100 // self.total_size
        boundary = percent // self.step_percent * self.step_percent
        if boundary <= self.last_reported or boundary >= 100:
            return
        self.last_reported = boundary
        logger.info("upload_progress", file_name=self.label, percent=boundary)
        await self.sink.notify(f'Uploading "{self.label}"... {boundary}%')
