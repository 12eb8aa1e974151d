from pydantic import BaseModel
from typing import Optional, List


class Chat(BaseModel):
    id: int


class Document(BaseModel):
    file_id: str
    file_unique_id: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class PhotoSize(BaseModel):
    file_id: str
    file_unique_id: Optional[str] = None
    width: int = 0
    height: int = 0
    file_size: Optional[int] = None


class Message(BaseModel):
    message_id: Optional[int] = None
    chat: Chat
    text: Optional[str] = None
    document: Optional[Document] = None
    photo: Optional[List[PhotoSize]] = None


class Update(BaseModel):
    update_id: Optional[int] = None
    message: Optional[Message] = None
