from typing import Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ConfigurationError


class Credential(BaseModel):
    model_config = ConfigDict(frozen=True)

    issuer: str
    private_key: str = Field(repr=False)
    scope: str
    token_endpoint: str

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.issuer, self.scope, self.token_endpoint)

    @classmethod
    def from_service_account_info(cls, info: dict, scope: str, token_endpoint: Optional[str] = None) -> "Credential":
        """Build a credential from a parsed service-account JSON document."""
        missing = [k for k in ("client_email", "private_key") if not info.get(k)]
        if missing:
            raise ConfigurationError(f"Service-account credential is missing: {', '.join(missing)}")
        return cls(
            issuer=info["client_email"],
            private_key=info["private_key"],
            scope=scope,
            token_endpoint=token_endpoint or info.get("token_uri") or "https://oauth2.googleapis.com/token",
        )


class BearerToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str = Field(repr=False)
    expires_at: int

    def is_valid(self, now: float, leeway_s: int = 0) -> bool:
        return now + leeway_s < self.expires_at


class FileRef(BaseModel):
    source_id: str
    display_name: str
    declared_size: Optional[int] = None
    mime_type: Optional[str] = None


class UploadSession(BaseModel):
    resume_uri: str
    total_size: int
    bytes_confirmed: int = 0

    def confirm(self, offset: int) -> int:
        # Never moves backwards and never passes the end of the file
        self.bytes_confirmed = min(max(self.bytes_confirmed, offset), self.total_size)
        return self.bytes_confirmed


class ChunkAttempt(BaseModel):
    offset_start: int
    offset_end: int
    attempt_number: int


# Per-attempt classification of a chunk PUT response

class Continue(BaseModel):
    kind: Literal["continue"] = "continue"
    confirmed_offset: Optional[int] = None  # None when the Range header was missing or unparseable


class Done(BaseModel):
    kind: Literal["done"] = "done"
    remote_id: str


class Incomplete(BaseModel):
    kind: Literal["incomplete"] = "incomplete"
    status_code: int
    detail: Optional[str] = None


class SessionGone(BaseModel):
    kind: Literal["session_gone"] = "session_gone"
    status_code: int
    detail: Optional[str] = None


class ChunkRejected(BaseModel):
    kind: Literal["rejected"] = "rejected"
    status_code: int
    detail: Optional[str] = None


class Transient(BaseModel):
    kind: Literal["transient"] = "transient"
    status_code: Optional[int] = None
    detail: Optional[str] = None


ChunkOutcome = Union[Continue, Done, Incomplete, SessionGone, ChunkRejected, Transient]


# Terminal result of one upload

class Success(BaseModel):
    kind: Literal["success"] = "success"
    remote_id: str


class Rejected(BaseModel):
    kind: Literal["rejected"] = "rejected"
    reason: str
    status_code: Optional[int] = None
    detail: Optional[str] = None


class Failed(BaseModel):
    kind: Literal["failed"] = "failed"
    reason: str
    status_code: Optional[int] = None
    detail: Optional[str] = None
    error: Optional[str] = None


class Expired(BaseModel):
    kind: Literal["expired"] = "expired"
    resume_uri: str
    reason: str = "Upload session expired; start a new upload"
    status_code: Optional[int] = None
    detail: Optional[str] = None


UploadOutcome = Union[Success, Rejected, Failed, Expired]
