from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import Optional


# Drive requires resumable chunks (except the last) to be multiples of 256 KiB
DRIVE_CHUNK_ALIGNMENT = 256 * 1024


class Settings(BaseSettings):
    # Core
    environment: str = Field(default="dev")
    app_name: str = Field(default="Drive Upload Relay")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Telegram
    telegram_bot_token: Optional[str] = Field(default=None, alias="TELEGRAM_BOT_TOKEN")
    telegram_api_base: str = Field(default="https://api.telegram.org", alias="TELEGRAM_API_BASE")
    admin_chat_id: Optional[str] = Field(default=None, alias="ADMIN_CHAT_ID")

    # Google service account / Drive
    google_credentials: Optional[str] = Field(
        default=None,
        alias="GOOGLE_CREDENTIALS",
        description="Service-account JSON document (client_email, private_key, token_uri)",
    )
    google_drive_folder_id: Optional[str] = Field(default=None, alias="GOOGLE_DRIVE_FOLDER_ID")
    google_scope: str = Field(default="https://www.googleapis.com/auth/drive", alias="GOOGLE_SCOPE")
    google_token_endpoint: str = Field(default="https://oauth2.googleapis.com/token", alias="GOOGLE_TOKEN_ENDPOINT")
    drive_upload_base: str = Field(
        default="https://www.googleapis.com/upload/drive/v3/files", alias="DRIVE_UPLOAD_BASE"
    )
    token_leeway_s: int = Field(default=60, alias="TOKEN_LEEWAY")

    # Transfer policy
    simple_upload_limit: int = Field(default=20 * 1024 * 1024, alias="SIMPLE_UPLOAD_LIMIT")  # Telegram's own download cap
    chunk_size: int = Field(default=DRIVE_CHUNK_ALIGNMENT * 10, alias="UPLOAD_CHUNK_SIZE")  # 2.5 MiB
    retry_max_attempts: int = Field(default=3, alias="UPLOAD_RETRY_ATTEMPTS")
    retry_base_delay_s: float = Field(default=1.0, alias="UPLOAD_RETRY_BASE_DELAY")
    progress_step_percent: int = Field(default=20, alias="PROGRESS_STEP_PERCENT")
    http_timeout_s: float = Field(default=60.0, alias="HTTP_TIMEOUT")

    @field_validator("chunk_size")
    @classmethod
    def _chunk_size_aligned(cls, v: int) -> int:
        if v <= 0 or v % DRIVE_CHUNK_ALIGNMENT:
            raise ValueError(f"chunk_size must be a positive multiple of {DRIVE_CHUNK_ALIGNMENT}")
        return v

    @field_validator("retry_max_attempts")
    @classmethod
    def _at_least_one_attempt(cls, v: int) -> int:
        if v < 1:
            raise ValueError("retry_max_attempts must be >= 1")
        return v

    @field_validator("progress_step_percent")
    @classmethod
    def _step_in_range(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError("progress_step_percent must be between 1 and 100")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True


settings = Settings()
