from fastapi import APIRouter

from ..auth.service_account import load_credential
from ..config import settings
from ..errors import UploadError


router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("/status")
def status():
    # Credential document parses and names an issuer
    credentials_ok = True
    try:
        load_credential()
    except UploadError:
        credentials_ok = False

    return {
        "telegram": bool(settings.telegram_bot_token),
        "google_credentials": credentials_ok,
        "drive_folder": bool(settings.google_drive_folder_id),
        "admin_chat": bool(settings.admin_chat_id),
    }
