from fastapi import APIRouter, BackgroundTasks, Request
import structlog

from ..schemas.telegram import Update
from ..services.uploads import file_ref_from_message, notify_admin, relay_file


router = APIRouter(prefix="/telegram", tags=["telegram"])
logger = structlog.get_logger(__name__)


@router.post("/webhook")
async def webhook(request: Request, background_tasks: BackgroundTasks):
    # Always acknowledge; Telegram redelivers anything that is not a 2xx
    state = request.app.state
    try:
        update = Update.model_validate(await request.json())
    except ValueError as e:
        logger.warning("webhook_payload_invalid", error=str(e))
        background_tasks.add_task(notify_admin, state.http_client, f"Error in webhook: {e}")
        return {"ok": True}

    if update.message is None:
        return {"ok": True}
    file_ref = file_ref_from_message(update.message)
    if file_ref is None:
        return {"ok": True}

    logger.info("webhook_file_received", update_id=update.update_id, file_name=file_ref.display_name,
                declared_size=file_ref.declared_size)
    background_tasks.add_task(
        relay_file,
        file_ref,
        update.message.chat.id,
        http_client=state.http_client,
        token_cache=state.token_cache,
    )
    return {"ok": True}
