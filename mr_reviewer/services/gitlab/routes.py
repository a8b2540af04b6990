"""GitLab webhook routes."""

from fastapi import APIRouter, BackgroundTasks, Request

from mr_reviewer.core.logging import get_logger
from mr_reviewer.core.security import require_gitlab_token
from mr_reviewer.services.gitlab.schemas import WebhookResponse
from mr_reviewer.services.gitlab.service import handle_note_event

logger = get_logger("gitlab.routes")

router = APIRouter()


@router.post("/webhook/gitlab", response_model=WebhookResponse)
async def gitlab_webhook(request: Request, background_tasks: BackgroundTasks):
    """Handle GitLab webhook events.

    Always answers right away; reviews run in the background.
    """
    event = request.headers.get("X-Gitlab-Event")
    logger.info(f"Webhook received: event={event}")

    require_gitlab_token(request.headers.get("X-Gitlab-Token"))

    payload = await request.json()

    if payload.get("object_kind") == "note":
        return handle_note_event(payload, background_tasks)

    logger.info(f"Unhandled event type: {event}")
    return {"message": f"Event {event} not handled"}
