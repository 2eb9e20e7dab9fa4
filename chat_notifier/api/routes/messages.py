from fastapi import APIRouter, Depends, status

from chat_notifier.core.auth import SCOPE_CHAT_NOTIFY
from chat_notifier.core.security import get_machine_principal, require_scopes
from chat_notifier.schemas.messages import ChatMessageAccepted, ChatMessageEvent
from chat_notifier.services.factory import get_dispatcher

router = APIRouter()


@router.post("", response_model=ChatMessageAccepted, status_code=status.HTTP_202_ACCEPTED)
async def message_created(
    payload: ChatMessageEvent,
    principal=Depends(get_machine_principal),
    dispatcher=Depends(get_dispatcher),
) -> ChatMessageAccepted:
    require_scopes(principal, {SCOPE_CHAT_NOTIFY})

    # The chat service has already stored the message; the notification outcome never changes its answer.
    dispatcher.dispatch_in_background(payload.message, payload.conversation)
    return ChatMessageAccepted(message_id=payload.message.id)
