from fastapi import APIRouter, Depends, HTTPException, status

from chat_notifier.core.auth import SCOPE_NOTIFICATIONS_ADMIN
from chat_notifier.core.security import get_machine_principal, require_scopes
from chat_notifier.schemas.policy import NotificationPolicy
from chat_notifier.services.factory import get_policy_store
from chat_notifier.services.policy_store import PolicyUnavailableError
from chat_notifier.services.repository import RepositoryUnavailableError, RepositoryValidationError

router = APIRouter()


@router.get("", response_model=NotificationPolicy, response_model_by_alias=True)
async def get_notification_policy(
    principal=Depends(get_machine_principal),
    policy_store=Depends(get_policy_store),
) -> NotificationPolicy:
    require_scopes(principal, {SCOPE_NOTIFICATIONS_ADMIN})

    try:
        return await policy_store.get_notification_policy()
    except PolicyUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.put("", response_model=NotificationPolicy, response_model_by_alias=True)
async def put_notification_policy(
    payload: NotificationPolicy,
    principal=Depends(get_machine_principal),
    policy_store=Depends(get_policy_store),
) -> NotificationPolicy:
    require_scopes(principal, {SCOPE_NOTIFICATIONS_ADMIN})

    try:
        return await policy_store.save_notification_policy(payload)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
