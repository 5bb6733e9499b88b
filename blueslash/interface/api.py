"""JSON API over the service layer.

The acting user comes from the ``X-User-Id`` header set by the upstream
identity provider; every domain error is rendered by ``domain_error_handler``.
"""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import Base64Bytes, BaseModel, Field

from blueslash.core import errors
from blueslash.core.context import AppContext
from blueslash.domain.gem import GemTransaction, LeaderboardEntry
from blueslash.domain.household import Household
from blueslash.domain.message import DirectMessage, KitchenPost
from blueslash.domain.task import ChecklistGroup, RecurrenceConfig, Task, TaskStatus
from blueslash.domain.user import User
from blueslash.services import (
    gem_service,
    household_service,
    kitchen_service,
    message_service,
    task_service,
    user_service,
    verification_service,
)
from blueslash.services.household_service import InviteLinkResult


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])

STATUS_BY_CODE = {
    errors.ErrorCode.ERR_VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.ErrorCode.ERR_PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
    errors.ErrorCode.ERR_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    errors.ErrorCode.ERR_CONFLICT: status.HTTP_409_CONFLICT,
    errors.ErrorCode.ERR_FAILED_PRECONDITION: status.HTTP_412_PRECONDITION_FAILED,
    errors.ErrorCode.ERR_INSUFFICIENT_GEMS: status.HTTP_412_PRECONDITION_FAILED,
    errors.ErrorCode.ERR_EXTERNAL_SERVICE: status.HTTP_502_BAD_GATEWAY,
    errors.ErrorCode.ERR_LLM: status.HTTP_502_BAD_GATEWAY,
}


async def domain_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Render a BlueSlashError as ``{code, message, suggestion}``."""
    response = errors.classify_error_with_response(exc)
    status_code = STATUS_BY_CODE.get(response.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("Request failed: %s", exc, extra={"code": response.code})
    return JSONResponse(
        status_code=status_code,
        content={"code": response.code, "message": response.message, "suggestion": response.suggestion},
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.ctx


def current_user_id(x_user_id: Annotated[str, Header(min_length=1)]) -> str:
    return x_user_id


Ctx = Annotated[AppContext, Depends(get_context)]
UserId = Annotated[str, Depends(current_user_id)]
# Omitting limit returns every match
Limit = Annotated[int | None, Query(ge=1)]
Offset = Annotated[int, Query(ge=0)]


async def _require_membership(ctx: AppContext, household_id: str, user_id: str) -> Household:
    household = await household_service.get_household(ctx, household_id=household_id)
    if not household.is_member(user_id):
        msg = "You are not a member of this household"
        raise errors.PermissionDeniedError(msg)
    return household


# Request bodies


class ProfileRequest(BaseModel):
    email: str
    display_name: str = ""


class NotificationTokenRequest(BaseModel):
    token: str | None = None


class HouseholdCreateRequest(BaseModel):
    name: str


class HouseholdSettingsRequest(BaseModel):
    name: str | None = None
    gem_prompt: str | None = None
    allow_gem_override: bool | None = None


class TaskCreateRequest(BaseModel):
    title: str
    due_date: datetime
    description: str = ""
    gems: int | None = None
    status: TaskStatus = TaskStatus.DRAFT
    recurrence: RecurrenceConfig | None = None


class TaskUpdateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    due_date: datetime | None = None
    gems: int | None = None
    recurrence: RecurrenceConfig | None = None


class VerifyRequest(BaseModel):
    verified: bool


class ChecklistRequest(BaseModel):
    checklist_groups: list[ChecklistGroup]


class GemEstimateRequest(BaseModel):
    description: str


class GemEstimateResponse(BaseModel):
    gems: int


class DirectMessageRequest(BaseModel):
    recipient_id: str
    body: str
    gems: int = 0


class AttachmentRequest(BaseModel):
    file_name: str
    content_type: str
    content: Base64Bytes = Field(..., description="Base64-encoded file content")


class KitchenPostRequest(BaseModel):
    body: str = ""
    post_id: str | None = None
    attachment: AttachmentRequest | None = None


# Users


@router.put("/users/me", response_model=User)
async def upsert_profile(body: ProfileRequest, ctx: Ctx, user_id: UserId) -> User:
    return await user_service.ensure_user(ctx, user_id=user_id, email=body.email, display_name=body.display_name)


@router.get("/users/me", response_model=User)
async def read_profile(ctx: Ctx, user_id: UserId) -> User:
    return await user_service.get_user(ctx, user_id=user_id)


@router.patch("/users/me/notification-preferences", response_model=User)
async def update_preferences(body: dict[str, bool], ctx: Ctx, user_id: UserId) -> User:
    return await user_service.update_notification_preferences(ctx, user_id=user_id, **body)


@router.put("/users/me/notification-token", response_model=User)
async def update_notification_token(body: NotificationTokenRequest, ctx: Ctx, user_id: UserId) -> User:
    return await user_service.set_notification_token(ctx, user_id=user_id, token=body.token)


@router.get("/users/me/tasks", response_model=list[Task])
async def list_my_tasks(
    ctx: Ctx, user_id: UserId, status: TaskStatus | None = None, limit: Limit = None, offset: Offset = 0
) -> list[Task]:
    return await task_service.get_user_tasks(ctx, user_id=user_id, status=status, limit=limit, offset=offset)


@router.get("/users/me/gems", response_model=list[GemTransaction])
async def gem_history(
    ctx: Ctx, user_id: UserId, limit: Annotated[int, Query(ge=1)] = 50, offset: Offset = 0
) -> list[GemTransaction]:
    return await gem_service.get_gem_history(ctx, user_id=user_id, limit=limit, offset=offset)


# Households


@router.post("/households", response_model=Household, status_code=status.HTTP_201_CREATED)
async def create_household(body: HouseholdCreateRequest, ctx: Ctx, user_id: UserId) -> Household:
    return await household_service.create_household(ctx, name=body.name, head_user_id=user_id)


@router.get("/households", response_model=list[Household])
async def list_households(ctx: Ctx, user_id: UserId) -> list[Household]:
    return await household_service.get_user_households(ctx, user_id=user_id)


@router.get("/households/{household_id}", response_model=Household)
async def read_household(household_id: str, ctx: Ctx, user_id: UserId) -> Household:
    return await _require_membership(ctx, household_id, user_id)


@router.get("/households/{household_id}/members", response_model=list[User])
async def list_members(household_id: str, ctx: Ctx, user_id: UserId) -> list[User]:
    await _require_membership(ctx, household_id, user_id)
    return await household_service.get_household_members(ctx, household_id=household_id)


@router.delete("/households/{household_id}/members/{member_id}", response_model=Household)
async def remove_member(household_id: str, member_id: str, ctx: Ctx, user_id: UserId) -> Household:
    return await household_service.remove_member_from_household(
        ctx, household_id=household_id, member_id=member_id, requester_id=user_id
    )


@router.patch("/households/{household_id}/settings", response_model=Household)
async def update_settings(household_id: str, body: HouseholdSettingsRequest, ctx: Ctx, user_id: UserId) -> Household:
    return await household_service.update_household_settings(
        ctx,
        household_id=household_id,
        requester_id=user_id,
        name=body.name,
        gem_prompt=body.gem_prompt,
        allow_gem_override=body.allow_gem_override,
    )


@router.post("/households/{household_id}/switch", response_model=User)
async def switch_household(household_id: str, ctx: Ctx, user_id: UserId) -> User:
    return await household_service.switch_current_household(ctx, user_id=user_id, household_id=household_id)


@router.post("/households/{household_id}/invites", response_model=InviteLinkResult, status_code=201)
async def create_invite(household_id: str, ctx: Ctx, user_id: UserId) -> InviteLinkResult:
    return await household_service.generate_invite_link(ctx, household_id=household_id, requester_id=user_id)


@router.delete("/households/{household_id}/invites/{token}", response_model=Household)
async def revoke_invite(household_id: str, token: str, ctx: Ctx, user_id: UserId) -> Household:
    return await household_service.remove_invite_link(
        ctx, household_id=household_id, requester_id=user_id, token=token
    )


@router.post("/invites/{token}/join", response_model=Household)
async def join_household(token: str, ctx: Ctx, user_id: UserId) -> Household:
    return await household_service.join_household_by_invite(ctx, token=token, user_id=user_id)


@router.get("/households/{household_id}/leaderboard", response_model=list[LeaderboardEntry])
async def leaderboard(household_id: str, ctx: Ctx, user_id: UserId) -> list[LeaderboardEntry]:
    await _require_membership(ctx, household_id, user_id)
    return await gem_service.get_leaderboard(ctx, household_id=household_id)


@router.post("/households/{household_id}/gem-estimate", response_model=GemEstimateResponse)
async def estimate_gems(household_id: str, body: GemEstimateRequest, ctx: Ctx, user_id: UserId) -> GemEstimateResponse:
    await _require_membership(ctx, household_id, user_id)
    gems = await gem_service.estimate_task_gems(ctx, household_id=household_id, description=body.description)
    return GemEstimateResponse(gems=gems)


# Tasks


@router.post("/households/{household_id}/tasks", response_model=Task, status_code=status.HTTP_201_CREATED)
async def create_task(household_id: str, body: TaskCreateRequest, ctx: Ctx, user_id: UserId) -> Task:
    return await task_service.create_task(
        ctx,
        household_id=household_id,
        creator_id=user_id,
        title=body.title,
        due_date=body.due_date,
        description=body.description,
        gems=body.gems,
        status=body.status,
        recurrence=body.recurrence,
    )


@router.get("/households/{household_id}/tasks", response_model=list[Task])
async def list_household_tasks(
    household_id: str,
    ctx: Ctx,
    user_id: UserId,
    status: TaskStatus | None = None,
    limit: Limit = None,
    offset: Offset = 0,
) -> list[Task]:
    await _require_membership(ctx, household_id, user_id)
    return await task_service.get_household_tasks(
        ctx, household_id=household_id, status=status, limit=limit, offset=offset
    )


@router.get("/tasks/{task_id}", response_model=Task)
async def read_task(task_id: str, ctx: Ctx, user_id: UserId) -> Task:
    task = await task_service.get_task(ctx, task_id=task_id)
    await _require_membership(ctx, task.household_id, user_id)
    return task


@router.patch("/tasks/{task_id}", response_model=Task)
async def update_task(task_id: str, body: TaskUpdateRequest, ctx: Ctx, user_id: UserId) -> Task:
    changes = {name: getattr(body, name) for name in body.model_fields_set}
    return await task_service.update_task(ctx, task_id=task_id, user_id=user_id, **changes)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, ctx: Ctx, user_id: UserId) -> None:
    await task_service.delete_task(ctx, task_id=task_id, user_id=user_id)


@router.post("/tasks/{task_id}/publish", response_model=Task)
async def publish_task(task_id: str, ctx: Ctx, user_id: UserId) -> Task:
    return await task_service.publish_task(ctx, task_id=task_id, user_id=user_id)


@router.post("/tasks/{task_id}/unpublish", response_model=Task)
async def unpublish_task(task_id: str, ctx: Ctx, user_id: UserId) -> Task:
    return await task_service.unpublish_task(ctx, task_id=task_id, user_id=user_id)


@router.post("/tasks/{task_id}/claim", response_model=Task)
async def claim_task(task_id: str, ctx: Ctx, user_id: UserId) -> Task:
    return await task_service.claim_task(ctx, task_id=task_id, user_id=user_id)


@router.post("/tasks/{task_id}/unclaim", response_model=Task)
async def unclaim_task(task_id: str, ctx: Ctx, user_id: UserId) -> Task:
    return await task_service.unclaim_task(ctx, task_id=task_id, user_id=user_id)


@router.post("/tasks/{task_id}/complete", response_model=Task)
async def complete_task(task_id: str, ctx: Ctx, user_id: UserId) -> Task:
    return await task_service.complete_task(ctx, task_id=task_id, user_id=user_id)


@router.post("/tasks/{task_id}/decline", response_model=Task)
async def decline_task(task_id: str, ctx: Ctx, user_id: UserId) -> Task:
    return await task_service.decline_task(ctx, task_id=task_id, user_id=user_id)


@router.post("/tasks/{task_id}/verify", response_model=Task)
async def verify_task(task_id: str, body: VerifyRequest, ctx: Ctx, user_id: UserId) -> Task:
    return await verification_service.verify_task(ctx, task_id=task_id, user_id=user_id, verified=body.verified)


@router.post("/tasks/{task_id}/spawn", response_model=Task, status_code=status.HTTP_201_CREATED)
async def spawn_task(task_id: str, ctx: Ctx, user_id: UserId) -> Task:
    return await task_service.spawn_recurring_task(ctx, task_id=task_id, user_id=user_id)


@router.put("/tasks/{task_id}/checklist", response_model=Task)
async def update_checklist(task_id: str, body: ChecklistRequest, ctx: Ctx, user_id: UserId) -> Task:
    return await task_service.update_task_checklist(
        ctx, task_id=task_id, user_id=user_id, checklist_groups=body.checklist_groups
    )


# Messages


@router.post("/households/{household_id}/messages", response_model=DirectMessage, status_code=201)
async def send_message(household_id: str, body: DirectMessageRequest, ctx: Ctx, user_id: UserId) -> DirectMessage:
    return await message_service.send_direct_message(
        ctx,
        household_id=household_id,
        sender_id=user_id,
        recipient_id=body.recipient_id,
        body=body.body,
        gems=body.gems,
    )


@router.get("/households/{household_id}/messages", response_model=list[DirectMessage])
async def list_messages(
    household_id: str, ctx: Ctx, user_id: UserId, limit: Limit = None, offset: Offset = 0
) -> list[DirectMessage]:
    await _require_membership(ctx, household_id, user_id)
    return await message_service.list_direct_messages(
        ctx, household_id=household_id, user_id=user_id, limit=limit, offset=offset
    )


@router.post("/messages/{message_id}/read", response_model=DirectMessage)
async def mark_read(message_id: str, ctx: Ctx, user_id: UserId) -> DirectMessage:
    return await message_service.mark_message_as_read(ctx, message_id=message_id, user_id=user_id)


# Kitchen board


@router.get("/households/{household_id}/kitchen-posts", response_model=list[KitchenPost])
async def list_kitchen_posts(
    household_id: str, ctx: Ctx, user_id: UserId, limit: Limit = None, offset: Offset = 0
) -> list[KitchenPost]:
    await _require_membership(ctx, household_id, user_id)
    return await kitchen_service.list_kitchen_posts(ctx, household_id=household_id, limit=limit, offset=offset)


@router.post("/households/{household_id}/kitchen-posts", response_model=KitchenPost)
async def upsert_kitchen_post(household_id: str, body: KitchenPostRequest, ctx: Ctx, user_id: UserId) -> KitchenPost:
    attachment = None
    if body.attachment is not None:
        attachment = kitchen_service.AttachmentUpload(
            file_name=body.attachment.file_name,
            content_type=body.attachment.content_type,
            content=body.attachment.content,
        )
    return await kitchen_service.upsert_kitchen_post(
        ctx,
        household_id=household_id,
        author_id=user_id,
        body=body.body,
        attachment=attachment,
        post_id=body.post_id,
    )


@router.delete("/kitchen-posts/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_kitchen_post(post_id: str, ctx: Ctx, user_id: UserId) -> None:
    await kitchen_service.delete_kitchen_post(ctx, post_id=post_id, user_id=user_id)
