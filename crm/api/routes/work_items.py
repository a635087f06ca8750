from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from crm.dependencies.work_items import WorkItemServiceDep
from crm.work_items.errors import (
    ConcurrencyConflictError,
    IllegalTransitionError,
    LockTimeoutError,
    WorkItemNotFoundError,
    WorkItemValidationError,
)
from crm.work_items.models import (
    COMMENT_BODY_MAX_LENGTH,
    CONTENT_TYPE_MAX_LENGTH,
    DESCRIPTION_MAX_LENGTH,
    FILE_NAME_MAX_LENGTH,
    IDENTIFIER_MAX_LENGTH,
    PRIORITY_MAX_LENGTH,
    STORAGE_URI_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    AttachmentMetadata,
    WorkItem,
    WorkItemCreate,
    WorkItemDetail,
    WorkItemListQuery,
    WorkItemUpdate,
)
from crm.work_items.state import WorkItemStatus
from crm.work_items.versioning import format_version_marker, parse_version_marker

router = APIRouter(prefix="/api/crm/work-items", tags=["work-items"])


class WorkItemCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    priority: str | None = Field(default=None, max_length=PRIORITY_MAX_LENGTH)
    assignee_id: str | None = Field(default=None, max_length=IDENTIFIER_MAX_LENGTH)
    due_date: datetime | None = None


class WorkItemUpdateRequest(WorkItemCreateRequest):
    status: WorkItemStatus


class WorkItemStatusChangeRequest(BaseModel):
    target_status: WorkItemStatus


class WorkItemAssignRequest(BaseModel):
    assignee_id: str = Field(..., min_length=1, max_length=IDENTIFIER_MAX_LENGTH)


class WorkItemCommentCreateRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=COMMENT_BODY_MAX_LENGTH)
    author_id: str | None = Field(default=None, max_length=IDENTIFIER_MAX_LENGTH)


class WorkItemAttachmentCreateRequest(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=FILE_NAME_MAX_LENGTH)
    content_type: str | None = Field(default=None, max_length=CONTENT_TYPE_MAX_LENGTH)
    size: int = Field(default=0, ge=0)
    storage_uri: str | None = Field(default=None, max_length=STORAGE_URI_MAX_LENGTH)


class WorkItemSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    status: WorkItemStatus
    priority: str | None
    assignee_id: str | None
    due_date: datetime | None
    updated_at: datetime
    state_version: int


class WorkItemCommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    body: str
    author_id: str | None
    created_at: datetime


class WorkItemAttachmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    file_name: str
    content_type: str | None
    size: int
    storage_uri: str | None
    created_at: datetime


class WorkItemDetailResponse(BaseModel):
    id: str
    title: str
    description: str | None
    status: WorkItemStatus
    priority: str | None
    assignee_id: str | None
    due_date: datetime | None
    created_at: datetime
    updated_at: datetime
    state_version: int
    comments: list[WorkItemCommentResponse]
    attachments: list[WorkItemAttachmentResponse]

    @classmethod
    def from_detail(cls, detail: WorkItemDetail) -> "WorkItemDetailResponse":
        item = detail.work_item
        return cls(
            id=item.id,
            title=item.title,
            description=item.description,
            status=item.status,
            priority=item.priority,
            assignee_id=item.assignee_id,
            due_date=item.due_date,
            created_at=item.created_at,
            updated_at=item.updated_at,
            state_version=item.state_version,
            comments=[WorkItemCommentResponse.model_validate(comment) for comment in detail.comments],
            attachments=[WorkItemAttachmentResponse.model_validate(attachment) for attachment in detail.attachments],
        )


class WorkItemPageResponse(BaseModel):
    items: list[WorkItemSummaryResponse]
    page: int
    page_size: int
    total_count: int


def _to_summary(item: WorkItem) -> WorkItemSummaryResponse:
    return WorkItemSummaryResponse.model_validate(item)


def _detail_response(detail: WorkItemDetail, response: Response) -> WorkItemDetailResponse:
    response.headers["ETag"] = format_version_marker(detail.work_item.state_version)
    return WorkItemDetailResponse.from_detail(detail)


@router.post("", response_model=WorkItemSummaryResponse, status_code=status.HTTP_201_CREATED)
async def create_work_item(
    payload: WorkItemCreateRequest,
    service: WorkItemServiceDep,
    response: Response,
) -> WorkItemSummaryResponse:
    try:
        item = await service.create_work_item(WorkItemCreate(**payload.model_dump()))
    except WorkItemValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    response.headers["ETag"] = format_version_marker(item.state_version)
    return _to_summary(item)


@router.get("", response_model=WorkItemPageResponse)
async def list_work_items(
    service: WorkItemServiceDep,
    status_filter: WorkItemStatus | None = Query(default=None, alias="status"),
    assignee_id: str | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1),
    page_size: int = Query(default=20),
) -> WorkItemPageResponse:
    result = await service.list_work_items(
        WorkItemListQuery(
            status=status_filter,
            assignee_id=assignee_id,
            search=search,
            page=page,
            page_size=page_size,
        )
    )
    return WorkItemPageResponse(
        items=[_to_summary(item) for item in result.items],
        page=result.page,
        page_size=result.page_size,
        total_count=result.total_count,
    )


@router.get("/{work_item_id}", response_model=WorkItemDetailResponse)
async def get_work_item(
    work_item_id: str, service: WorkItemServiceDep, response: Response
) -> WorkItemDetailResponse:
    detail = await service.get_work_item_detail(work_item_id)
    if detail is None:
        raise HTTPException(status_code=404, detail=f"Work item {work_item_id} not found")
    return _detail_response(detail, response)


@router.put("/{work_item_id}", response_model=WorkItemDetailResponse)
async def update_work_item(
    work_item_id: str,
    payload: WorkItemUpdateRequest,
    service: WorkItemServiceDep,
    response: Response,
    if_match: Annotated[str | None, Header()] = None,
) -> WorkItemDetailResponse:
    expected_version = parse_version_marker(if_match)
    if expected_version is None:
        raise HTTPException(
            status_code=status.HTTP_428_PRECONDITION_REQUIRED,
            detail="If-Match header carrying the current version is required",
        )
    try:
        detail = await service.update_work_item(
            work_item_id,
            WorkItemUpdate(**payload.model_dump()),
            expected_version=expected_version,
        )
    except WorkItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConcurrencyConflictError as exc:
        raise HTTPException(status_code=status.HTTP_412_PRECONDITION_FAILED, detail=str(exc)) from exc
    except WorkItemValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _detail_response(detail, response)


@router.post("/{work_item_id}/status", response_model=WorkItemDetailResponse)
async def change_work_item_status(
    work_item_id: str,
    payload: WorkItemStatusChangeRequest,
    service: WorkItemServiceDep,
    response: Response,
) -> WorkItemDetailResponse:
    try:
        detail = await service.transition_status(work_item_id, payload.target_status)
    except WorkItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IllegalTransitionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ConcurrencyConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _detail_response(detail, response)


@router.post("/{work_item_id}/assign", response_model=WorkItemDetailResponse)
async def assign_work_item(
    work_item_id: str,
    payload: WorkItemAssignRequest,
    service: WorkItemServiceDep,
    response: Response,
) -> WorkItemDetailResponse:
    try:
        detail = await service.assign_work_item(work_item_id, payload.assignee_id)
    except WorkItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except LockTimeoutError as exc:
        raise HTTPException(status_code=503, detail=str(exc), headers={"Retry-After": "1"}) from exc
    return _detail_response(detail, response)


@router.post(
    "/{work_item_id}/comments",
    response_model=WorkItemCommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_work_item_comment(
    work_item_id: str,
    payload: WorkItemCommentCreateRequest,
    service: WorkItemServiceDep,
) -> WorkItemCommentResponse:
    try:
        comment = await service.add_comment(work_item_id, body=payload.body, author_id=payload.author_id)
    except WorkItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except WorkItemValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ConcurrencyConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return WorkItemCommentResponse.model_validate(comment)


@router.post(
    "/{work_item_id}/attachments",
    response_model=WorkItemAttachmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_work_item_attachment(
    work_item_id: str,
    payload: WorkItemAttachmentCreateRequest,
    service: WorkItemServiceDep,
) -> WorkItemAttachmentResponse:
    try:
        attachment = await service.add_attachment(work_item_id, AttachmentMetadata(**payload.model_dump()))
    except WorkItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except WorkItemValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ConcurrencyConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return WorkItemAttachmentResponse.model_validate(attachment)


@router.delete("/{work_item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_work_item(work_item_id: str, service: WorkItemServiceDep) -> None:
    try:
        await service.delete_work_item(work_item_id)
    except WorkItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
