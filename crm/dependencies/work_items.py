from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from crm.work_items.service import WorkItemService


async def get_work_item_service(request: Request) -> WorkItemService:
    service = getattr(request.app.state, "work_item_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Work item service is not configured")
    return service


WorkItemServiceDep = Annotated[WorkItemService, Depends(get_work_item_service)]
