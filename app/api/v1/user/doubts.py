from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from app.core.deps import AuthorizationService
from app.core.enum import UserRole
from app.db.models.database import User
from app.schemas.shares.doubts import (
    AssignInstructorSchema,
    CreateDoubtSchema,
    PostDoubtMessageSchema,
    UpdateDoubtStatusSchema,
)
from app.services.shares.doubts import DoubtService

router = APIRouter(prefix="/doubts", tags=["Doubts"])


def split_tags(tags: Optional[List[str]]) -> List[str]:
    """?tags=a&tags=b and ?tags=a,b both work."""
    if not tags:
        return []
    return [t.strip() for raw in tags for t in raw.split(",") if t.strip()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_doubt(
    schema: CreateDoubtSchema = Body(...),
    authorization: AuthorizationService = Depends(AuthorizationService),
    doubt_service: DoubtService = Depends(DoubtService),
):
    user: User = await authorization.get_current_user()
    return await doubt_service.create_thread(user, schema)


@router.get("")
async def list_doubts(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    course_id: Optional[int] = None,
    lesson_id: Optional[int] = None,
    user_id: Optional[int] = Query(None, description="Asker id"),
    status_: Optional[str] = Query(None, alias="status", description="OPEN, RESOLVED, CLOSED"),
    tags: Optional[List[str]] = Query(None, description="Any of these tags"),
    search: Optional[str] = None,
    sort_by: str = Query("newest", description="newest, oldest, last_updated"),
    authorization: AuthorizationService = Depends(AuthorizationService),
    doubt_service: DoubtService = Depends(DoubtService),
):
    await authorization.get_current_user()
    return await doubt_service.list_threads(
        page=page,
        limit=limit,
        course_id=course_id,
        lesson_id=lesson_id,
        user_id=user_id,
        status=status_,
        tags=split_tags(tags),
        search=search,
        sort_by=sort_by,
    )


@router.get("/{doubt_id}")
async def get_doubt(
    doubt_id: int,
    authorization: AuthorizationService = Depends(AuthorizationService),
    doubt_service: DoubtService = Depends(DoubtService),
):
    await authorization.get_current_user()
    return await doubt_service.get_thread(doubt_id)


@router.post("/{doubt_id}/messages", status_code=status.HTTP_201_CREATED)
async def post_doubt_message(
    doubt_id: int,
    schema: PostDoubtMessageSchema = Body(...),
    authorization: AuthorizationService = Depends(AuthorizationService),
    doubt_service: DoubtService = Depends(DoubtService),
):
    user: User = await authorization.get_current_user()
    return await doubt_service.post_message(user, doubt_id, schema.content)


@router.put("/{doubt_id}/status")
async def update_doubt_status(
    doubt_id: int,
    schema: UpdateDoubtStatusSchema = Body(...),
    authorization: AuthorizationService = Depends(AuthorizationService),
    doubt_service: DoubtService = Depends(DoubtService),
):
    user: User = await authorization.require_role(
        [UserRole.INSTRUCTOR.value, UserRole.ADMIN.value]
    )
    return await doubt_service.update_thread_status(user, doubt_id, schema.status)


@router.put("/{doubt_id}/assign")
async def assign_doubt_instructor(
    doubt_id: int,
    schema: AssignInstructorSchema = Body(...),
    authorization: AuthorizationService = Depends(AuthorizationService),
    doubt_service: DoubtService = Depends(DoubtService),
):
    user: User = await authorization.require_role([UserRole.ADMIN.value])
    return await doubt_service.assign_instructor(user, doubt_id, schema.instructor_id)
