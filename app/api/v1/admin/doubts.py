from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query

from app.api.v1.user.doubts import split_tags
from app.core.deps import AuthorizationService
from app.core.enum import UserRole
from app.core.exceptions import BadRequestException
from app.db.models.database import User
from app.schemas.shares.doubts import AssignInstructorSchema, UpdateDoubtStatusSchema
from app.services.shares.doubts import DoubtService

router = APIRouter(prefix="/admin/doubts", tags=["Admin Doubts"])


async def require_admin(
    authorization: AuthorizationService = Depends(AuthorizationService),
) -> User:
    return await authorization.require_role([UserRole.ADMIN.value])


@router.get("")
async def admin_list_doubts(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    course_id: Optional[int] = None,
    lesson_id: Optional[int] = None,
    user_id: Optional[int] = None,
    status_: Optional[str] = Query(None, alias="status"),
    tags: Optional[List[str]] = Query(None),
    search: Optional[str] = None,
    sort_by: str = Query("newest", description="newest, oldest, last_updated"),
    assigned_instructor_id: Optional[str] = Query(
        None, description="Instructor id, or 'unassigned'"
    ),
    admin: User = Depends(require_admin),
    doubt_service: DoubtService = Depends(DoubtService),
):
    unassigned = assigned_instructor_id == "unassigned"
    instructor_id = None
    if assigned_instructor_id and not unassigned:
        if not assigned_instructor_id.isdigit():
            raise BadRequestException(
                "Invalid instructor filter",
                errors=[
                    {
                        "field": "assigned_instructor_id",
                        "message": "Must be an instructor id or 'unassigned'",
                    }
                ],
            )
        instructor_id = int(assigned_instructor_id)
    return await doubt_service.list_threads(
        page=page,
        limit=limit,
        default_limit=doubt_service.settings.ADMIN_DOUBTS_PER_PAGE,
        course_id=course_id,
        lesson_id=lesson_id,
        user_id=user_id,
        status=status_,
        tags=split_tags(tags),
        search=search,
        sort_by=sort_by,
        assigned_instructor_id=instructor_id,
        unassigned=unassigned,
    )


@router.get("/{doubt_id}")
async def admin_get_doubt(
    doubt_id: int,
    admin: User = Depends(require_admin),
    doubt_service: DoubtService = Depends(DoubtService),
):
    return await doubt_service.get_thread(doubt_id)


@router.put("/{doubt_id}/status")
async def admin_update_doubt_status(
    doubt_id: int,
    schema: UpdateDoubtStatusSchema = Body(...),
    admin: User = Depends(require_admin),
    doubt_service: DoubtService = Depends(DoubtService),
):
    return await doubt_service.update_thread_status(admin, doubt_id, schema.status)


@router.put("/{doubt_id}/assign")
async def admin_assign_instructor(
    doubt_id: int,
    schema: AssignInstructorSchema = Body(...),
    admin: User = Depends(require_admin),
    doubt_service: DoubtService = Depends(DoubtService),
):
    return await doubt_service.assign_instructor(admin, doubt_id, schema.instructor_id)


@router.delete("/{doubt_id}")
async def admin_delete_doubt(
    doubt_id: int,
    admin: User = Depends(require_admin),
    doubt_service: DoubtService = Depends(DoubtService),
):
    return await doubt_service.delete_thread(admin, doubt_id)


@router.delete("/{doubt_id}/messages/{message_id}")
async def admin_delete_doubt_message(
    doubt_id: int,
    message_id: int,
    admin: User = Depends(require_admin),
    doubt_service: DoubtService = Depends(DoubtService),
):
    return await doubt_service.delete_message(admin, doubt_id, message_id)
