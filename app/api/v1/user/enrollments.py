from fastapi import APIRouter, Depends, status

from app.core.deps import AuthorizationService
from app.db.models.database import User
from app.services.user.enrollments import EnrollmentService

router = APIRouter(prefix="/enrollments", tags=["User Enrollments"])


@router.post("/course/{course_id}", status_code=status.HTTP_201_CREATED)
async def enroll_free_course(
    course_id: int,
    authorization: AuthorizationService = Depends(AuthorizationService),
    enrollment_service: EnrollmentService = Depends(EnrollmentService),
):
    user: User = await authorization.get_current_user()
    return await enrollment_service.enroll_free(user, course_id)


@router.get("/my")
async def my_enrollments(
    authorization: AuthorizationService = Depends(AuthorizationService),
    enrollment_service: EnrollmentService = Depends(EnrollmentService),
):
    user: User = await authorization.get_current_user()
    return await enrollment_service.list_my_enrollments(user)
