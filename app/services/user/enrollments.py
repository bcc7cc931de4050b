from typing import Tuple

from fastapi import Depends, HTTPException
from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.enum import CourseStatus
from app.core.exceptions import (
    BadRequestException,
    ConflictException,
    CourseNotFoundException,
    ForbiddenException,
    InternalServerException,
)
from app.db.models.database import Courses, Enrollments, User
from app.db.session import get_session
from app.libs.formats.datetime import now as get_now


class EnrollmentService:
    def __init__(self, db: AsyncSession = Depends(get_session)):
        self.db = db

    async def get_enrollment(self, user_id: int, course_id: int) -> Enrollments | None:
        return await self.db.scalar(
            select(Enrollments).where(
                Enrollments.user_id == user_id,
                Enrollments.course_id == course_id,
            )
        )

    async def ensure_enrollment(self, user_id: int, course_id: int) -> Tuple[Enrollments, bool]:
        """
        Idempotent enrollment inside the caller's transaction (no commit here).
        Returns (enrollment, created). A concurrent insert of the same
        (user, course) pair is absorbed by the savepoint and the existing row
        is returned instead.
        """
        existing = await self.get_enrollment(user_id, course_id)
        if existing:
            return existing, False

        enrollment = Enrollments(user_id=user_id, course_id=course_id, enrolled_at=get_now())
        try:
            async with self.db.begin_nested():
                self.db.add(enrollment)
        except IntegrityError:
            logger.warning(
                f"[Enroll] Duplicate enrollment user={user_id} course={course_id} absorbed"
            )
            existing = await self.get_enrollment(user_id, course_id)
            if existing is None:
                raise
            return existing, False

        return enrollment, True

    # ==========================================================
    # 🎓 FREE COURSE
    # ==========================================================
    async def enroll_free(self, user: User, course_id: int) -> dict:
        course = await self.db.get(Courses, course_id)
        if not course:
            raise CourseNotFoundException(course_id)
        if course.status != CourseStatus.PUBLISHED.value:
            raise ForbiddenException("This course is not published yet.")
        if course.price and course.price > 0:
            raise BadRequestException(
                "This course is not free. Please purchase it through checkout.",
                errors=[{"field": "course_id", "message": "Paid course"}],
            )
        if await self.get_enrollment(user.id, course_id):
            raise ConflictException("You are already enrolled in this course.")

        try:
            enrollment, created = await self.ensure_enrollment(user.id, course_id)
            await self.db.commit()
        except HTTPException:
            raise
        except Exception as e:
            await self.db.rollback()
            logger.exception(f"[Enroll][Free] {e}")
            raise InternalServerException("Failed to enroll in course.")

        if not created:
            raise ConflictException("You are already enrolled in this course.")

        logger.info(f"[Enroll] User {user.id} enrolled in free course {course_id}")
        return {
            "enrollment_id": enrollment.id,
            "course_id": course.id,
            "course_title": course.title,
            "enrolled_at": enrollment.enrolled_at,
        }

    async def list_my_enrollments(self, user: User) -> list[dict]:
        rows = (
            await self.db.scalars(
                select(Enrollments)
                .where(Enrollments.user_id == user.id)
                .options(selectinload(Enrollments.course))
                .order_by(Enrollments.enrolled_at.desc(), Enrollments.id.desc())
            )
        ).all()
        return [
            {
                "enrollment_id": e.id,
                "enrolled_at": e.enrolled_at,
                "completed_at": e.completed_at,
                "course": {
                    "id": e.course.id,
                    "title": e.course.title,
                    "slug": e.course.slug,
                    "price": e.course.price,
                },
            }
            for e in rows
        ]
