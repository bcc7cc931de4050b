import math
from typing import Any, List, Optional

from fastapi import Depends, HTTPException
from loguru import logger
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.deps import get_settings, get_ws_manager
from app.core.enum import DoubtSortBy, DoubtStatus, SocketEvent, UserRole
from app.core.exceptions import (
    BadRequestException,
    CourseNotFoundException,
    DoubtNotFoundException,
    ForbiddenException,
    InternalServerException,
    NotFoundException,
)
from app.core.settings import Settings
from app.core.ws_manager import WSConnectionManager, doubt_room
from app.db.models.database import (
    Courses,
    DoubtMessages,
    Doubts,
    DoubtTags,
    Lessons,
    User,
)
from app.db.session import get_session
from app.libs.formats.datetime import now as get_now
from app.schemas.auth.user import PublicUser
from app.schemas.shares.doubts import CreateDoubtSchema
from app.services.shares import doubt_rules


def public_user(user: User | None) -> dict | None:
    """Public identity of a user. Credentials never leave the service."""
    if user is None:
        return None
    return PublicUser.model_validate(user).model_dump()


class DoubtService:
    """Doubt threads: lifecycle, gated posting and room fan-out.

    REST routes and the socket handler both call into this class, so a rule
    lives in exactly one place.
    """

    def __init__(
        self,
        db: AsyncSession = Depends(get_session),
        ws_manager: WSConnectionManager = Depends(get_ws_manager),
        settings: Settings = Depends(get_settings),
    ):
        self.db = db
        self.ws_manager = ws_manager
        self.settings = settings

    # ==========================================================
    # 🔧 HELPERS
    # ==========================================================
    @staticmethod
    def _thread_options():
        return (
            selectinload(Doubts.user),
            selectinload(Doubts.assigned_instructor),
            selectinload(Doubts.course),
            selectinload(Doubts.lesson),
            selectinload(Doubts.tags),
        )

    async def _load_thread(self, thread_id: int) -> Doubts:
        thread = await self.db.scalar(
            select(Doubts)
            .where(Doubts.id == thread_id)
            .options(*self._thread_options())
            .execution_options(populate_existing=True)
        )
        if not thread:
            raise DoubtNotFoundException(thread_id)
        return thread

    async def _get_thread_row(self, thread_id: int) -> Doubts:
        thread = await self.db.get(Doubts, thread_id)
        if not thread:
            raise DoubtNotFoundException(thread_id)
        return thread

    async def _count_messages(self, thread_id: int) -> int:
        return (
            await self.db.scalar(
                select(func.count(DoubtMessages.id)).where(
                    DoubtMessages.doubt_id == thread_id
                )
            )
            or 0
        )

    @staticmethod
    def _format_thread(thread: Doubts, message_count: int) -> dict:
        return {
            "id": thread.id,
            "title": thread.title,
            "description": thread.description,
            "status": thread.status,
            "tags": sorted(t.tag for t in thread.tags),
            "user": public_user(thread.user),
            "assigned_instructor": public_user(thread.assigned_instructor),
            "course": (
                {
                    "id": thread.course.id,
                    "title": thread.course.title,
                    "slug": thread.course.slug,
                }
                if thread.course
                else None
            ),
            "lesson": (
                {"id": thread.lesson.id, "title": thread.lesson.title}
                if thread.lesson
                else None
            ),
            "message_count": message_count,
            "created_at": thread.created_at,
            "updated_at": thread.updated_at,
        }

    @staticmethod
    def _format_message(message: DoubtMessages, sender: User) -> dict:
        return {
            "id": message.id,
            "doubt_id": message.doubt_id,
            "content": message.content,
            "sent_at": message.sent_at,
            "user": public_user(sender),
        }

    async def _broadcast(self, thread_id: int, event: SocketEvent, data: Any):
        if self.ws_manager is None:
            return
        try:
            await self.ws_manager.broadcast(doubt_room(thread_id), event.value, data)
        except Exception as e:
            # the write is already committed, a failed push must not undo it
            logger.warning(f"[Doubt][Fanout] {event.value} to thread {thread_id} failed: {e}")

    async def _fail(self, action: str, e: Exception):
        await self.db.rollback()
        logger.exception(f"[Doubt][{action}] {e}")
        raise InternalServerException(f"Failed to {action.lower()} doubt.")

    # ==========================================================
    # ✏️ CREATE
    # ==========================================================
    async def create_thread(self, asker: User, data: CreateDoubtSchema) -> dict:
        try:
            course_id = data.course_id
            if course_id is not None:
                course = await self.db.get(Courses, course_id)
                if not course:
                    raise CourseNotFoundException(course_id)

            if data.lesson_id is not None:
                lesson = await self.db.get(Lessons, data.lesson_id)
                if not lesson:
                    raise NotFoundException(f"Lesson with id {data.lesson_id} not found")
                if course_id is None:
                    course_id = lesson.course_id
                elif lesson.course_id != course_id:
                    raise BadRequestException(
                        "Lesson does not belong to the given course",
                        errors=[
                            {
                                "field": "lesson_id",
                                "message": f"Lesson {lesson.id} is not part of course {course_id}",
                            }
                        ],
                    )

            now = get_now()
            thread = Doubts(
                title=data.title,
                description=data.description,
                status=DoubtStatus.OPEN.value,
                user_id=asker.id,
                course_id=course_id,
                lesson_id=data.lesson_id,
                created_at=now,
                updated_at=now,
                tags=[DoubtTags(tag=tag) for tag in data.tags],
            )
            self.db.add(thread)
            await self.db.commit()

            logger.info(f"[Doubt] User {asker.id} opened doubt {thread.id}")
            thread = await self._load_thread(thread.id)
            return self._format_thread(thread, 0)

        except HTTPException:
            raise
        except Exception as e:
            await self._fail("Create", e)

    # ==========================================================
    # 📋 LIST / DETAIL
    # ==========================================================
    async def list_threads(
        self,
        *,
        page: int = 1,
        limit: Optional[int] = None,
        course_id: Optional[int] = None,
        lesson_id: Optional[int] = None,
        user_id: Optional[int] = None,
        status: Optional[str] = None,
        tags: Optional[List[str]] = None,
        search: Optional[str] = None,
        sort_by: str = DoubtSortBy.NEWEST.value,
        assigned_instructor_id: Optional[int] = None,
        unassigned: bool = False,
        default_limit: Optional[int] = None,
    ) -> dict:
        limit = limit or default_limit or self.settings.DOUBTS_PER_PAGE
        if page < 1:
            raise BadRequestException(
                "Invalid pagination", errors=[{"field": "page", "message": "page must be >= 1"}]
            )
        if not 1 <= limit <= 100:
            raise BadRequestException(
                "Invalid pagination",
                errors=[{"field": "limit", "message": "limit must be between 1 and 100"}],
            )
        try:
            sort = DoubtSortBy(sort_by)
        except ValueError:
            raise BadRequestException(
                "Invalid sort",
                errors=[
                    {
                        "field": "sort_by",
                        "message": "sort_by must be one of newest, oldest, last_updated",
                    }
                ],
            )

        conditions = []
        if course_id is not None:
            conditions.append(Doubts.course_id == course_id)
        if lesson_id is not None:
            conditions.append(Doubts.lesson_id == lesson_id)
        if user_id is not None:
            conditions.append(Doubts.user_id == user_id)
        if status:
            try:
                conditions.append(Doubts.status == doubt_rules.parse_status(status).value)
            except ValueError as e:
                raise BadRequestException(
                    "Invalid status filter", errors=[{"field": "status", "message": str(e)}]
                )
        if tags:
            wanted = [t.strip() for t in tags if t and t.strip()]
            if wanted:
                conditions.append(
                    Doubts.id.in_(
                        select(DoubtTags.doubt_id).where(DoubtTags.tag.in_(wanted))
                    )
                )
        if search:
            keyword = search.strip().lower()
            conditions.append(
                or_(
                    func.lower(Doubts.title).contains(keyword, autoescape=True),
                    func.lower(Doubts.description).contains(keyword, autoescape=True),
                )
            )
        if unassigned:
            conditions.append(Doubts.assigned_instructor_id.is_(None))
        elif assigned_instructor_id is not None:
            conditions.append(Doubts.assigned_instructor_id == assigned_instructor_id)

        order_by = {
            DoubtSortBy.NEWEST: (Doubts.created_at.desc(), Doubts.id.desc()),
            DoubtSortBy.OLDEST: (Doubts.created_at.asc(), Doubts.id.asc()),
            DoubtSortBy.LAST_UPDATED: (Doubts.updated_at.desc(), Doubts.id.desc()),
        }[sort]

        try:
            total = (
                await self.db.scalar(select(func.count(Doubts.id)).where(*conditions))
                or 0
            )

            msg_count = (
                select(
                    DoubtMessages.doubt_id.label("doubt_id"),
                    func.count(DoubtMessages.id).label("cnt"),
                )
                .group_by(DoubtMessages.doubt_id)
                .subquery()
            )
            stmt = (
                select(Doubts, func.coalesce(msg_count.c.cnt, 0))
                .outerjoin(msg_count, msg_count.c.doubt_id == Doubts.id)
                .where(*conditions)
                .options(*self._thread_options())
                .order_by(*order_by)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            rows = (await self.db.execute(stmt)).all()

            return {
                "doubts": [self._format_thread(d, int(cnt)) for d, cnt in rows],
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            }
        except HTTPException:
            raise
        except Exception as e:
            await self._fail("List", e)

    async def get_thread(self, thread_id: int) -> dict:
        thread = await self._load_thread(thread_id)
        messages = (
            await self.db.scalars(
                select(DoubtMessages)
                .where(DoubtMessages.doubt_id == thread_id)
                .options(selectinload(DoubtMessages.user))
                .order_by(DoubtMessages.sent_at.asc(), DoubtMessages.id.asc())
            )
        ).all()

        result = self._format_thread(thread, len(messages))
        result["messages"] = [self._format_message(m, m.user) for m in messages]
        return result

    # ==========================================================
    # 💬 POST MESSAGE (REST + socket)
    # ==========================================================
    async def post_message(self, actor: User, thread_id: int, content: str) -> dict:
        thread = await self._get_thread_row(thread_id)

        if not doubt_rules.can_post(actor, thread):
            raise ForbiddenException(
                "You are not allowed to post in this doubt. "
                "Only the asker, the assigned instructor or an admin can reply."
            )

        content = (content or "").strip() if isinstance(content, str) else ""
        max_length = self.settings.DOUBT_MESSAGE_MAX_LENGTH
        if not content:
            raise BadRequestException(
                "Message content is required",
                errors=[{"field": "content", "message": "Content must not be empty"}],
            )
        if len(content) > max_length:
            raise BadRequestException(
                "Message is too long",
                errors=[
                    {
                        "field": "content",
                        "message": f"Content must be at most {max_length} characters",
                    }
                ],
            )

        try:
            message = DoubtMessages(
                doubt_id=thread.id,
                user_id=actor.id,
                content=content,
                sent_at=get_now(),
            )
            self.db.add(message)
            reopened = doubt_rules.reopen_on_reply(actor, thread)
            # message + status flip land in one commit
            await self.db.commit()
        except Exception as e:
            await self._fail("Post", e)

        if reopened:
            logger.info(f"[Doubt] Doubt {thread.id} reopened by reply from user {actor.id}")

        payload = self._format_message(message, actor)
        await self._broadcast(thread.id, SocketEvent.RECEIVE_MESSAGE, payload)
        if reopened:
            await self._broadcast(
                thread.id,
                SocketEvent.STATUS_UPDATED,
                {"threadId": thread.id, "status": DoubtStatus.OPEN.value},
            )
        return payload

    # ==========================================================
    # 🔁 STATUS / ASSIGNMENT
    # ==========================================================
    async def update_thread_status(self, actor: User, thread_id: int, new_status: str) -> dict:
        try:
            thread = await self._get_thread_row(thread_id)
            if not doubt_rules.can_manage_status(actor, thread):
                raise ForbiddenException(
                    "Only an admin or the assigned instructor can change this doubt's status."
                )
            try:
                doubt_rules.transition_status(thread, new_status)
            except ValueError as e:
                raise BadRequestException(
                    "Invalid status", errors=[{"field": "status", "message": str(e)}]
                )
            await self.db.commit()

            logger.info(f"[Doubt] Doubt {thread_id} status → {thread.status} by user {actor.id}")
            thread = await self._load_thread(thread_id)
            return self._format_thread(thread, await self._count_messages(thread_id))

        except HTTPException:
            raise
        except Exception as e:
            await self._fail("Update", e)

    async def assign_instructor(
        self, actor: User, thread_id: int, instructor_id: Optional[int]
    ) -> dict:
        if not doubt_rules.is_admin(actor):
            raise ForbiddenException("Only admins can assign instructors to doubts.")
        try:
            thread = await self._get_thread_row(thread_id)

            if instructor_id is not None:
                instructor = await self.db.scalar(
                    select(User).where(
                        User.id == instructor_id,
                        User.role == UserRole.INSTRUCTOR.value,
                    )
                )
                if not instructor:
                    raise NotFoundException(f"Instructor with id {instructor_id} not found")

            thread.assigned_instructor_id = instructor_id
            thread.updated_at = get_now()
            await self.db.commit()

            logger.info(
                f"[Doubt] Doubt {thread_id} "
                + (f"assigned to instructor {instructor_id}" if instructor_id else "unassigned")
            )
            thread = await self._load_thread(thread_id)
            return self._format_thread(thread, await self._count_messages(thread_id))

        except HTTPException:
            raise
        except Exception as e:
            await self._fail("Assign", e)

    # ==========================================================
    # 🗑 DELETE (admin)
    # ==========================================================
    async def delete_thread(self, actor: User, thread_id: int) -> dict:
        if not doubt_rules.is_admin(actor):
            raise ForbiddenException("Only admins can delete doubts.")
        try:
            await self._get_thread_row(thread_id)
            await self.db.execute(delete(DoubtMessages).where(DoubtMessages.doubt_id == thread_id))
            await self.db.execute(delete(DoubtTags).where(DoubtTags.doubt_id == thread_id))
            await self.db.execute(delete(Doubts).where(Doubts.id == thread_id))
            await self.db.commit()
        except HTTPException:
            raise
        except Exception as e:
            await self._fail("Delete", e)

        logger.info(f"[Doubt] Doubt {thread_id} deleted by admin {actor.id}")
        await self._broadcast(thread_id, SocketEvent.THREAD_DELETED, {"threadId": thread_id})
        return {"message": "Doubt deleted successfully", "id": thread_id}

    async def delete_message(self, actor: User, thread_id: int, message_id: int) -> dict:
        if not doubt_rules.is_admin(actor):
            raise ForbiddenException("Only admins can delete doubt messages.")
        try:
            await self._get_thread_row(thread_id)
            message = await self.db.scalar(
                select(DoubtMessages).where(
                    DoubtMessages.id == message_id,
                    DoubtMessages.doubt_id == thread_id,
                )
            )
            if not message:
                raise NotFoundException(
                    f"Message with id {message_id} not found in doubt {thread_id}"
                )
            await self.db.delete(message)
            await self.db.commit()
        except HTTPException:
            raise
        except Exception as e:
            await self._fail("Delete", e)

        logger.info(f"[Doubt] Message {message_id} of doubt {thread_id} deleted by admin {actor.id}")
        await self._broadcast(
            thread_id,
            SocketEvent.MESSAGE_DELETED,
            {"threadId": thread_id, "messageId": message_id},
        )
        return {"message": "Message deleted successfully", "id": message_id}
