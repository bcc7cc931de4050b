import hashlib
import hmac
from datetime import datetime
from decimal import Decimal
from typing import Optional

import bcrypt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from app.core.security import SecurityService
from app.core.settings import Settings
from app.db.models.database import (
    Courses,
    DoubtMessages,
    Doubts,
    DoubtTags,
    Enrollments,
    Lessons,
    Orders,
    User,
)
from app.db.session import Database
from app.libs.formats.datetime import now as get_now
from app.main import create_app
from app.services.shares.payment_gateway import PaymentGatewayError, get_payment_gateway

KEY_ID = "rzp_test_key"
KEY_SECRET = "key_secret_for_tests"
WEBHOOK_SECRET = "webhook_secret_for_tests"
PASSWORD = "secret123"
_PASSWORD_HASH = bcrypt.hashpw(PASSWORD.encode(), bcrypt.gensalt(rounds=4)).decode()


def payment_proof(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return hmac.new(
        secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256
    ).hexdigest()


def webhook_signature(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class FakeGateway:
    """Stands in for PaymentGatewayService behind the dependency override."""

    name = "razorpay"

    def __init__(self):
        self.calls: list[dict] = []
        self.fail = False

    async def create_order(self, *, amount_minor, currency, receipt, notes=None):
        if self.fail:
            raise PaymentGatewayError("gateway down")
        self.calls.append(
            {"amount": amount_minor, "currency": currency, "receipt": receipt, "notes": notes}
        )
        return {
            "id": f"order_test_{len(self.calls)}",
            "amount": amount_minor,
            "currency": currency,
            "status": "created",
        }


class Seeder:
    """Creates and inspects rows on the app's own event loop."""

    def __init__(self, client: TestClient):
        self.client = client
        self.db: Database = client.app.state.db
        self.security = SecurityService(client.app.state.settings)

    def run(self, fn, *args):
        return self.client.portal.call(fn, *args)

    def _add(self, obj):
        async def _go():
            async with self.db.session() as s:
                s.add(obj)
                await s.commit()
                return obj

        return self.run(_go)

    def _scalar(self, stmt):
        async def _go():
            async with self.db.session() as s:
                return await s.scalar(stmt)

        return self.run(_go)

    def _scalars(self, stmt):
        async def _go():
            async with self.db.session() as s:
                return (await s.scalars(stmt)).all()

        return self.run(_go)

    # ---------- rows ----------
    def user(self, name: str, role: str = "STUDENT", status: str = "ACTIVE") -> User:
        return self._add(
            User(
                name=name,
                email=f"{name.lower()}@example.com",
                password=_PASSWORD_HASH,
                role=role,
                status=status,
            )
        )

    def course(
        self, title: str = "Python 101", price: str | int = 0, status: str = "PUBLISHED"
    ) -> Courses:
        slug = title.lower().replace(" ", "-")
        return self._add(Courses(title=title, slug=slug, price=Decimal(str(price)), status=status))

    def lesson(self, course: Courses, title: str = "Intro") -> Lessons:
        return self._add(Lessons(course_id=course.id, title=title, slug=title.lower()))

    def thread(
        self,
        asker: User,
        title: str = "How do decorators work?",
        description: str = "I don't get how the wrapper sees the arguments.",
        status: str = "OPEN",
        assigned: Optional[User] = None,
        course: Optional[Courses] = None,
        tags: tuple[str, ...] = (),
        created_at: Optional[datetime] = None,
    ) -> Doubts:
        ts = created_at or get_now()
        return self._add(
            Doubts(
                title=title,
                description=description,
                status=status,
                user_id=asker.id,
                assigned_instructor_id=assigned.id if assigned else None,
                course_id=course.id if course else None,
                created_at=ts,
                updated_at=ts,
                tags=[DoubtTags(tag=t) for t in tags],
            )
        )

    def order(
        self,
        user: User,
        course: Courses,
        gateway_order_id: str,
        status: str = "PENDING",
        created_at: Optional[datetime] = None,
    ) -> Orders:
        ts = created_at or get_now()
        return self._add(
            Orders(
                user_id=user.id,
                course_id=course.id,
                amount=course.price,
                currency="INR",
                status=status,
                gateway_order_id=gateway_order_id,
                payment_gateway="razorpay",
                created_at=ts,
                updated_at=ts,
            )
        )

    def enroll(self, user: User, course: Courses) -> Enrollments:
        return self._add(Enrollments(user_id=user.id, course_id=course.id))

    # ---------- auth ----------
    def token(self, user: User) -> str:
        return self.run(self.security.create_access_token, str(user.id))

    def headers(self, user: User) -> dict:
        return {"Authorization": f"Bearer {self.token(user)}"}

    # ---------- reads ----------
    def thread_status(self, thread_id: int) -> str:
        return self._scalar(select(Doubts.status).where(Doubts.id == thread_id))

    def message_count(self, thread_id: int) -> int:
        return self._scalar(
            select(func.count(DoubtMessages.id)).where(DoubtMessages.doubt_id == thread_id)
        )

    def order_status(self, gateway_order_id: str) -> str:
        return self._scalar(
            select(Orders.status).where(Orders.gateway_order_id == gateway_order_id)
        )

    def orders_of(self, user: User) -> list[Orders]:
        return self._scalars(select(Orders).where(Orders.user_id == user.id).order_by(Orders.id))

    def enrollment_count(self, user: User, course: Courses) -> int:
        return self._scalar(
            select(func.count(Enrollments.id)).where(
                Enrollments.user_id == user.id, Enrollments.course_id == course.id
            )
        )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_ASYNC_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        DB_AUTO_CREATE=True,
        SCHEDULER_ENABLED=False,
        SECRET_KEY="test-secret-key-with-enough-length-for-hs256",
        PAYMENT_KEY_ID=KEY_ID,
        PAYMENT_KEY_SECRET=KEY_SECRET,
        PAYMENT_WEBHOOK_SECRET=WEBHOOK_SECRET,
        DOUBT_MESSAGE_MAX_LENGTH=5000,
        BCRYPT_ROUNDS=4,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def app(settings, gateway):
    app = create_app(settings)
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def seed(client) -> Seeder:
    return Seeder(client)


@pytest.fixture
def people(seed):
    """The usual cast: a student asker, a bystander, two instructors and an admin."""
    return {
        "alice": seed.user("Alice"),
        "mallory": seed.user("Mallory"),
        "bob": seed.user("Bob", role="INSTRUCTOR"),
        "carol": seed.user("Carol", role="INSTRUCTOR"),
        "admin": seed.user("Root", role="ADMIN"),
    }
