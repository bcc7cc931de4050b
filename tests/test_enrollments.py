import pytest

from app.core.settings import Settings
from app.db.models.database import Courses, Enrollments, User
from app.db.session import Database
from app.services.user.enrollments import EnrollmentService

API = "/api/v1/enrollments"


class TestFreeEnrollment:
    def test_enroll_free_course(self, client, seed, people):
        course = seed.course("Intro to Git", price=0)
        headers = seed.headers(people["alice"])

        resp = client.post(f"{API}/course/{course.id}", headers=headers)
        assert resp.status_code == 201, resp.text
        assert resp.json()["course_title"] == "Intro to Git"

        again = client.post(f"{API}/course/{course.id}", headers=headers)
        assert again.status_code == 409
        assert seed.enrollment_count(people["alice"], course) == 1

        mine = client.get(f"{API}/my", headers=headers).json()
        assert [e["course"]["id"] for e in mine] == [course.id]

    def test_paid_course_needs_checkout(self, client, seed, people):
        course = seed.course("Paid", price=199)
        resp = client.post(f"{API}/course/{course.id}", headers=seed.headers(people["alice"]))
        assert resp.status_code == 400
        assert seed.enrollment_count(people["alice"], course) == 0

    def test_unpublished_and_missing(self, client, seed, people):
        draft = seed.course("Draft", price=0, status="DRAFT")
        headers = seed.headers(people["alice"])
        assert client.post(f"{API}/course/{draft.id}", headers=headers).status_code == 403
        assert client.post(f"{API}/course/9999", headers=headers).status_code == 404

    def test_my_enrollments_newest_first(self, client, seed, people):
        first = seed.course("First", price=0)
        second = seed.course("Second", price=0)
        headers = seed.headers(people["alice"])
        client.post(f"{API}/course/{first.id}", headers=headers)
        client.post(f"{API}/course/{second.id}", headers=headers)

        mine = client.get(f"{API}/my", headers=headers).json()
        assert [e["course"]["title"] for e in mine] == ["Second", "First"]


# ==========================================================
# idempotent primitive, service level
# ==========================================================
@pytest.fixture
async def database(tmp_path):
    settings = Settings(DATABASE_ASYNC_URL=f"sqlite+aiosqlite:///{tmp_path / 'enroll.db'}")
    db = Database(settings.DATABASE_ASYNC_URL)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def user_and_course(database):
    async with database.session() as s:
        user = User(name="Ivy", email="ivy@example.com", password="x")
        course = Courses(title="Rust", slug="rust", price=0, status="PUBLISHED")
        s.add_all([user, course])
        await s.commit()
        return user.id, course.id


async def test_ensure_enrollment_creates_once(database, user_and_course):
    user_id, course_id = user_and_course
    async with database.session() as s:
        service = EnrollmentService(s)
        first, created = await service.ensure_enrollment(user_id, course_id)
        await s.commit()
        second, created_again = await service.ensure_enrollment(user_id, course_id)

    assert created is True
    assert created_again is False
    assert first.id == second.id


async def test_ensure_enrollment_absorbs_unique_violation(database, user_and_course, monkeypatch):
    user_id, course_id = user_and_course
    async with database.session() as s:
        s.add(Enrollments(user_id=user_id, course_id=course_id))
        await s.commit()

    async with database.session() as s:
        service = EnrollmentService(s)
        real_lookup = service.get_enrollment
        calls = {"n": 0}

        async def stale_precheck(uid, cid):
            # first lookup misses, like a concurrent insert landing after the pre-check
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await real_lookup(uid, cid)

        monkeypatch.setattr(service, "get_enrollment", stale_precheck)

        enrollment, created = await service.ensure_enrollment(user_id, course_id)
        await s.commit()

    assert created is False
    assert enrollment.user_id == user_id
    assert calls["n"] == 2
