import os

# Settings are read at import time; point them at sqlite before the app loads.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"

from datetime import datetime
import random

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from exam_engine.models.orm import Base
from exam_engine.services import assignments, composer, question_store
from exam_engine.services.composer import TopicRequest

TENANT = "acme"
OTHER_TENANT = "globex"
ADMIN = "admin-1"
NOW = datetime(2026, 3, 2, 9, 0, 0)


class StaticEmployeeDirectory:
    def __init__(self, ids):
        self.ids = [str(i) for i in ids]
        self.calls = 0

    def lookup_employees_for_company(self):
        self.calls += 1
        return [{"id": i, "name": f"Employee {i}"} for i in self.ids]


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def directory():
    return StaticEmployeeDirectory(["e1", "e2", "e3"])


@pytest.fixture
def seed_topic(db):
    """Create a topic with ``count`` active questions; answers cycle A, B, C, D."""
    def _seed(name, count, tenant=TENANT):
        topic = question_store.create_topic(db, tenant, name, ADMIN)
        ids = []
        for i in range(1, count + 1):
            q = question_store.create_question(
                db, tenant, topic.id, f"{name} question {i}",
                [f"{name} {i} alpha", f"{name} {i} bravo", f"{name} {i} charlie", f"{name} {i} delta"],
                "ABCD"[(i - 1) % 4], ADMIN, "ADMIN",
            )
            ids.append(q.id)
        return topic.id, ids
    return _seed


@pytest.fixture
def make_exam(db, rng):
    def _make(topics, passing=None, duration=30, title="Quarterly safety check", tenant=TENANT):
        exam = composer.compose_exam(
            db, tenant, title, "Annual refresher", duration, passing,
            [TopicRequest(topic_id=t, count=c) for t, c in topics], ADMIN, "ADMIN", rng=rng,
        )
        return exam.id
    return _make


@pytest.fixture
def make_assignment(db):
    def _assign(exam_id, employee="e1", max_attempts=1, start_time=None, end_time=None, tenant=TENANT, now=NOW):
        views = assignments.assign_exam(
            db, tenant, exam_id, [employee], ADMIN, "ADMIN", StaticEmployeeDirectory([employee]),
            start_time=start_time, end_time=end_time, max_attempts=max_attempts, now=now,
        )
        return views[0].id
    return _assign


@pytest.fixture
def answer_key(db):
    """Correct letter per question id, in canonical order."""
    def _key(exam_id, tenant=TENANT):
        eqs = composer.canonical_questions(db, exam_id)
        qs = question_store.questions_by_ids(db, tenant, [eq.question_id for eq in eqs])
        return {eq.question_id: qs[eq.question_id].correct_answer.value for eq in eqs}
    return _key
