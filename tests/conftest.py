import os
from datetime import date, datetime, timedelta

os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("DB_PATH", ":memory:")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel, Session, create_engine  # noqa: E402

from dreamdiary import model  # noqa: E402,F401  (registers tables)
from dreamdiary.main import app, get_session  # noqa: E402
from dreamdiary.model import Diary, Dream, DreamKeyword, UserProfile  # noqa: E402


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def client(engine):
    def override():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user(session):
    profile = UserProfile(nickname="tester", birth_date=date(1990, 6, 15))
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile


def stamp(day: date, hours: int = 9) -> datetime:
    return datetime.combine(day, datetime.min.time()) + timedelta(hours=hours)


def add_diary(session, user_id, day, content="diary", summary=None, emotion_tags=None, created_at=None):
    diary = Diary(
        user_id=user_id,
        date=day,
        content=content,
        summary=summary,
        emotion_tags=emotion_tags,
        created_at=created_at or stamp(day),
    )
    session.add(diary)
    session.commit()
    session.refresh(diary)
    return diary


def add_dream(session, user_id, day, content="dream", keywords=(), created_at=None, fortune_result=None):
    dream = Dream(
        user_id=user_id,
        date=day,
        content=content,
        fortune_result=fortune_result,
        created_at=created_at or stamp(day, 7),
    )
    session.add(dream)
    session.commit()
    session.refresh(dream)
    for k in keywords:
        session.add(DreamKeyword(dream_id=dream.id, user_id=user_id, keyword=k))
    session.commit()
    session.refresh(dream)
    return dream
