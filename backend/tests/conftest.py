import os, tempfile

# keep the app's module-level create_all away from ./survey.db
_fd, _path = tempfile.mkstemp(suffix=".db")
os.close(_fd)
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_path}")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from db import Base, get_db, enable_sqlite_foreign_keys
from security import verify_admin
from store import SurveyStore
from schemas import Survey, Question, QuestionOption, SurveyResponse, Answer

@pytest.fixture
def test_engine():
    # one in-memory database per test, shared by every session of that test
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()

@pytest.fixture
def TestingSessionLocal(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

@pytest.fixture
def store(TestingSessionLocal):
    db = TestingSessionLocal()
    try:
        yield SurveyStore(db)
    finally:
        db.close()

@pytest.fixture
def client(TestingSessionLocal):
    def _get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[verify_admin] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()

@pytest.fixture
def make_survey():
    """Build an in-memory survey: make_survey("s1", [("q1", "Age?", "scale"), ...])."""
    def _make(survey_id="s1", questions=(("q1", "Name?", "text"),), title="Customer Feedback"):
        qs = []
        for qid, text, qtype in questions:
            kwargs = {}
            if qtype in ("radio", "checkbox"):
                kwargs["options"] = [QuestionOption(id=f"{qid}-o1", label="Red"),
                                     QuestionOption(id=f"{qid}-o2", label="Blue")]
            if qtype == "scale":
                kwargs.update(scale_min=1, scale_max=5)
            qs.append(Question(id=qid, type=qtype, question=text, **kwargs))
        return Survey(
            id=survey_id,
            title=title,
            description="desc",
            creator_name="Ada",
            creator_email="ada@example.org",
            questions=qs,
            created_at="2025-01-01T00:00:00.000Z",
            updated_at="2025-01-01T00:00:00.000Z",
        )
    return _make

@pytest.fixture
def make_response():
    def _make(response_id, survey_id, answers, submitted_at="2025-01-15T10:00:00.000Z"):
        return SurveyResponse(
            id=response_id,
            survey_id=survey_id,
            answers=[Answer(question_id=q, value=v) for q, v in answers],
            submitted_at=submitted_at,
        )
    return _make
