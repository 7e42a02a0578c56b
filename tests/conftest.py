"""
Shared fixtures.

The app runs against an in-memory SQLite database and no real AI provider;
tests that need one install a FakeProvider through the dependency override.
Zero network calls.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GEMINI_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""

import json
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from backend.academy.ai_client import AIAnalysisClient
from backend.academy.db import Base, engine, init_db, make_engine
from backend.academy.deps import get_ai_client
from backend.academy.grading import normalize_questions, total_points
from backend.academy.main import app
from backend.academy.models import Exam, ExamAttempt, Student, dump_json


AI_RESPONSE = {
    "propensityType": "도전적 성장형",
    "propensityDescription": "강점과 약점이 뚜렷한 학생입니다.",
    "overallSummary": "전반적으로 독서 영역이 우수합니다.",
    "domainAnalyses": {"독서": "독서 영역은 매우 안정적입니다."},
    "strengthAnalyses": {"독서": "독서 지문 이해력이 뛰어납니다."},
    "weaknessAnalyses": {},
    "learningStrategy": [
        {"stage": "1단계", "duration": "4주", "strategy": "문학 집중", "details": "매일 문학 지문 2개", "expectedResult": "정답률 +10%"},
    ],
}

QUESTIONS = [
    {"questionNumber": 1, "domain": "독서", "difficulty": "하", "correctAnswer": 1, "score": 2},
    {"questionNumber": 2, "domain": "독서", "difficulty": "중", "correctAnswer": 2, "score": 2},
    {"questionNumber": 3, "domain": "독서", "difficulty": "중", "correctAnswer": 3, "score": 2},
    {"questionNumber": 4, "domain": "문학", "difficulty": "상", "correctAnswer": 4, "score": 3},
    {"questionNumber": 5, "domain": "문학", "difficulty": "상", "correctAnswer": 5, "score": 3},
]
# 독서 3/3 (strength), 문학 0/2 (weakness)
ANSWERS = {"1": 1, "2": 2, "3": 3, "4": 1, "5": 1}


class FakeProvider:
    """Stands in for a remote provider; replays ``responses`` (str or exception) in order."""

    def __init__(self, responses, name="gemini"):
        self.name = name
        self.responses = list(responses)
        self.prompts = []
        self.closed = False

    @property
    def calls(self):
        return len(self.prompts)

    async def complete(self, prompt):
        self.prompts.append(prompt)
        item = self.responses[min(len(self.prompts), len(self.responses)) - 1]
        if isinstance(item, BaseException):
            raise item
        return item

    async def aclose(self):
        self.closed = True


async def no_sleep(_seconds):
    return None


def make_ai_client(*providers, max_attempts=3):
    return AIAnalysisClient(list(providers), max_attempts=max_attempts, sleep=no_sleep)


@pytest.fixture(autouse=True)
def _fresh_schema():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def use_ai():
    def _install(ai_client):
        app.dependency_overrides[get_ai_client] = lambda: ai_client
        return ai_client

    return _install


@pytest.fixture
def session_factory(tmp_path):
    """File-backed database so two sessions really use separate connections."""
    file_engine = make_engine(f"sqlite:///{tmp_path / 'pipeline.db'}")
    init_db(bind=file_engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine, future=True)
    yield factory
    file_engine.dispose()


@pytest.fixture
def seeded(session_factory):
    """A student, an exam and a submitted attempt. Returns the ids."""
    db = session_factory()
    questions = normalize_questions(QUESTIONS)
    student = Student(name="김민지", school="한빛고", grade="고2")
    exam = Exam(
        title="3월 모의고사",
        subject="국어",
        grade="고2",
        total_questions=len(questions),
        total_score=total_points(questions),
        questions_json=dump_json([q.model_dump() for q in questions]),
    )
    db.add_all([student, exam])
    db.flush()
    attempt = ExamAttempt(
        exam_id=exam.id,
        student_id=student.id,
        answers_json=json.dumps(ANSWERS),
        submitted_at=datetime.utcnow(),
    )
    db.add(attempt)
    db.commit()
    ids = {"student_id": student.id, "exam_id": exam.id, "attempt_id": attempt.id}
    db.close()
    return ids
