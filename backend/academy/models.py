from __future__ import annotations
import json
import uuid
from datetime import datetime
from typing import Any
from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey
from .db import Base


def _new_id() -> str:
	return uuid.uuid4().hex


def dump_json(value: Any) -> str:
	return json.dumps(value, ensure_ascii=False)


def load_json(raw: str | None, default: Any = None) -> Any:
	if not raw:
		return default
	return json.loads(raw)


class Student(Base):
	__tablename__ = "students"
	id = Column(String(64), primary_key=True, default=_new_id)
	name = Column(String(128), nullable=False)
	school = Column(String(128), nullable=True)
	grade = Column(String(32), nullable=True)  # e.g. "고2"
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	def to_dict(self) -> dict:
		return {"id": self.id, "name": self.name, "school": self.school, "grade": self.grade}


class Exam(Base):
	__tablename__ = "exams"
	id = Column(String(64), primary_key=True, default=_new_id)
	title = Column(Text, nullable=False)
	subject = Column(String(64), nullable=False)
	grade = Column(String(32), nullable=True)
	description = Column(Text, nullable=True)
	total_questions = Column(Integer, nullable=False)
	total_score = Column(Integer, nullable=False)
	questions_json = Column(Text, nullable=False)  # JSON list of question descriptors
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	@property
	def questions_data(self) -> list:
		return load_json(self.questions_json, [])

	def to_dict(self, *, include_questions: bool = True) -> dict:
		data = {
			"id": self.id,
			"title": self.title,
			"subject": self.subject,
			"grade": self.grade,
			"description": self.description,
			"total_questions": self.total_questions,
			"total_score": self.total_score,
		}
		if include_questions:
			data["questions"] = self.questions_data
		return data


class ExamAttempt(Base):
	__tablename__ = "exam_attempts"
	id = Column(String(64), primary_key=True, default=_new_id)
	exam_id = Column(String(64), ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
	student_id = Column(String(64), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
	answers_json = Column(Text, nullable=False, default="{}")  # {"1": 3, "2": "correct", ...}
	score = Column(Integer, nullable=True)
	max_score = Column(Integer, nullable=True)
	correct_count = Column(Integer, nullable=True)
	grade = Column(Integer, nullable=True)  # 1-9
	started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	submitted_at = Column(DateTime, nullable=True)
	graded_at = Column(DateTime, nullable=True)

	@property
	def answers(self) -> dict:
		return load_json(self.answers_json, {})

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"exam_id": self.exam_id,
			"student_id": self.student_id,
			"answers": self.answers,
			"score": self.score,
			"max_score": self.max_score,
			"correct_count": self.correct_count,
			"grade": self.grade,
			"started_at": self.started_at.isoformat() if self.started_at else None,
			"submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
			"graded_at": self.graded_at.isoformat() if self.graded_at else None,
		}


# Cached pipeline artifacts: one row per key, payload is a JSON snapshot


class ExamAnalysisData(Base):
	__tablename__ = "exam_analysis_data"
	exam_id = Column(String(64), ForeignKey("exams.id", ondelete="CASCADE"), primary_key=True)
	payload_json = Column(Text, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class StudentScoreData(Base):
	__tablename__ = "student_score_data"
	attempt_id = Column(String(64), ForeignKey("exam_attempts.id", ondelete="CASCADE"), primary_key=True)
	payload_json = Column(Text, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class AIAnalysisData(Base):
	__tablename__ = "ai_analysis_data"
	attempt_id = Column(String(64), ForeignKey("exam_attempts.id", ondelete="CASCADE"), primary_key=True)
	payload_json = Column(Text, nullable=False)
	ai_provider = Column(String(32), nullable=False, default="unknown")
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class AIReport(Base):
	__tablename__ = "ai_reports"
	id = Column(String(64), primary_key=True, default=_new_id)
	attempt_id = Column(String(64), ForeignKey("exam_attempts.id", ondelete="CASCADE"), nullable=False, unique=True)
	student_id = Column(String(64), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
	exam_id = Column(String(64), ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
	summary = Column(Text, nullable=True)
	weak_areas_json = Column(Text, nullable=True)
	recommendations_json = Column(Text, nullable=True)
	expected_grade = Column(Integer, nullable=True)
	analysis_json = Column(Text, nullable=True)
	html_content = Column(Text, nullable=True)
	generated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"attempt_id": self.attempt_id,
			"student_id": self.student_id,
			"exam_id": self.exam_id,
			"summary": self.summary,
			"weak_areas": load_json(self.weak_areas_json, []),
			"recommendations": load_json(self.recommendations_json, []),
			"expected_grade": self.expected_grade,
			"analysis": load_json(self.analysis_json, {}),
			"generated_at": self.generated_at.isoformat() if self.generated_at else None,
		}
