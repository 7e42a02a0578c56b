from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_pipeline
from ..errors import AcademyError
from ..grading import grade_attempt, normalize_answers, normalize_questions, total_points
from ..models import Exam, ExamAttempt, Student, dump_json
from ..pipeline import ReportPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exams", tags=["exams"])


class CreateExamRequest(BaseModel):
	title: str
	subject: str
	grade: Optional[str] = None
	description: Optional[str] = None
	questions: List[Dict[str, Any]]


class SubmitRequest(BaseModel):
	student_id: str
	answers: Dict[str, Any]


@router.post("", status_code=201)
def create_exam(req: CreateExamRequest, db: Session = Depends(get_db)):
	title = (req.title or "").strip()
	subject = (req.subject or "").strip()
	if not title or not subject:
		raise HTTPException(status_code=400, detail="title and subject are required")
	try:
		questions = normalize_questions(req.questions)
	except AcademyError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))
	row = Exam(
		title=title,
		subject=subject,
		grade=req.grade,
		description=req.description,
		total_questions=len(questions),
		total_score=total_points(questions),
		questions_json=dump_json([q.model_dump() for q in questions]),
	)
	db.add(row)
	db.commit()
	logger.info("Created exam %s with %d questions", row.id, row.total_questions)
	return row.to_dict()


@router.get("/{exam_id}")
def get_exam(exam_id: str, db: Session = Depends(get_db)):
	row = db.get(Exam, exam_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Exam not found")
	return row.to_dict()


@router.get("/{exam_id}/analysis")
def exam_analysis(exam_id: str, force: bool = False, pipeline: ReportPipeline = Depends(get_pipeline)):
	try:
		return pipeline.analyze_exam(exam_id, force=force).model_dump()
	except AcademyError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))


class StartRequest(BaseModel):
	student_id: str


@router.post("/{exam_id}/start")
def start_exam(exam_id: str, req: StartRequest, db: Session = Depends(get_db)):
	"""Open an attempt (in progress); returns the existing one if already started."""
	if db.get(Exam, exam_id) is None:
		raise HTTPException(status_code=404, detail="Exam not found")
	if db.get(Student, req.student_id) is None:
		raise HTTPException(status_code=404, detail="Student not found")
	attempt = (
		db.query(ExamAttempt)
		.filter(ExamAttempt.exam_id == exam_id, ExamAttempt.student_id == req.student_id)
		.first()
	)
	if attempt is None:
		attempt = ExamAttempt(exam_id=exam_id, student_id=req.student_id, answers_json="{}")
		db.add(attempt)
		db.commit()
	return attempt.to_dict()


@router.post("/{exam_id}/submit")
def submit_exam(exam_id: str, req: SubmitRequest, db: Session = Depends(get_db)):
	exam = db.get(Exam, exam_id)
	if exam is None:
		raise HTTPException(status_code=404, detail="Exam not found")
	if db.get(Student, req.student_id) is None:
		raise HTTPException(status_code=404, detail="Student not found")
	try:
		answers = normalize_answers(req.answers)
		result = grade_attempt(answers, normalize_questions(exam.questions_data))
	except AcademyError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))

	existing = (
		db.query(ExamAttempt)
		.filter(ExamAttempt.exam_id == exam_id, ExamAttempt.student_id == req.student_id)
		.first()
	)
	if existing is not None and existing.submitted_at is not None:
		raise HTTPException(status_code=400, detail="Exam already submitted")

	now = datetime.utcnow()
	attempt = existing or ExamAttempt(exam_id=exam_id, student_id=req.student_id)
	attempt.answers_json = dump_json(answers)
	attempt.score = result.score
	attempt.max_score = result.max_score
	attempt.correct_count = result.correct_count
	attempt.grade = result.grade
	attempt.submitted_at = now
	attempt.graded_at = now
	db.add(attempt)
	db.commit()
	logger.info("Attempt %s graded: %d/%d, grade %d", attempt.id, result.score, result.max_score, result.grade)
	return attempt.to_dict()
