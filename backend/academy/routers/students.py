from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import AIReport, Exam, ExamAttempt, Student

router = APIRouter(prefix="/students", tags=["students"])


class CreateStudentRequest(BaseModel):
	name: str
	school: Optional[str] = None
	grade: Optional[str] = None


@router.post("", status_code=201)
def create_student(req: CreateStudentRequest, db: Session = Depends(get_db)):
	name = (req.name or "").strip()
	if not name:
		raise HTTPException(status_code=400, detail="name is required")
	row = Student(name=name, school=(req.school or "").strip() or None, grade=(req.grade or "").strip() or None)
	db.add(row)
	db.commit()
	return row.to_dict()


@router.get("/{student_id}")
def get_student(student_id: str, db: Session = Depends(get_db)):
	row = db.get(Student, student_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Student not found")
	return row.to_dict()


@router.get("/{student_id}/results")
def student_results(student_id: str, db: Session = Depends(get_db)):
	"""Submitted attempts, newest first, with exam summary and report (if any)."""
	if db.get(Student, student_id) is None:
		raise HTTPException(status_code=404, detail="Student not found")
	rows = (
		db.query(ExamAttempt, Exam, AIReport)
		.join(Exam, ExamAttempt.exam_id == Exam.id)
		.outerjoin(AIReport, AIReport.attempt_id == ExamAttempt.id)
		.filter(ExamAttempt.student_id == student_id, ExamAttempt.submitted_at.isnot(None))
		.order_by(ExamAttempt.submitted_at.desc())
		.all()
	)
	return [
		{
			**attempt.to_dict(),
			"exam": exam.to_dict(include_questions=False),
			"report": report.to_dict() if report is not None else None,
		}
		for attempt, exam, report in rows
	]
