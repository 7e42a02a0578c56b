from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..deps import get_pipeline
from ..errors import AcademyError
from ..grading import grade_attempt, normalize_answers, normalize_questions
from ..models import Exam, ExamAttempt, dump_json
from ..pipeline import ReportPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/attempts", tags=["attempts"])


class ManualGradeRequest(BaseModel):
	# question number -> "correct" / "wrong" (or a choice number)
	answers: Dict[str, Any]


@router.get("/{attempt_id}")
def get_attempt(attempt_id: str, pipeline: ReportPipeline = Depends(get_pipeline)):
	row = pipeline.db.get(ExamAttempt, attempt_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Attempt not found")
	return row.to_dict()


@router.put("/{attempt_id}/answers")
def grade_manually(attempt_id: str, req: ManualGradeRequest, pipeline: ReportPipeline = Depends(get_pipeline)):
	"""Staff grading: merge the given marks into the attempt and regrade it.

	Cached score and AI analysis are dropped; an existing report is kept until
	it is deleted explicitly.
	"""
	db = pipeline.db
	attempt = db.get(ExamAttempt, attempt_id)
	if attempt is None:
		raise HTTPException(status_code=404, detail="Attempt not found")
	exam = db.get(Exam, attempt.exam_id)
	if exam is None:
		raise HTTPException(status_code=404, detail="Exam not found")
	try:
		answers = {**attempt.answers, **normalize_answers(req.answers)}
		result = grade_attempt(answers, normalize_questions(exam.questions_data))
	except AcademyError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))

	now = datetime.utcnow()
	attempt.answers_json = dump_json(answers)
	attempt.score = result.score
	attempt.max_score = result.max_score
	attempt.correct_count = result.correct_count
	attempt.grade = result.grade
	attempt.submitted_at = attempt.submitted_at or now
	attempt.graded_at = now
	try:
		pipeline.invalidate_attempt(attempt_id)
		db.commit()
	except Exception:
		db.rollback()
		raise
	logger.info("Attempt %s regraded manually: %d/%d", attempt_id, result.score, result.max_score)
	return attempt.to_dict()


@router.get("/{attempt_id}/score")
def attempt_score(attempt_id: str, force: bool = False, pipeline: ReportPipeline = Depends(get_pipeline)):
	try:
		return pipeline.score_attempt(attempt_id, force=force).model_dump()
	except AcademyError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))
