from __future__ import annotations
import logging
import uuid
from typing import Any, Callable, Dict, Generic, Optional, Tuple, Type, TypeVar
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .ai_client import AIAnalysisClient, AIRateLimitedError, AnalysisRequest
from .analysis import ExamAnalysis, StudentScore, aggregate_attempt, analyze_exam
from .errors import NotFoundError, RateLimitedError, ValidationError
from .grading import normalize_questions
from .models import (
	AIAnalysisData,
	AIReport,
	Exam,
	ExamAnalysisData,
	ExamAttempt,
	Student,
	StudentScoreData,
	dump_json,
)
from .prompts import build_analysis_prompt
from .reports import AIAnalysis, ReportDocument, assemble_report, merge_analysis, render_html

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class ArtifactCache(Generic[T]):
	"""Read-through cache over one artifact table keyed by a single id column.

	Writes only stage changes on the session; committing is up to the caller so
	several artifacts can be persisted together or not at all.
	"""

	def __init__(
		self,
		db: Session,
		model: Type[Any],
		schema: Type[T],
		*,
		columns: Optional[Callable[[T], Dict[str, Any]]] = None,
	) -> None:
		self.db = db
		self.model = model
		self.schema = schema
		self._columns = columns

	def get(self, key: str) -> Optional[T]:
		row = self.db.get(self.model, key)
		if row is None:
			return None
		return self.schema.model_validate_json(row.payload_json)

	def invalidate(self, key: str) -> bool:
		row = self.db.get(self.model, key)
		if row is None:
			return False
		self.db.delete(row)
		# flush now so a replacement row with the same key can be inserted in this transaction
		self.db.flush()
		return True

	def put(self, key: str, value: T) -> None:
		extra = self._columns(value) if self._columns else {}
		pk = self.model.__mapper__.primary_key[0].key
		self.db.add(self.model(**{pk: key}, payload_json=value.model_dump_json(), **extra))

	def replace(self, key: str, value: T) -> None:
		self.invalidate(key)
		self.put(key, value)

	def get_or_compute(self, key: str, compute: Callable[[], T], *, force: bool = False) -> Tuple[T, bool]:
		"""Return (value, cache_hit). ``force`` drops the cached copy and recomputes."""
		if not force:
			cached = self.get(key)
			if cached is not None:
				return cached, True
		value = compute()
		self.replace(key, value)
		return value, False


class ReportPipeline:
	"""Exam analysis -> student score -> AI analysis -> final report.

	Every stage is cached; generating a report for an attempt that already has
	one returns the stored report without calling the AI provider.
	"""

	def __init__(self, db: Session, ai_client: AIAnalysisClient) -> None:
		self.db = db
		self.ai_client = ai_client
		self.exam_analyses: ArtifactCache[ExamAnalysis] = ArtifactCache(db, ExamAnalysisData, ExamAnalysis)
		self.student_scores: ArtifactCache[StudentScore] = ArtifactCache(db, StudentScoreData, StudentScore)
		self.ai_analyses: ArtifactCache[AIAnalysis] = ArtifactCache(
			db, AIAnalysisData, AIAnalysis, columns=lambda a: {"ai_provider": a.ai_provider}
		)

	# ---- lookups ----

	def _exam(self, exam_id: str) -> Exam:
		exam = self.db.get(Exam, exam_id)
		if exam is None:
			raise NotFoundError(f"exam {exam_id} not found")
		return exam

	def _attempt(self, attempt_id: str) -> ExamAttempt:
		attempt = self.db.get(ExamAttempt, attempt_id)
		if attempt is None:
			raise NotFoundError(f"attempt {attempt_id} not found")
		return attempt

	def _submitted_attempt(self, attempt_id: str) -> Tuple[ExamAttempt, Exam]:
		attempt = self._attempt(attempt_id)
		if attempt.submitted_at is None:
			raise ValidationError(f"attempt {attempt_id} has not been submitted")
		return attempt, self._exam(attempt.exam_id)

	def find_report(self, attempt_id: str) -> Optional[AIReport]:
		return self.db.query(AIReport).filter(AIReport.attempt_id == attempt_id).first()

	def _commit_or_reuse(self, cache: ArtifactCache[T], key: str, value: T) -> T:
		try:
			self.db.commit()
		except IntegrityError:
			# another request stored the same artifact first
			self.db.rollback()
			existing = cache.get(key)
			if existing is None:
				raise
			return existing
		return value

	# ---- stage 1 ----

	def analyze_exam(self, exam_id: str, *, force: bool = False) -> ExamAnalysis:
		exam = self._exam(exam_id)
		value, hit = self.exam_analyses.get_or_compute(
			exam_id,
			lambda: analyze_exam(exam_id, normalize_questions(exam.questions_data)),
			force=force,
		)
		if hit:
			logger.info("[exam analysis] cache hit for exam %s", exam_id)
			return value
		logger.info("[exam analysis] computed for exam %s: %d domains", exam_id, len(value.domain_breakdown))
		return self._commit_or_reuse(self.exam_analyses, exam_id, value)

	# ---- stage 2 ----

	def _compute_score(self, attempt: ExamAttempt, exam: Exam) -> StudentScore:
		return aggregate_attempt(
			attempt.id,
			attempt.student_id,
			exam.id,
			attempt.answers,
			normalize_questions(exam.questions_data),
		)

	def score_attempt(self, attempt_id: str, *, force: bool = False) -> StudentScore:
		attempt, exam = self._submitted_attempt(attempt_id)
		value, hit = self.student_scores.get_or_compute(
			attempt_id, lambda: self._compute_score(attempt, exam), force=force
		)
		if hit:
			logger.info("[student score] cache hit for attempt %s", attempt_id)
			return value
		logger.info("[student score] attempt %s: %d/%d", attempt_id, value.raw_score, value.max_score)
		return self._commit_or_reuse(self.student_scores, attempt_id, value)

	def invalidate_attempt(self, attempt_id: str) -> None:
		"""Drop the cached score and AI analysis; the stored report is left alone."""
		self.student_scores.invalidate(attempt_id)
		self.ai_analyses.invalidate(attempt_id)

	# ---- stages 3 and 4 ----

	async def generate_report(self, attempt_id: str, *, force: bool = False) -> Tuple[AIReport, bool]:
		"""Return (report, created).

		Nothing is written while the AI provider is awaited. Score, AI analysis
		and report are stored in one transaction afterwards; an error or
		cancellation rolls all of them back.
		"""
		attempt, exam = self._submitted_attempt(attempt_id)
		if not force:
			existing = self.find_report(attempt_id)
			if existing is not None:
				logger.info("[report] attempt %s already has report %s", attempt_id, existing.id)
				return existing, False

		student = self.db.get(Student, attempt.student_id)
		if student is None:
			raise NotFoundError(f"student {attempt.student_id} not found")
		exam_analysis = self.analyze_exam(exam.id)

		try:
			score = None if force else self.student_scores.get(attempt_id)
			new_score = score is None
			if score is None:
				score = self._compute_score(attempt, exam)

			analysis = None if force else self.ai_analyses.get(attempt_id)
			new_analysis = analysis is None
			if analysis is None:
				prompt = build_analysis_prompt(student.name, student.grade, exam.title, score)
				try:
					result = await self.ai_client.analyze(AnalysisRequest(prompt=prompt, student_name=student.name, score=score))
				except AIRateLimitedError as err:
					raise RateLimitedError("AI provider rate limit reached, please try again later") from err
				logger.info("[ai analysis] attempt %s analysed by %s", attempt_id, result.provider)
				analysis = merge_analysis(student.name, score, result.data, result.provider)
			else:
				logger.info("[ai analysis] cache hit for attempt %s", attempt_id)

			document = assemble_report(
				exam_title=exam.title,
				student_name=student.name,
				student_school=student.school,
				student_level=student.grade,
				exam_analysis=exam_analysis,
				score=score,
				analysis=analysis,
			)
			for last_try in (False, True):
				try:
					report = self._store(
						attempt,
						document,
						force=force,
						score=score if new_score else None,
						analysis=analysis if new_analysis else None,
					)
					break
				except IntegrityError:
					self.db.rollback()
					existing = self.find_report(attempt_id)
					if existing is not None:
						logger.info("[report] concurrent generation for attempt %s; returning %s", attempt_id, existing.id)
						return existing, False
					if last_try:
						raise
					# a cached score or analysis row was stored meanwhile; replace() removes it on the second pass
					logger.info("[report] cache row for attempt %s stored concurrently; retrying", attempt_id)
		except BaseException:
			# includes asyncio.CancelledError: nothing from this run is kept
			self.db.rollback()
			raise
		logger.info("[report] saved %s for attempt %s", report.id, attempt_id)
		return report, True

	def _store(
		self,
		attempt: ExamAttempt,
		document: ReportDocument,
		*,
		force: bool,
		score: Optional[StudentScore],
		analysis: Optional[AIAnalysis],
	) -> AIReport:
		if force:
			old = self.find_report(attempt.id)
			if old is not None:
				self.db.delete(old)
				self.db.flush()
		if score is not None:
			self.student_scores.replace(attempt.id, score)
		if analysis is not None:
			self.ai_analyses.replace(attempt.id, analysis)
		report = AIReport(
			id=uuid.uuid4().hex,
			attempt_id=attempt.id,
			student_id=attempt.student_id,
			exam_id=attempt.exam_id,
			summary=document.analysis.overall_summary,
			weak_areas_json=dump_json(document.weak_areas),
			recommendations_json=dump_json(document.recommendations),
			expected_grade=document.expected_grade,
			analysis_json=document.analysis.model_dump_json(),
			html_content=render_html(document),
		)
		self.db.add(report)
		self.db.commit()
		return report

	def delete_report(self, attempt_id: str) -> None:
		self._attempt(attempt_id)
		report = self.find_report(attempt_id)
		if report is None:
			raise NotFoundError(f"no report for attempt {attempt_id}")
		self.db.delete(report)
		self.db.commit()
		logger.info("[report] deleted report for attempt %s", attempt_id)
