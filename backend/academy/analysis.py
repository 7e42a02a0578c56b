from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel

from .grading import (
	ChoiceAnswer,
	Question,
	grade_attempt,
	is_correct,
	lookup_answer,
	parse_answer,
	percent,
	total_points,
)


STRENGTH_THRESHOLD = 80
WEAKNESS_THRESHOLD = 60
NO_ANSWER = "무응답"

STATUS_STRENGTH = "strength"
STATUS_NEUTRAL = "neutral"
STATUS_WEAKNESS = "weakness"
STATUS_COLORS = {STATUS_STRENGTH: "blue", STATUS_NEUTRAL: "orange", STATUS_WEAKNESS: "red"}


# ---- Stage 1: exam analysis ----

class DomainShare(BaseModel):
	domain: str
	question_count: int
	max_score: int
	percentage: int  # share of the exam's questions


class DifficultyShare(BaseModel):
	difficulty: str
	question_count: int
	max_score: int


class TypeShare(BaseModel):
	type: str
	question_count: int


class ExamCharacteristics(BaseModel):
	main_domains: List[str]
	difficulty_distribution: str
	avg_score_per_question: float


class ExamAnalysis(BaseModel):
	exam_id: str
	total_questions: int
	total_score: int
	domain_breakdown: List[DomainShare]
	difficulty_breakdown: List[DifficultyShare]
	question_type_breakdown: List[TypeShare]
	characteristics: ExamCharacteristics


# ---- Stage 2: student score ----

class DomainScore(BaseModel):
	domain: str
	earned_score: int
	max_score: int
	correct_count: int
	total_count: int
	percentage: int
	status: str
	status_color: str


class DifficultyScore(BaseModel):
	difficulty: str
	earned_score: int
	max_score: int
	correct_count: int
	total_count: int
	percentage: int


class QuestionOutcome(BaseModel):
	question_number: int
	domain: str
	difficulty: str
	type: str
	subcategory: str
	correct_answer: Optional[int] = None
	student_answer: Optional[Union[int, str]] = None


class StudentScore(BaseModel):
	attempt_id: str
	student_id: str
	exam_id: str
	raw_score: int
	max_score: int
	percentile: int
	grade: int
	correct_count: int
	incorrect_count: int
	domain_scores: List[DomainScore]
	difficulty_scores: List[DifficultyScore]
	incorrect_questions: List[QuestionOutcome]
	correct_questions: List[QuestionOutcome]
	strength_domains: List[str]
	weakness_domains: List[str]

	def domain(self, name: str) -> Optional[DomainScore]:
		for item in self.domain_scores:
			if item.domain == name:
				return item
		return None


def classify(percentage: int) -> str:
	if percentage >= STRENGTH_THRESHOLD:
		return STATUS_STRENGTH
	if percentage < WEAKNESS_THRESHOLD:
		return STATUS_WEAKNESS
	return STATUS_NEUTRAL


def analyze_exam(exam_id: str, questions: List[Question]) -> ExamAnalysis:
	total_questions = len(questions)
	total_score = total_points(questions)

	# dicts keep first-appearance order, which makes the output stable
	domains: Dict[str, List[int]] = {}
	difficulties: Dict[str, List[int]] = {}
	types: Dict[str, int] = {}
	for q in questions:
		d = domains.setdefault(q.domain, [0, 0])
		d[0] += 1
		d[1] += q.points
		diff = difficulties.setdefault(q.difficulty, [0, 0])
		diff[0] += 1
		diff[1] += q.points
		types[q.type] = types.get(q.type, 0) + 1

	domain_breakdown = [
		DomainShare(domain=name, question_count=count, max_score=points, percentage=percent(count, total_questions))
		for name, (count, points) in domains.items()
	]
	difficulty_breakdown = [
		DifficultyShare(difficulty=name, question_count=count, max_score=points)
		for name, (count, points) in difficulties.items()
	]
	question_type_breakdown = [TypeShare(type=name, question_count=count) for name, count in types.items()]

	# sorted() is stable, so ties keep exam order
	main_domains = [d.domain for d in sorted(domain_breakdown, key=lambda d: -d.question_count)[:3]]
	distribution = ", ".join(f"{d.difficulty}:{d.question_count}" for d in difficulty_breakdown)
	avg = round(total_score / total_questions, 1) if total_questions else 0.0

	return ExamAnalysis(
		exam_id=exam_id,
		total_questions=total_questions,
		total_score=total_score,
		domain_breakdown=domain_breakdown,
		difficulty_breakdown=difficulty_breakdown,
		question_type_breakdown=question_type_breakdown,
		characteristics=ExamCharacteristics(
			main_domains=main_domains,
			difficulty_distribution=distribution,
			avg_score_per_question=avg,
		),
	)


def _display_answer(raw: Any) -> Union[int, str]:
	answer = parse_answer(raw)
	if answer is None:
		return NO_ANSWER
	if isinstance(answer, ChoiceAnswer):
		return answer.value
	return "correct" if answer.correct else "wrong"


def aggregate_attempt(
	attempt_id: str,
	student_id: str,
	exam_id: str,
	answers: Mapping[Any, Any],
	questions: List[Question],
) -> StudentScore:
	"""Per-domain and per-difficulty breakdown of one attempt.

	Pure: the same answers and question list always give the same result, so
	the output can be cached and recomputed freely.
	"""
	# counters: [correct, total, earned, max]
	domains: Dict[str, List[int]] = {}
	difficulties: Dict[str, List[int]] = {}
	incorrect: List[QuestionOutcome] = []
	correct: List[QuestionOutcome] = []

	for q in questions:
		raw = lookup_answer(answers, q.number)
		ok = is_correct(parse_answer(raw), q)
		for bucket in (domains.setdefault(q.domain, [0, 0, 0, 0]), difficulties.setdefault(q.difficulty, [0, 0, 0, 0])):
			bucket[1] += 1
			bucket[3] += q.points
			if ok:
				bucket[0] += 1
				bucket[2] += q.points
		outcome = QuestionOutcome(
			question_number=q.number,
			domain=q.domain,
			difficulty=q.difficulty,
			type=q.type,
			subcategory=q.subcategory,
			correct_answer=q.correct_answer,
			student_answer=_display_answer(raw),
		)
		(correct if ok else incorrect).append(outcome)

	domain_scores = []
	for name, (n_correct, n_total, earned, max_points) in domains.items():
		pct = percent(n_correct, n_total)
		status = classify(pct)
		domain_scores.append(
			DomainScore(
				domain=name,
				earned_score=earned,
				max_score=max_points,
				correct_count=n_correct,
				total_count=n_total,
				percentage=pct,
				status=status,
				status_color=STATUS_COLORS[status],
			)
		)
	difficulty_scores = [
		DifficultyScore(
			difficulty=name,
			earned_score=earned,
			max_score=max_points,
			correct_count=n_correct,
			total_count=n_total,
			percentage=percent(n_correct, n_total),
		)
		for name, (n_correct, n_total, earned, max_points) in difficulties.items()
	]

	result = grade_attempt(answers, questions)
	return StudentScore(
		attempt_id=attempt_id,
		student_id=student_id,
		exam_id=exam_id,
		raw_score=result.score,
		max_score=result.max_score,
		percentile=percent(result.score, result.max_score),
		grade=result.grade,
		correct_count=len(correct),
		incorrect_count=len(incorrect),
		domain_scores=domain_scores,
		difficulty_scores=difficulty_scores,
		incorrect_questions=incorrect,
		correct_questions=correct,
		strength_domains=[d.domain for d in domain_scores if d.status == STATUS_STRENGTH],
		weakness_domains=[d.domain for d in domain_scores if d.status == STATUS_WEAKNESS],
	)
