"""Exam grading: question normalisation, scoring and the 1-9 grade band."""

from __future__ import annotations

import math
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError


DEFAULT_DOMAIN = "독서"
DEFAULT_DIFFICULTY = "중"
DEFAULT_TYPE = "미분류"
DEFAULT_POINTS = 2

# (minimum percentage, band), checked top-down; anything below 4% is band 9
GRADE_CUTOFFS: List[Tuple[int, int]] = [
	(96, 1),
	(89, 2),
	(77, 3),
	(60, 4),
	(40, 5),
	(23, 6),
	(11, 7),
	(4, 8),
]
LOWEST_GRADE = 9

MANUAL_CORRECT = "correct"
MANUAL_WRONG = "wrong"


class Question(BaseModel):
	number: int
	domain: str = DEFAULT_DOMAIN
	difficulty: str = DEFAULT_DIFFICULTY
	type: str = DEFAULT_TYPE
	subcategory: str = DEFAULT_TYPE
	correct_answer: Optional[int] = None
	points: int = DEFAULT_POINTS


class ChoiceAnswer(BaseModel):
	kind: Literal["choice"] = "choice"
	value: int


class ManualAnswer(BaseModel):
	kind: Literal["manual"] = "manual"
	correct: bool


Answer = Union[ChoiceAnswer, ManualAnswer]


class GradeResult(BaseModel):
	score: int
	max_score: int
	correct_count: int
	grade: int
	percentage: float


def _to_int(value: Any) -> Optional[int]:
	# bool is an int subclass but never a valid choice
	if value is None or isinstance(value, bool):
		return None
	if isinstance(value, int):
		return value
	if isinstance(value, float):
		return int(value) if math.isfinite(value) and value.is_integer() else None
	if isinstance(value, str):
		text = value.strip()
		if not text:
			return None
		try:
			number = float(text)
		except ValueError:
			return None
		return int(number) if math.isfinite(number) and number.is_integer() else None
	return None


def percent(part: float, whole: float) -> int:
	"""Whole-number percentage, rounding halves up (12.5 -> 13)."""
	if not whole:
		return 0
	return int(math.floor(part / whole * 100 + 0.5))


def grade_band(percentage: float) -> int:
	for cutoff, band in GRADE_CUTOFFS:
		if percentage >= cutoff:
			return band
	return LOWEST_GRADE


def parse_answer(raw: Any) -> Optional[Answer]:
	"""Resolve a submitted value into a tagged answer, or None when nothing usable was sent.

	Accepted forms: a choice number (int or numeric string), the manual tags
	"correct"/"wrong", or an explicit {"kind": ...} object.
	"""
	if isinstance(raw, (ChoiceAnswer, ManualAnswer)):
		return raw
	if isinstance(raw, dict):
		kind = raw.get("kind")
		try:
			if kind == "choice":
				return ChoiceAnswer.model_validate(raw)
			if kind == "manual":
				return ManualAnswer.model_validate(raw)
		except PydanticValidationError:
			return None
		return None
	if isinstance(raw, str):
		tag = raw.strip().lower()
		if tag == MANUAL_CORRECT:
			return ManualAnswer(correct=True)
		if tag == MANUAL_WRONG:
			return ManualAnswer(correct=False)
	value = _to_int(raw)
	if value is None:
		return None
	return ChoiceAnswer(value=value)


def lookup_answer(answers: Mapping[Any, Any], number: int) -> Any:
	if str(number) in answers:
		return answers[str(number)]
	return answers.get(number)


def is_correct(answer: Optional[Answer], question: Question) -> bool:
	if answer is None:
		return False
	if isinstance(answer, ManualAnswer):
		return answer.correct
	return question.correct_answer is not None and answer.value == question.correct_answer


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
	for key in keys:
		value = data.get(key)
		if value is not None and value != "":
			return value
	return None


def normalize_questions(raw: Any) -> List[Question]:
	"""Validate stored question descriptors and fill in defaults.

	Raises ValidationError for a non-list payload, duplicate or non-positive
	question numbers, non-positive points, or an answer key outside 1-5.
	"""
	if not isinstance(raw, list):
		raise ValidationError("questions must be a list")
	questions: List[Question] = []
	seen: set[int] = set()
	for idx, item in enumerate(raw, start=1):
		if isinstance(item, Question):
			item = item.model_dump()
		if not isinstance(item, dict):
			raise ValidationError(f"question {idx} must be an object")

		number_raw = _first_present(item, "questionNumber", "question_number", "number")
		number = idx if number_raw is None else _to_int(number_raw)
		if number is None or number < 1:
			raise ValidationError(f"question {idx} has an invalid number: {number_raw!r}")
		if number in seen:
			raise ValidationError(f"duplicate question number {number}")
		seen.add(number)

		points_raw = _first_present(item, "score", "points")
		points = DEFAULT_POINTS if points_raw is None else _to_int(points_raw)
		if points is None or points <= 0:
			raise ValidationError(f"question {number} must have a positive integer point value")

		key_raw = _first_present(item, "correctAnswer", "correct_answer")
		correct_answer = None
		if key_raw is not None:
			correct_answer = _to_int(key_raw)
			if correct_answer is None or not 1 <= correct_answer <= 5:
				raise ValidationError(f"question {number} has an invalid correct answer: {key_raw!r}")

		questions.append(
			Question(
				number=number,
				domain=str(_first_present(item, "domain", "topic", "category") or DEFAULT_DOMAIN),
				difficulty=str(_first_present(item, "difficulty") or DEFAULT_DIFFICULTY),
				type=str(_first_present(item, "typeAnalysis", "type") or DEFAULT_TYPE),
				subcategory=str(_first_present(item, "subcategory", "concept") or DEFAULT_TYPE),
				correct_answer=correct_answer,
				points=points,
			)
		)
	return questions


def total_points(questions: List[Question]) -> int:
	return sum(q.points for q in questions)


def grade_attempt(answers: Mapping[Any, Any], questions: List[Question]) -> GradeResult:
	score = 0
	max_score = 0
	correct_count = 0
	for question in questions:
		max_score += question.points
		if is_correct(parse_answer(lookup_answer(answers, question.number)), question):
			score += question.points
			correct_count += 1
	percentage = score / max_score * 100 if max_score > 0 else 0.0
	return GradeResult(
		score=score,
		max_score=max_score,
		correct_count=correct_count,
		grade=grade_band(percentage),
		percentage=percentage,
	)


def normalize_answers(answers: Any) -> Dict[str, Any]:
	"""Check the shape of an incoming answers map before it is stored."""
	if not isinstance(answers, dict):
		raise ValidationError("answers must be an object keyed by question number")
	cleaned: Dict[str, Any] = {}
	for key, value in answers.items():
		number = _to_int(key)
		if number is None or number < 1:
			raise ValidationError(f"invalid question number in answers: {key!r}")
		cleaned[str(number)] = value
	return cleaned
