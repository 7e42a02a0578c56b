from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel

from .analysis import DomainScore, ExamAnalysis, StudentScore


TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
REPORT_TEMPLATE = "report.html"
META_VERSION = "v2-4step"

PROGRESS_LABELS: List[str] = ["현재", "4주 후", "8주 후", "12주 후"]
PROGRESS_STEPS: List[int] = [0, 5, 10, 15]

DEFAULT_SCHOOL = "미입력"
DEFAULT_LEVEL = "고등학생"


class DomainAnalysis(BaseModel):
	domain: str
	score: int
	score_text: str
	analysis_text: str
	status_color: str


class NamedAnalysis(BaseModel):
	name: str
	score: int
	analysis_text: str


class StrategyStage(BaseModel):
	stage: str
	duration: str
	strategy: str
	details: str
	expected_result: str


class PredictedProgress(BaseModel):
	labels: List[str]
	values: List[int]


class AIAnalysis(BaseModel):
	attempt_id: str
	student_id: str
	exam_id: str
	propensity_type: str
	propensity_description: str
	overall_summary: str
	domain_analyses: List[DomainAnalysis]
	strength_analyses: List[NamedAnalysis]
	weakness_analyses: List[NamedAnalysis]
	learning_strategy: List[StrategyStage]
	predicted_progress: PredictedProgress
	ai_provider: str


class StudentInfo(BaseModel):
	name: str
	school: str = DEFAULT_SCHOOL
	level: str = DEFAULT_LEVEL
	date: str


class ReportDocument(BaseModel):
	meta_version: str = META_VERSION
	exam_title: str
	student_info: StudentInfo
	score_summary: Dict[str, Any]
	exam_summary: Dict[str, Any]
	analysis: AIAnalysis
	charts: Dict[str, Any]
	weak_areas: List[str]
	recommendations: List[str]
	expected_grade: int


def domain_fallback_text(d: DomainScore) -> str:
	if d.percentage >= 90:
		return f"{d.domain} 영역에서 {d.percentage}%의 뛰어난 성취도를 보였습니다. 이 영역의 탄탄한 기초가 확인됩니다."
	if d.percentage >= 80:
		return f"{d.domain} 영역에서 {d.percentage}%의 우수한 정답률을 기록했습니다."
	if d.percentage >= 70:
		return f"{d.domain} 영역에서 {d.percentage}%로 양호한 수준이며, 조금 더 연습하면 더 높은 점수가 가능합니다."
	if d.percentage >= 60:
		return f"{d.domain} 영역에서 {d.percentage}%를 기록하였습니다. 기본 개념 이해에 대한 보완이 필요합니다."
	return f"{d.domain} 영역에서 {d.percentage}%로 취약한 모습을 보였습니다. 집중적인 학습이 필요합니다."


def strength_fallback_text(d: DomainScore) -> str:
	return f"{d.domain} 영역에서 {d.percentage}%의 우수한 정답률을 보이며, 해당 영역에 대한 탄탄한 기초 실력을 갖추고 있습니다."


def weakness_fallback_text(d: DomainScore) -> str:
	return f"{d.domain}에서 {d.percentage}%로 취약합니다. 해당 영역의 집중적인 학습이 필요합니다."


def determine_propensity(score: StudentScore) -> str:
	has_strengths = bool(score.strength_domains)
	has_weaknesses = bool(score.weakness_domains)
	if score.percentile >= 85 and not has_weaknesses:
		return "안정적 실력형"
	if has_strengths and has_weaknesses:
		return "도전적 성장형"
	if score.percentile >= 70 and not has_weaknesses:
		return "균형 잡힌 발전형"
	if has_weaknesses and not has_strengths:
		return "잠재력 발굴형"
	return "성실한 학습형"


def overall_summary_text(student_name: str, score: StudentScore) -> str:
	parts = [f"{student_name} 학생은 전체적으로 {score.raw_score}점을 기록하며 {score.grade}등급에 해당합니다."]
	if score.strength_domains:
		parts.append(f"{'과 '.join(score.strength_domains)}에서 우수한 성과를 보였습니다.")
	if score.weakness_domains:
		parts.append(f"{'과 '.join(score.weakness_domains)}에서는 보완이 필요하며, 이들 영역의 집중적인 학습이 권장됩니다.")
	return " ".join(parts)


def default_learning_strategy(score: StudentScore) -> List[StrategyStage]:
	if score.weakness_domains:
		first_details = f"{', '.join(score.weakness_domains)} 영역의 긴 지문 독해 훈련. 매일 2개 지문씩 시간 내에 풀고 오답 분석."
	else:
		first_details = "전체 영역의 기본기 강화. 매일 다양한 유형의 문제를 풀고 오답 분석."
	return [
		StrategyStage(stage="1단계", duration="4주", strategy="약점 영역 집중 공략", details=first_details, expected_result="정답률 +10% 상승"),
		StrategyStage(stage="2단계", duration="3주", strategy="개념어 적용 훈련", details="약점인 개념어를 실제 기출 문제에 적용하는 훈련.", expected_result="정답률 +5% 상승"),
		StrategyStage(
			stage="3단계",
			duration="5주",
			strategy="종합 실전 대비 및 시간 관리",
			details="주 2회 실전 모의고사(시간 측정 필수), 오답 문항 심층 분석, 취약 유형 집중 보완",
			expected_result="등급 상승 달성",
		),
	]


def predict_progress(current_score: int, max_score: int) -> PredictedProgress:
	"""Projected scores at fixed intervals: non-decreasing and never above ``max_score``."""
	ceiling = max(max_score, current_score)
	return PredictedProgress(
		labels=list(PROGRESS_LABELS),
		values=[min(ceiling, current_score + step) for step in PROGRESS_STEPS],
	)


def _text(value: Any) -> Optional[str]:
	if isinstance(value, str) and value.strip():
		return value.strip()
	return None


def _text_map(value: Any) -> Dict[str, str]:
	if not isinstance(value, dict):
		return {}
	out: Dict[str, str] = {}
	for key, text in value.items():
		cleaned = _text(text)
		if cleaned:
			out[str(key)] = cleaned
	return out


def _parse_strategy(value: Any) -> List[StrategyStage]:
	if not isinstance(value, list):
		return []
	stages: List[StrategyStage] = []
	for idx, item in enumerate(value, start=1):
		if not isinstance(item, dict):
			continue
		strategy = _text(item.get("strategy"))
		if not strategy:
			continue
		stages.append(
			StrategyStage(
				stage=_text(item.get("stage")) or f"{idx}단계",
				duration=_text(item.get("duration")) or "",
				strategy=strategy,
				details=_text(item.get("details")) or "",
				expected_result=_text(item.get("expectedResult")) or _text(item.get("expected_result")) or "",
			)
		)
	return stages


def merge_analysis(student_name: str, score: StudentScore, ai_data: Dict[str, Any], provider: str) -> AIAnalysis:
	domain_texts = _text_map(ai_data.get("domainAnalyses"))
	strength_texts = _text_map(ai_data.get("strengthAnalyses"))
	weakness_texts = _text_map(ai_data.get("weaknessAnalyses"))

	domain_analyses = [
		DomainAnalysis(
			domain=d.domain,
			score=d.percentage,
			score_text=f"취득 {d.earned_score}점 / 만점 {d.max_score}점 ({d.correct_count}/{d.total_count}문항 정답)",
			analysis_text=domain_texts.get(d.domain) or domain_fallback_text(d),
			status_color=d.status_color,
		)
		for d in score.domain_scores
	]

	strength_analyses: List[NamedAnalysis] = []
	weakness_analyses: List[NamedAnalysis] = []
	for d in score.domain_scores:
		if d.domain in score.strength_domains:
			strength_analyses.append(
				NamedAnalysis(name=d.domain, score=d.percentage, analysis_text=strength_texts.get(d.domain) or strength_fallback_text(d))
			)
		if d.domain in score.weakness_domains:
			weakness_analyses.append(
				NamedAnalysis(name=d.domain, score=d.percentage, analysis_text=weakness_texts.get(d.domain) or weakness_fallback_text(d))
			)

	if score.strength_domains:
		default_description = f"{student_name} 학생은 강점을 바탕으로 꾸준한 학습을 통해 성장할 수 있는 타입입니다."
	else:
		default_description = f"{student_name} 학생은 꾸준한 학습을 통해 성장할 수 있는 타입입니다."

	return AIAnalysis(
		attempt_id=score.attempt_id,
		student_id=score.student_id,
		exam_id=score.exam_id,
		propensity_type=_text(ai_data.get("propensityType")) or determine_propensity(score),
		propensity_description=_text(ai_data.get("propensityDescription")) or default_description,
		overall_summary=_text(ai_data.get("overallSummary")) or overall_summary_text(student_name, score),
		domain_analyses=domain_analyses,
		strength_analyses=strength_analyses,
		weakness_analyses=weakness_analyses,
		learning_strategy=_parse_strategy(ai_data.get("learningStrategy")) or default_learning_strategy(score),
		predicted_progress=predict_progress(score.raw_score, score.max_score),
		ai_provider=provider,
	)


def _korean_date(day: date) -> str:
	return f"{day.year}. {day.month}. {day.day}."


def recommendation_lines(strategy: List[StrategyStage]) -> List[str]:
	lines = []
	for s in strategy:
		head = f"{s.stage} ({s.duration}) {s.strategy}" if s.duration else f"{s.stage} {s.strategy}"
		lines.append(f"{head}: {s.details}" if s.details else head)
	return lines


def assemble_report(
	*,
	exam_title: str,
	student_name: str,
	student_school: Optional[str],
	student_level: Optional[str],
	exam_analysis: ExamAnalysis,
	score: StudentScore,
	analysis: AIAnalysis,
	generated_on: Optional[date] = None,
) -> ReportDocument:
	return ReportDocument(
		exam_title=exam_title,
		student_info=StudentInfo(
			name=student_name,
			school=student_school or DEFAULT_SCHOOL,
			level=student_level or DEFAULT_LEVEL,
			date=_korean_date(generated_on or date.today()),
		),
		score_summary={
			"grade": score.grade,
			"raw_score": score.raw_score,
			"raw_score_max": score.max_score,
			"percentile": score.percentile,
			"correct_count": score.correct_count,
			"incorrect_count": score.incorrect_count,
		},
		exam_summary={
			"total_questions": exam_analysis.total_questions,
			"total_score": exam_analysis.total_score,
			"main_domains": exam_analysis.characteristics.main_domains,
			"difficulty_distribution": exam_analysis.characteristics.difficulty_distribution,
		},
		analysis=analysis,
		charts={
			"radar": {
				"labels": [d.domain for d in score.domain_scores],
				"student": [d.percentage for d in score.domain_scores],
			},
			"difficulty": {
				"labels": [d.difficulty for d in score.difficulty_scores],
				"values": [d.percentage for d in score.difficulty_scores],
			},
			"prediction": analysis.predicted_progress.model_dump(),
		},
		weak_areas=list(score.weakness_domains),
		recommendations=recommendation_lines(analysis.learning_strategy),
		expected_grade=max(1, score.grade - 1),
	)


_env = Environment(
	loader=FileSystemLoader(str(TEMPLATES_DIR)),
	autoescape=select_autoescape(["html"]),
	trim_blocks=True,
	lstrip_blocks=True,
)


def render_html(document: ReportDocument) -> str:
	template = _env.get_template(REPORT_TEMPLATE)
	return template.render(report=document)
