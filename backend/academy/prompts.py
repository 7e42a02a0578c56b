from __future__ import annotations

from .analysis import StudentScore


DEFAULT_GRADE_LABEL = "고등학생"
NONE_LABEL = "없음"

# Keys the model must return; the report assembler reads exactly these
RESPONSE_KEYS = (
	"propensityType",
	"propensityDescription",
	"overallSummary",
	"domainAnalyses",
	"strengthAnalyses",
	"weaknessAnalyses",
	"learningStrategy",
)

SYSTEM_PROMPT = (
	"You are an educational AI that analyzes Korean student exam results. "
	"Always respond in valid JSON format with Korean text."
)

_SCHEMA_BLOCK = (
	"{\n"
	'  "propensityType": "학생 성향 유형 (예: 안정적 실력형, 도전적 성장형, 균형 잡힌 발전형 등)",\n'
	'  "propensityDescription": "학생 성향에 대한 2-3문장 설명",\n'
	'  "overallSummary": "전체 성적에 대한 종합 분석 3-4문장",\n'
	'  "domainAnalyses": {\n'
	'    "영역명": "해당 영역 분석 2-3문장"\n'
	"  },\n"
	'  "strengthAnalyses": {\n'
	'    "영역명": "강점 분석 1-2문장"\n'
	"  },\n"
	'  "weaknessAnalyses": {\n'
	'    "영역명": "약점 분석 및 개선 방향 1-2문장"\n'
	"  },\n"
	'  "learningStrategy": [\n'
	'    {"stage": "1단계", "duration": "4주", "strategy": "전략명", "details": "상세 내용", "expectedResult": "예상 결과"},\n'
	'    {"stage": "2단계", "duration": "3주", "strategy": "전략명", "details": "상세 내용", "expectedResult": "예상 결과"},\n'
	'    {"stage": "3단계", "duration": "5주", "strategy": "전략명", "details": "상세 내용", "expectedResult": "예상 결과"}\n'
	"  ]\n"
	"}"
)


def _domain_lines(score: StudentScore) -> str:
	if not score.domain_scores:
		return f"- {NONE_LABEL}"
	return "\n".join(
		f"- {d.domain}: {d.percentage}% ({d.correct_count}/{d.total_count}문항, {d.earned_score}/{d.max_score}점)"
		for d in score.domain_scores
	)


def _incorrect_lines(score: StudentScore) -> str:
	if not score.incorrect_questions:
		return f"- {NONE_LABEL}"
	return "\n".join(
		f"- {q.question_number}번: 정답 {q.correct_answer if q.correct_answer is not None else '-'}, "
		f"학생답안 {q.student_answer} (영역: {q.domain}, 세부: {q.subcategory}, 난이도: {q.difficulty})"
		for q in score.incorrect_questions
	)


def build_analysis_prompt(student_name: str, grade_label: str | None, exam_title: str, score: StudentScore) -> str:
	"""Render the analysis request for the generative model.

	The output is a pure function of its arguments so the same attempt always
	produces the same prompt.
	"""
	strengths = ", ".join(score.strength_domains) or NONE_LABEL
	weaknesses = ", ".join(score.weakness_domains) or NONE_LABEL
	return (
		"당신은 수능 연구소의 데이터 분석 전문가입니다.\n"
		"아래 학생의 성적 데이터를 분석하여 JSON 형식으로 응답해주세요.\n\n"
		"[학생 정보]\n"
		f"- 이름: {student_name}\n"
		f"- 학년: {grade_label or DEFAULT_GRADE_LABEL}\n"
		f"- 시험: {exam_title}\n"
		f"- 점수: {score.raw_score}/{score.max_score}점 ({score.percentile}%)\n"
		f"- 등급: {score.grade}등급\n"
		f"- 정답: {score.correct_count}문항 / 오답: {score.incorrect_count}문항\n\n"
		"[영역별 성적]\n"
		f"{_domain_lines(score)}\n\n"
		f"[강점 영역] {strengths}\n"
		f"[약점 영역] {weaknesses}\n\n"
		"[오답 문항]\n"
		f"{_incorrect_lines(score)}\n\n"
		"다음 스키마와 정확히 같은 키를 가진 JSON 객체 하나로만 응답해주세요.\n"
		"JSON 바깥에 설명, 인사말, 마크다운 코드 블록 등 다른 텍스트를 절대 포함하지 마세요.\n"
		"domainAnalyses, strengthAnalyses, weaknessAnalyses의 키는 위에 나온 영역명을 그대로 사용하세요.\n"
		f"{_SCHEMA_BLOCK}"
	)
