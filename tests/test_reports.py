import json
import re
from datetime import date

from backend.academy.analysis import aggregate_attempt, analyze_exam
from backend.academy.grading import normalize_questions
from backend.academy.reports import (
    assemble_report,
    default_learning_strategy,
    determine_propensity,
    merge_analysis,
    predict_progress,
    render_html,
)

from conftest import AI_RESPONSE, ANSWERS, QUESTIONS


def _score(answers=ANSWERS):
    return aggregate_attempt("att-1", "stu-1", "exam-1", answers, normalize_questions(QUESTIONS))


def _document(analysis, score=None):
    score = score or _score()
    return assemble_report(
        exam_title="3월 모의고사",
        student_name="김민지",
        student_school=None,
        student_level="고2",
        exam_analysis=analyze_exam("exam-1", normalize_questions(QUESTIONS)),
        score=score,
        analysis=analysis,
        generated_on=date(2024, 3, 15),
    )


def test_merge_uses_ai_text_where_present():
    analysis = merge_analysis("김민지", _score(), AI_RESPONSE, "gemini")
    assert analysis.propensity_type == "도전적 성장형"
    assert analysis.overall_summary == AI_RESPONSE["overallSummary"]
    by_domain = {d.domain: d for d in analysis.domain_analyses}
    assert by_domain["독서"].analysis_text == "독서 영역은 매우 안정적입니다."
    # no AI text for 문학, so the templated sentence fills in
    assert by_domain["문학"].analysis_text.startswith("문학 영역에서 0%")
    assert by_domain["문학"].status_color == "red"
    assert [s.name for s in analysis.strength_analyses] == ["독서"]
    assert analysis.weakness_analyses[0].analysis_text == "문학에서 0%로 취약합니다. 해당 영역의 집중적인 학습이 필요합니다."
    assert [s.strategy for s in analysis.learning_strategy] == ["문학 집중"]
    assert analysis.learning_strategy[0].expected_result == "정답률 +10%"
    assert analysis.ai_provider == "gemini"


def test_merge_with_empty_ai_output_is_complete():
    score = _score()
    analysis = merge_analysis("김민지", score, {}, "fallback")
    assert analysis.overall_summary.startswith("김민지 학생은 전체적으로 6점을 기록하며 5등급에 해당합니다.")
    assert analysis.propensity_type == determine_propensity(score) == "도전적 성장형"
    assert analysis.propensity_description
    assert len(analysis.domain_analyses) == len(score.domain_scores)
    assert all(d.analysis_text for d in analysis.domain_analyses)
    assert len(analysis.learning_strategy) == 3
    assert "문학" in analysis.learning_strategy[0].details


def test_merge_ignores_malformed_fields():
    junk = {
        "overallSummary": "   ",
        "domainAnalyses": ["not", "a", "map"],
        "strengthAnalyses": {"독서": 42},
        "learningStrategy": [{"stage": "1단계"}, "text", {"strategy": "복습"}],
    }
    analysis = merge_analysis("김민지", _score(), junk, "openai")
    assert analysis.overall_summary.startswith("김민지 학생은")
    assert analysis.strength_analyses[0].analysis_text.startswith("독서 영역에서 100%")
    assert [(s.stage, s.strategy) for s in analysis.learning_strategy] == [("3단계", "복습")]


def test_propensity_rules():
    perfect = {str(q["questionNumber"]): q["correctAnswer"] for q in QUESTIONS}
    assert determine_propensity(_score(perfect)) == "안정적 실력형"
    assert determine_propensity(_score({})) == "잠재력 발굴형"
    assert determine_propensity(_score()) == "도전적 성장형"


def test_default_strategy_without_weaknesses():
    perfect = {str(q["questionNumber"]): q["correctAnswer"] for q in QUESTIONS}
    stages = default_learning_strategy(_score(perfect))
    assert [s.stage for s in stages] == ["1단계", "2단계", "3단계"]
    assert stages[0].details.startswith("전체 영역의 기본기 강화")


def test_predicted_progress_is_capped_and_monotonic():
    assert predict_progress(60, 100).values == [60, 65, 70, 75]
    assert predict_progress(95, 100).values == [95, 100, 100, 100]
    assert predict_progress(0, 0).values == [0, 0, 0, 0]
    for current in range(0, 101, 7):
        values = predict_progress(current, 100).values
        assert values == sorted(values)
        assert max(values) <= 100
    assert predict_progress(10, 20).labels == ["현재", "4주 후", "8주 후", "12주 후"]


def test_assembled_document():
    analysis = merge_analysis("김민지", _score(), AI_RESPONSE, "gemini")
    document = _document(analysis)
    assert document.meta_version == "v2-4step"
    assert document.student_info.school == "미입력"
    assert document.student_info.level == "고2"
    assert document.student_info.date == "2024. 3. 15."
    assert document.weak_areas == ["문학"]
    assert document.expected_grade == 4
    assert document.score_summary["raw_score_max"] == 12
    assert document.charts["radar"] == {"labels": ["독서", "문학"], "student": [100, 0]}
    assert document.charts["prediction"]["values"] == [6, 11, 12, 12]
    assert document.recommendations == ["1단계 (4주) 문학 집중: 매일 문학 지문 2개"]


def test_expected_grade_never_below_one():
    perfect = {str(q["questionNumber"]): q["correctAnswer"] for q in QUESTIONS}
    score = _score(perfect)
    document = _document(merge_analysis("김민지", score, {}, "fallback"), score)
    assert document.expected_grade == 1


def test_render_html_escapes_ai_text():
    hostile = dict(AI_RESPONSE, overallSummary="<script>alert('x')</script>", propensityType="</script><b>x</b>")
    document = _document(merge_analysis("김민지", _score(), hostile, "gemini"))
    html = render_html(document)
    assert "<script>alert" not in html
    assert "&lt;script&gt;alert" in html
    assert "<b>x</b>" not in html
    assert "김민지 학생 성적 분석 리포트" in html
    assert "문학 집중" in html


def test_render_html_embeds_chart_data():
    document = _document(merge_analysis("김민지", _score(), AI_RESPONSE, "gemini"))
    html = render_html(document)
    match = re.search(r'<script type="application/json" id="report-chart-data">(.*?)</script>', html, re.S)
    assert match is not None
    charts = json.loads(match.group(1))
    assert charts["radar"]["labels"] == ["독서", "문학"]
    assert charts["prediction"]["values"] == [6, 11, 12, 12]
