"""
Roll evaluated answers up into section scores, totals and analytics.

Negative marks reduce a section's running sum, but each section's reported
score is floored at zero so the assessment total never goes negative.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from constants import DEFAULT_PROBLEM_MARKS, DEFAULT_QUESTION_MARKS
from datetime_utils import elapsed_seconds
from models import (
    Analytics,
    Answer,
    AssessmentConfig,
    CodingStats,
    SectionConfig,
    SectionScore,
    Submission,
    Verdict,
    VerdictStatus,
)

logger = logging.getLogger(__name__)


def configured_section_totals(section: SectionConfig) -> Tuple[float, int]:
    """(total marks, item count) for a section as configured."""
    marks = 0.0
    count = 0
    per_question = section.marks_per_question or DEFAULT_QUESTION_MARKS
    if section.questions:
        for question in section.questions:
            marks += question.marks or per_question
        count += len(section.questions)
    elif section.question_count:
        marks += section.question_count * per_question
        count += section.question_count
    for problem in section.problems:
        marks += problem.marks or DEFAULT_PROBLEM_MARKS
    count += len(section.problems)
    return marks, count


def compute_max_score(assessment: AssessmentConfig) -> float:
    return sum(configured_section_totals(s)[0] for s in assessment.sections)


def score_section(section: SectionConfig, answers: List[Answer], submission: Submission) -> SectionScore:
    configured_marks, configured_count = configured_section_totals(section)
    recorded_marks = sum(a.max_marks or 0 for a in answers)
    total_marks = recorded_marks if recorded_marks > 0 else configured_marks
    total_questions = max(configured_count, len(answers))

    obtained = 0.0
    negative = 0.0
    correct = wrong = unattempted = 0
    for answer in answers:
        if answer.is_unattempted:
            unattempted += 1
            continue
        marks = answer.marks_obtained or 0.0
        if answer.is_correct:
            correct += 1
        else:
            wrong += 1
            if marks < 0:
                negative += -marks
        obtained += marks
    unattempted += max(0, total_questions - len(answers))

    time_taken = submission.usage_for(section.id)
    if time_taken <= 0:
        time_taken = sum(a.time_spent for a in answers)

    reported = max(0.0, obtained)
    return SectionScore(
        section_id=section.id,
        section_title=section.title,
        section_type=section.type,
        total_marks=total_marks,
        obtained_marks=reported,
        correct_answers=correct,
        wrong_answers=wrong,
        unattempted=unattempted,
        total_questions=total_questions,
        percentage=(reported / total_marks * 100) if total_marks > 0 else 0.0,
        negative_marks=negative,
        time_taken=time_taken,
    )


def score_sections(assessment: AssessmentConfig, answers: List[Answer], submission: Submission) -> List[SectionScore]:
    by_section: Dict[str, List[Answer]] = {s.id: [] for s in assessment.sections}
    for answer in answers:
        if answer.section_id in by_section:
            by_section[answer.section_id].append(answer)
        else:
            logger.warning(f"Answer {answer.id} references unknown section {answer.section_id}; not scored")
    return [score_section(s, by_section[s.id], submission) for s in assessment.sections]


def coding_stats(answers: List[Answer]) -> Optional[CodingStats]:
    coding = [a for a in answers if a.problem_id]
    if not coding:
        return None
    return CodingStats(
        total=len(coding),
        attempted=sum(1 for a in coding if a.code),
        fully_solved=sum(1 for a in coding if a.is_correct),
        partially_solved=sum(1 for a in coding if not a.is_correct and (a.marks_obtained or 0) > 0),
        total_score=sum(a.marks_obtained or 0 for a in coding),
        max_score=sum(a.max_marks for a in coding),
    )


def build_analytics(submission: Submission, answers: List[Answer], section_scores: List[SectionScore],
                    submitted_at: datetime, total_score: float) -> Analytics:
    total_questions = sum(s.total_questions for s in section_scores)
    total_marks = sum(s.total_marks for s in section_scores)
    section_time = sum(s.time_taken for s in section_scores)

    attempted = [a for a in answers if a.has_response]
    correct = sum(1 for a in attempted if a.is_correct)
    positive = sum(a.marks_obtained for a in answers if (a.marks_obtained or 0) > 0)
    negative = sum(-a.marks_obtained for a in answers if (a.marks_obtained or 0) < 0)
    obtained = max(0.0, positive - negative)

    # Per-section usage excludes idle gaps between sections.
    time_taken = section_time if section_time > 0 else elapsed_seconds(submission.started_at, submitted_at)

    return Analytics(
        total_questions=total_questions,
        attempted_questions=len(attempted),
        correct_answers=correct,
        wrong_answers=len(attempted) - correct,
        unattempted=max(0, total_questions - len(attempted)),
        total_marks=total_marks,
        obtained_marks=obtained,
        negative_marks=negative,
        percentage=(obtained / total_marks * 100) if total_marks > 0 else 0.0,
        time_taken=time_taken,
        coding_problems=coding_stats(answers),
        verdict=Verdict(status=VerdictStatus.PENDING, final_score=total_score, adjusted_score=total_score),
    )


def aggregate(submission: Submission, assessment: AssessmentConfig, answers: List[Answer],
              submitted_at: datetime) -> Submission:
    """Freeze section scores, totals and analytics onto the submission."""
    section_scores = score_sections(assessment, answers, submission)
    total_score = sum(max(0.0, s.obtained_marks) for s in section_scores)

    submission.section_scores = section_scores
    submission.total_score = total_score
    submission.percentage = (total_score / submission.max_score * 100) if submission.max_score > 0 else 0.0
    submission.analytics = build_analytics(submission, answers, section_scores, submitted_at, total_score)

    logger.info(
        f"Aggregated submission {submission.id}: {total_score}/{submission.max_score} "
        f"({submission.percentage:.2f}%) across {len(section_scores)} sections"
    )
    return submission
