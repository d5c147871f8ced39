"""Server-side answer evaluation run at submit time."""

import logging
from typing import Any, List, Optional

from models import (
    Answer,
    AnswerStatus,
    AssessmentConfig,
    CodingKey,
    CodingResult,
    FillBlankKey,
    MultipleChoiceKey,
    QuestionConfig,
    SectionConfig,
    SingleChoiceKey,
    normalize_choice_list,
)

logger = logging.getLogger(__name__)


def _scalar(selected: Any) -> str:
    if isinstance(selected, list):
        selected = selected[0] if len(selected) == 1 else ",".join(str(s) for s in selected)
    return "" if selected is None else str(selected)


def is_single_choice_correct(key: SingleChoiceKey, selected: Any) -> bool:
    return _scalar(selected).strip() == key.correct


def is_multiple_choice_correct(key: MultipleChoiceKey, selected: Any) -> bool:
    return sorted(normalize_choice_list(selected)) == sorted(key.correct)


def is_fill_blank_correct(key: FillBlankKey, selected: Any) -> bool:
    return _scalar(selected).strip().lower() == key.expected.strip().lower()


def judge_choice(key, selected: Any) -> bool:
    if isinstance(key, SingleChoiceKey):
        return is_single_choice_correct(key, selected)
    if isinstance(key, MultipleChoiceKey):
        return is_multiple_choice_correct(key, selected)
    if isinstance(key, FillBlankKey):
        return is_fill_blank_correct(key, selected)
    raise TypeError(f"Not a choice key: {type(key).__name__}")


def _evaluate_coding(answer: Answer) -> None:
    if answer.coding_result is not None:
        # Judged during the attempt; never re-executed here.
        answer.status = AnswerStatus.EVALUATED
        return
    ref = answer.problem_id or answer.question_id
    logger.warning(f"Coding answer {ref} on submission {answer.submission_id} was never submitted for judging")
    answer.marks_obtained = 0.0
    answer.is_correct = False
    answer.status = AnswerStatus.EVALUATED
    answer.coding_result = CodingResult(
        code=answer.code,
        language=answer.language,
        status="not_submitted",
        score=0.0,
        max_score=answer.max_marks,
    )


def evaluate_answer(answer: Answer, question: Optional[QuestionConfig], section: Optional[SectionConfig],
                    trust_client_marks: bool = True) -> None:
    """Assign marks_obtained/is_correct/status to one answer in place."""
    if trust_client_marks and answer.client_scored and answer.marks_obtained is not None:
        if answer.is_correct is None:
            answer.is_correct = answer.max_marks > 0 and answer.marks_obtained >= answer.max_marks
        if not answer.is_unattempted:
            answer.status = AnswerStatus.EVALUATED
        return

    if answer.is_unattempted:
        answer.marks_obtained = 0.0
        answer.is_correct = None
        return

    if answer.problem_id or (question is not None and isinstance(question.key, CodingKey)):
        _evaluate_coding(answer)
        return

    if question is None:
        logger.warning(f"Question {answer.question_id} not found in configuration; scoring 0")
        answer.marks_obtained = 0.0
        answer.is_correct = False
        answer.status = AnswerStatus.EVALUATED
        return

    correct = judge_choice(question.key, answer.selected_answer)
    rate = section.negative_marking if section is not None else 0.0
    answer.is_correct = correct
    answer.marks_obtained = answer.max_marks if correct else -(answer.max_marks * rate)
    answer.status = AnswerStatus.EVALUATED


def evaluate_answers(answers: List[Answer], assessment: AssessmentConfig,
                     trust_client_marks: bool = True) -> List[Answer]:
    """Evaluate every answer of a submission against the assessment's answer keys."""
    for answer in answers:
        section = assessment.find_section(answer.section_id) if answer.section_id else None
        question = None
        if answer.question_id:
            if section is not None:
                question = section.find_question(answer.question_id)
            else:
                for candidate in assessment.sections:
                    question = candidate.find_question(answer.question_id)
                    if question is not None:
                        section = candidate
                        break
        evaluate_answer(answer, question, section, trust_client_marks)
    return answers
