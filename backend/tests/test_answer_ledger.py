import asyncio

import pytest

from answer_ledger import AnswerLedger, resolve_max_marks
from conftest import T0
from error_utils import NotFoundError, PayloadValidationError, TimeExpiredError
from models import AnswerStatus, CodingResultRequest, SaveAnswerRequest, SectionConfig, Submission


def _setup(store, seed_assessment, **overrides):
    seed_assessment(**overrides)

    async def _load():
        submission = await store.create_submission(
            Submission(assessment_id="asmt-1", user_id="u-1", started_at=T0, created_at=T0,
                       current_section_id="sec-mcq", section_started_at=T0)
        )
        assessment = await store.get_assessment("asmt-1")
        return submission, assessment

    return asyncio.run(_load())


def test_create_then_merge_answer(store, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock, grace_seconds=10)

    async def run():
        first = await ledger.save_answer(submission, assessment, SaveAnswerRequest(
            section_id="sec-mcq", question_id="q-single", selected_answer="A", time_spent=12
        ))
        clock.advance(5)
        second = await ledger.save_answer(submission, assessment, SaveAnswerRequest(
            section_id="sec-mcq", question_id="q-single", selected_answer="B", time_spent=8,
            marked_for_review=True
        ))
        return first, second

    first, second = asyncio.run(run())
    assert first.status == AnswerStatus.ATTEMPTED
    assert first.max_marks == 2
    assert second.id == first.id
    assert second.selected_answer == "B"
    assert second.time_spent == 20
    assert second.status == AnswerStatus.MARKED_FOR_REVIEW
    assert second.marks_obtained is None
    assert second.created_at == T0


def test_empty_save_is_unattempted(store, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock)
    answer = asyncio.run(ledger.save_answer(submission, assessment, SaveAnswerRequest(
        section_id="sec-mcq", question_id="q-multi", time_spent=3
    )))
    assert answer.status == AnswerStatus.UNATTEMPTED
    assert answer.time_spent == 3


def test_review_flag_can_be_cleared(store, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock)

    async def save(**fields):
        return await ledger.save_answer(submission, assessment, SaveAnswerRequest(
            section_id="sec-mcq", question_id="q-single", **fields
        ))

    flagged = asyncio.run(save(selected_answer="B", marked_for_review=True))
    assert flagged.status == AnswerStatus.MARKED_FOR_REVIEW

    untouched = asyncio.run(save(time_spent=4))
    assert untouched.status == AnswerStatus.MARKED_FOR_REVIEW

    cleared = asyncio.run(save(marked_for_review=False))
    assert cleared.status == AnswerStatus.ATTEMPTED
    assert cleared.selected_answer == "B"
    assert cleared.time_spent == 4


def test_replayed_entry_is_applied_once(store, db, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock)
    request = SaveAnswerRequest(section_id="sec-mcq", question_id="q-fill", selected_answer="Paris", time_spent=30)

    first = asyncio.run(ledger.save_answer(submission, assessment, request, replay_token="abc:0"))
    writes = db.writes
    again = asyncio.run(ledger.save_answer(submission, assessment, request, replay_token="abc:0"))
    assert again.time_spent == first.time_spent == 30
    assert db.writes == writes

    later = asyncio.run(ledger.save_answer(submission, assessment, request, replay_token="def:0"))
    assert later.time_spent == 60
    assert later.replay_tokens == ["def:0"]


@pytest.mark.parametrize("payload", [
    {"section_id": "sec-mcq"},
    {"section_id": "sec-code", "question_id": "q-single", "problem_id": "p-sum"},
])
def test_requires_exactly_one_target(store, clock, seed_assessment, payload):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock)
    with pytest.raises(PayloadValidationError):
        asyncio.run(ledger.save_answer(submission, assessment, SaveAnswerRequest(**payload)))


def test_unknown_section_and_question(store, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock)
    with pytest.raises(NotFoundError):
        asyncio.run(ledger.save_answer(submission, assessment, SaveAnswerRequest(
            section_id="nope", question_id="q-single", selected_answer="A"
        )))
    with pytest.raises(NotFoundError):
        asyncio.run(ledger.save_answer(submission, assessment, SaveAnswerRequest(
            section_id="sec-mcq", question_id="q-missing", selected_answer="A"
        )))


def test_time_guard_rejects_without_writing(store, db, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock, grace_seconds=10)

    clock.advance(65)
    asyncio.run(ledger.save_answer(submission, assessment, SaveAnswerRequest(
        section_id="sec-mcq", question_id="q-single", selected_answer="B"
    )))
    clock.advance(10)
    with pytest.raises(TimeExpiredError):
        asyncio.run(ledger.save_answer(submission, assessment, SaveAnswerRequest(
            section_id="sec-mcq", question_id="q-fill", selected_answer="Paris"
        )))
    assert asyncio.run(store.get_answer(submission.id, question_id="q-fill")) is None


def test_global_mode_guard(store, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment, time_mode="global", duration_minutes=10)
    ledger = AnswerLedger(store, clock, grace_seconds=10)

    clock.advance(9 * 60 + 59)
    asyncio.run(ledger.save_answer(submission, assessment, SaveAnswerRequest(
        section_id="sec-mcq", question_id="q-single", selected_answer="B"
    )))
    clock.advance(16)
    with pytest.raises(TimeExpiredError) as exc:
        asyncio.run(ledger.save_answer(submission, assessment, SaveAnswerRequest(
            section_id="sec-mcq", question_id="q-single", selected_answer="C"
        )))
    assert exc.value.message == "Assessment time has expired. Answer cannot be saved."


def test_client_marks_are_stored_and_flagged(store, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock, trust_client_marks=True)
    answer = asyncio.run(ledger.save_answer(submission, assessment, SaveAnswerRequest(
        section_id="sec-mcq", question_id="q-single", selected_answer="B", marks_obtained=5, max_marks=5
    )))
    assert answer.client_scored is True
    assert answer.marks_obtained == 5
    assert answer.max_marks == 5


def test_client_marks_ignored_when_untrusted(store, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock, trust_client_marks=False)
    answer = asyncio.run(ledger.save_answer(submission, assessment, SaveAnswerRequest(
        section_id="sec-mcq", question_id="q-single", selected_answer="B", marks_obtained=50, max_marks=50
    )))
    assert answer.client_scored is False
    assert answer.marks_obtained is None
    assert answer.max_marks == 2


def test_new_response_clears_stale_client_marks(store, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock)

    async def run():
        await ledger.save_answer(submission, assessment, SaveAnswerRequest(
            section_id="sec-mcq", question_id="q-single", selected_answer="B", marks_obtained=2
        ))
        return await ledger.save_answer(submission, assessment, SaveAnswerRequest(
            section_id="sec-mcq", question_id="q-single", selected_answer="D"
        ))

    answer = asyncio.run(run())
    assert answer.client_scored is False
    assert answer.marks_obtained is None


def test_resolve_max_marks_defaults():
    section = SectionConfig(id="s", questions=[{"id": "q1", "correct_answer": "A"}], problems=[{"problem_id": "p1"}])
    assert resolve_max_marks(section, "q1", None) == 1
    assert resolve_max_marks(section, None, "p1") == 100
    section.marks_per_question = 3
    assert resolve_max_marks(section, "q1", None) == 3


@pytest.mark.parametrize("score,expected_marks,expected_correct", [
    (60, 6.0, False),
    (100, 10.0, True),
    (0, 0.0, False),
])
def test_coding_result_converts_percentage(store, clock, seed_assessment, score, expected_marks, expected_correct):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock)
    answer = asyncio.run(ledger.save_coding_result(submission, assessment, "p-sum", CodingResultRequest(
        code="print(1)", language="python", passed_tests=3, total_tests=5, status="evaluated", score=score
    )))
    assert answer.marks_obtained == pytest.approx(expected_marks)
    assert answer.is_correct is expected_correct
    assert answer.max_marks == 10
    assert answer.section_id == "sec-code"
    assert answer.coding_result.score == score
    assert answer.coding_result.max_score == 100
    assert answer.status == AnswerStatus.ATTEMPTED


def test_coding_result_defaults_to_ten_marks(store, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment, sections=[
        {"id": "sec-code", "title": "Coding", "order": 1, "problems": [{"problem_id": "p-x"}]},
    ])
    ledger = AnswerLedger(store, clock)
    answer = asyncio.run(ledger.save_coding_result(submission, assessment, "p-x", CodingResultRequest(
        code="x", language="go", score=50
    )))
    assert answer.max_marks == 10
    assert answer.marks_obtained == pytest.approx(5.0)


def test_coding_result_for_unknown_problem(store, clock, seed_assessment):
    submission, assessment = _setup(store, seed_assessment)
    ledger = AnswerLedger(store, clock)
    with pytest.raises(NotFoundError):
        asyncio.run(ledger.save_coding_result(submission, assessment, "p-nope", CodingResultRequest(
            code="x", language="go", score=50
        )))
